"""Bearer token verification for REST requests and realtime connections"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import HTTPException, Request, WebSocket, status

from fixit_api.config import settings

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when a bearer token is missing, expired or invalid"""

    pass


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity carried by a verified access token"""

    user_id: str
    name: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(
    user_id: str, name: str, role: str = "user", expires_minutes: int | None = None
) -> str:
    """Mint an access token; credential issuance itself lives outside this service"""
    minutes = expires_minutes or settings.jwt_access_token_expire_minutes
    payload = {
        "sub": str(user_id),
        "name": name,
        "role": role,
        "type": "access",
        "exp": datetime.now(UTC) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AuthenticatedUser:
    """Validate a token and return the user it identifies"""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token") from e

    if payload.get("type") != "access" or not payload.get("sub"):
        raise AuthenticationError("Invalid token")

    return AuthenticatedUser(
        user_id=str(payload["sub"]),
        name=payload.get("name") or "user",
        role=payload.get("role") or "user",
    )


def extract_bearer_token(value: str | None) -> str | None:
    """Strip the 'Bearer ' prefix from an Authorization value"""
    if not value:
        return None
    scheme, _, token = value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency resolving the caller from the Authorization header"""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def authenticate_websocket(websocket: WebSocket) -> AuthenticatedUser:
    """Resolve the user of a realtime connection.

    The token may arrive as an Authorization header or, for browsers that
    cannot set headers on a websocket, as a ``token`` query parameter
    (with or without the ``Bearer `` prefix).
    """
    token = extract_bearer_token(websocket.headers.get("Authorization"))
    if token is None:
        raw = websocket.query_params.get("token")
        token = extract_bearer_token(raw) or (raw.strip() if raw else None)
    if not token:
        raise AuthenticationError("No token provided")
    return decode_access_token(token)
