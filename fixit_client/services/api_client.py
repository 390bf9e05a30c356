"""HTTP client for the FixIT API service"""

import logging
from typing import Any

import httpx
import sentry_sdk
from pydantic import BaseModel, Field

from fixit_api.services.lifecycle import IssueLifecycleGuard
from fixit_api.services.skill_matcher import DEFAULT_SKILL

logger = logging.getLogger(__name__)


class FixitAPIError(Exception):
    """Exception raised when FixIT API calls fail"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ClientValidationError(ValueError):
    """Raised before submission when a form is missing required input"""

    pass


class HelperSuggestion(BaseModel):
    """A user suggested as helper for an issue"""

    id: str
    name: str
    department: str | None = None
    position: str | None = None
    skills: list[dict[str, Any]] = Field(default_factory=list)
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_skills: list[str] = Field(default_factory=list)


class HelperSuggestions(BaseModel):
    """Ranked helpers, or the widened user pool when nobody matched"""

    helpers: list[HelperSuggestion]
    required_skills: list[str] = Field(default_factory=list)
    fallback: bool = False


def _suggestion(raw: dict[str, Any], score: float | None = None) -> HelperSuggestion:
    return HelperSuggestion(
        id=str(raw["id"]),
        name=raw.get("name")
        or f"{raw.get('firstName', '')} {raw.get('lastName', '')}".strip(),
        department=raw.get("department"),
        position=raw.get("position"),
        skills=raw.get("skills") or [],
        score=raw.get("score", 0.0) if score is None else score,
        matched_skills=raw.get("matchedSkills") or [],
    )


class FixitAPIClient:
    """HTTP client for the FixIT API service

    Mutations on an issue are checked against the lifecycle guard before any
    request goes out, so an invalid action fails locally with the same
    IssuePermissionError/IssueStateError the server would raise.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        headers = {
            "User-Agent": "fixit-client/1.0.0",
            "Accept": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
            transport=transport,
        )

        logger.info(f"FixIT API client initialized for {self.base_url}")

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out after {self.timeout}s")
            raise FixitAPIError(f"Request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            logger.error(f"Failed to connect to FixIT API: {e}")
            raise FixitAPIError(f"Connection failed: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"{method} {path} failed: {status}")
            try:
                detail = e.response.json().get("detail", status)
            except ValueError:
                detail = status
            raise FixitAPIError(f"Request failed: {detail}", status_code=status) from e

    async def health_check(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def is_available(self) -> bool:
        """Check if the FixIT API is available and responding"""
        try:
            await self.health_check()
            return True
        except FixitAPIError:
            return False

    # Issues

    async def list_issues(self, **filters: Any) -> list[dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        result = await self._request("GET", "/issues", params=params)
        return result["data"]

    async def get_issue(self, issue_id: str) -> dict[str, Any]:
        result = await self._request("GET", f"/issues/{issue_id}")
        return result["data"]

    async def create_issue(self, **fields: Any) -> dict[str, Any]:
        missing = [k for k in ("title", "description", "category") if not fields.get(k)]
        if missing:
            raise ClientValidationError(f"Missing required fields: {', '.join(missing)}")
        if not fields.get("requiredSkills"):
            fields["requiredSkills"] = [DEFAULT_SKILL]
        result = await self._request("POST", "/issues", json=fields)
        logger.info(f"Created issue {result['data']['id']}")
        return result["data"]

    async def update_issue(
        self, issue: dict[str, Any], user_id: str, **changes: Any
    ) -> dict[str, Any]:
        IssueLifecycleGuard.for_issue(issue).ensure_can_edit(user_id)
        result = await self._request("PUT", f"/issues/{issue['id']}", json=changes)
        return result["data"]

    async def delete_issue(self, issue: dict[str, Any], user_id: str) -> None:
        IssueLifecycleGuard.for_issue(issue).ensure_can_delete(user_id)
        await self._request("DELETE", f"/issues/{issue['id']}")
        logger.info(f"Deleted issue {issue['id']}")

    async def assign_issue(
        self, issue: dict[str, Any], user_id: str, assignee_id: str
    ) -> dict[str, Any]:
        IssueLifecycleGuard.for_issue(issue).ensure_can_assign(user_id, assignee_id)
        result = await self._request(
            "PUT", f"/issues/{issue['id']}/assign", json={"assignedTo": assignee_id}
        )
        return result["data"]

    async def start_issue(self, issue: dict[str, Any], user_id: str) -> dict[str, Any]:
        IssueLifecycleGuard.for_issue(issue).ensure_can_start(user_id)
        result = await self._request("PUT", f"/issues/{issue['id']}/start")
        return result["data"]

    async def resolve_issue(
        self,
        issue: dict[str, Any],
        user_id: str,
        solved_by: str,
        solution: str = "",
        points_awarded: int | None = None,
    ) -> dict[str, Any]:
        IssueLifecycleGuard.for_issue(issue).ensure_can_resolve(user_id)
        if not solved_by:
            raise ClientValidationError("Select who solved the issue")
        payload: dict[str, Any] = {"solvedBy": solved_by, "solution": solution}
        if points_awarded is not None:
            payload["pointsAwarded"] = points_awarded
        result = await self._request(
            "PUT", f"/issues/{issue['id']}/resolve", json=payload
        )
        return result["data"]

    async def close_issue(
        self, issue: dict[str, Any], user_id: str, is_admin: bool = False
    ) -> dict[str, Any]:
        IssueLifecycleGuard.for_issue(issue).ensure_can_close(user_id, is_admin=is_admin)
        result = await self._request("PUT", f"/issues/{issue['id']}/close")
        return result["data"]

    async def add_comment(self, issue_id: str, content: str) -> dict[str, Any]:
        result = await self._request(
            "POST", f"/issues/{issue_id}/comments", json={"content": content}
        )
        return result["data"]

    @sentry_sdk.trace
    async def get_helper_suggestions(
        self, issue: dict[str, Any], limit: int = 10
    ) -> HelperSuggestions:
        """Ranked helpers for an issue.

        When nobody has a matching skill the list is widened to every other
        user with score 0 and ``fallback`` set, so the owner always has
        someone to pick from.
        """
        guard = IssueLifecycleGuard.for_issue(issue)
        guard.ensure_can_suggest_helpers()

        result = await self._request(
            "GET", f"/issues/{issue['id']}/helpers", params={"limit": limit}
        )
        data = result["data"]
        helpers = [_suggestion(h) for h in data["helpers"]]
        required = data.get("requiredSkills", [])

        if helpers:
            logger.info(f"Found {len(helpers)} helpers for issue {issue['id']}")
            return HelperSuggestions(helpers=helpers, required_skills=required)

        logger.info(
            f"No skill match for issue {issue['id']}, widening to all users"
        )
        users = await self.list_users(exclude=guard.owner_id, limit=limit)
        return HelperSuggestions(
            helpers=[_suggestion(u, score=0.0) for u in users],
            required_skills=required,
            fallback=True,
        )

    # Users

    async def list_users(self, **filters: Any) -> list[dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        result = await self._request("GET", "/users", params=params)
        return result["data"]

    async def get_user(self, user_id: str) -> dict[str, Any]:
        result = await self._request("GET", f"/users/{user_id}")
        return result["data"]

    async def get_user_issues(
        self, user_id: str, role: str = "posted"
    ) -> list[dict[str, Any]]:
        result = await self._request(
            "GET", f"/users/{user_id}/issues", params={"role": role}
        )
        return result["data"]

    async def update_skills(
        self, user_id: str, skills: list[dict[str, str]]
    ) -> dict[str, Any]:
        result = await self._request(
            "PUT", f"/users/{user_id}/skills", json={"skills": skills}
        )
        return result["data"]

    async def get_top_contributors(self, limit: int = 5) -> list[dict[str, Any]]:
        result = await self._request(
            "GET", "/users/top-contributors", params={"limit": limit}
        )
        return result["data"]["topResolvers"]

    @sentry_sdk.trace
    async def search_by_skills(
        self, skills: list[str], limit: int = 10
    ) -> HelperSuggestions:
        result = await self._request(
            "GET",
            "/users/search/skills",
            params={"skills": ",".join(skills), "limit": limit},
        )
        data = result["data"]
        return HelperSuggestions(
            helpers=[_suggestion(h) for h in data["helpers"]],
            required_skills=data.get("requiredSkills", []),
        )

    def __repr__(self) -> str:
        return f"FixitAPIClient(base_url='{self.base_url}')"
