"""Realtime channel hub: routes named events between connected users"""

import asyncio
import json
import logging
from contextlib import suppress
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import sentry_sdk
from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from fixit_api.auth import AuthenticatedUser
from fixit_api.models import (
    HelpAskPayload,
    HelpOfferPayload,
    HelpRespondPayload,
    MessageSendPayload,
    RealtimeFrame,
)

logger = logging.getLogger(__name__)


class ClientEvent(str, Enum):
    MESSAGE_SEND = "message:send"
    HELP_OFFER = "help:offer"
    HELP_ASK = "help:ask"
    HELP_RESPOND = "help:respond"


class ServerEvent(str, Enum):
    ISSUE_ASSIGNED = "issue:assigned"
    MESSAGE_RECEIVED = "message:received"
    HELP_OFFER = "help:offer"
    HELP_REQUEST = "help:request"
    HELP_RESPONSE = "help:response"


CLIENT_PAYLOADS: dict[ClientEvent, type[BaseModel]] = {
    ClientEvent.MESSAGE_SEND: MessageSendPayload,
    ClientEvent.HELP_OFFER: HelpOfferPayload,
    ClientEvent.HELP_ASK: HelpAskPayload,
    ClientEvent.HELP_RESPOND: HelpRespondPayload,
}


class Connection:
    """One bound websocket session with its own ordered outbox"""

    def __init__(self, websocket: WebSocket, user: AuthenticatedUser):
        self.connection_id = str(uuid4())
        self.websocket = websocket
        self.user = user
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.sender_task: asyncio.Task | None = None
        self.connected_at = datetime.now(UTC)
        self.delivered = 0

    @property
    def party(self) -> dict[str, str]:
        return {"id": self.user.user_id, "name": self.user.name}

    def enqueue(self, frame: dict[str, Any]) -> None:
        self.outbox.put_nowait(frame)

    async def run_sender(self) -> None:
        """Drain the outbox in FIFO order until the socket fails or is cancelled"""
        while True:
            frame = await self.outbox.get()
            try:
                await self.websocket.send_json(frame)
            except Exception as e:
                logger.warning(
                    f"Delivery to user {self.user.user_id} "
                    f"({self.connection_id}) failed: {e}"
                )
                return
            self.delivered += 1


class RealtimeHub:
    """
    Tracks live connections per user and forwards events to them.

    Delivery is best effort and at most once: events for users without a
    live connection are dropped, and closing a connection discards whatever
    is still queued for it. Events to one recipient keep the order in which
    they were forwarded.
    """

    def __init__(self):
        self._connections: dict[str, dict[str, Connection]] = {}

    async def connect(self, websocket: WebSocket, user: AuthenticatedUser) -> Connection:
        """Accept the socket and bind it to the authenticated user"""
        await websocket.accept()
        conn = Connection(websocket, user)
        self._connections.setdefault(user.user_id, {})[conn.connection_id] = conn
        conn.sender_task = asyncio.create_task(conn.run_sender())
        # A sender that stops on a failed send takes the session out of routing
        conn.sender_task.add_done_callback(lambda _task: self._unregister(conn))

        logger.info(
            f"User {user.user_id} connected ({conn.connection_id}), "
            f"{self.connected_user_count()} users online"
        )
        return conn

    async def disconnect(self, conn: Connection) -> None:
        """Unbind a connection; undelivered events are discarded"""
        self._unregister(conn)

        dropped = conn.outbox.qsize()
        lifetime = (datetime.now(UTC) - conn.connected_at).total_seconds()
        if conn.sender_task is not None:
            conn.sender_task.cancel()
            with suppress(asyncio.CancelledError):
                await conn.sender_task

        logger.info(
            f"User {conn.user.user_id} disconnected ({conn.connection_id}), "
            f"{conn.delivered} delivered, {dropped} dropped, open {lifetime:.0f}s"
        )

    def _unregister(self, conn: Connection) -> None:
        sessions = self._connections.get(conn.user.user_id)
        if sessions is None or sessions.pop(conn.connection_id, None) is None:
            return
        if not sessions:
            del self._connections[conn.user.user_id]
        logger.debug(f"Connection {conn.connection_id} removed from routing")

    def is_connected(self, user_id: Any) -> bool:
        return str(user_id) in self._connections

    def connected_user_count(self) -> int:
        return len(self._connections)

    def send_to_user(self, user_id: Any, event: ServerEvent, data: dict[str, Any]) -> int:
        """Queue an event for every live session of a user; returns sessions reached"""
        sessions = self._connections.get(str(user_id))
        if not sessions:
            logger.info(f"User {user_id} not connected, dropping '{event.value}'")
            return 0

        frame = {"event": event.value, "data": data}
        for conn in sessions.values():
            conn.enqueue(frame)
        logger.debug(f"Queued '{event.value}' for user {user_id} ({len(sessions)} sessions)")
        return len(sessions)

    def notify_issue_assigned(
        self, assignee_id: Any, issue_id: Any, issue_title: str, assigned_by: AuthenticatedUser
    ) -> int:
        return self.send_to_user(
            assignee_id,
            ServerEvent.ISSUE_ASSIGNED,
            {
                "issueId": str(issue_id),
                "issueTitle": issue_title,
                "assignedBy": {"id": assigned_by.user_id, "name": assigned_by.name},
            },
        )

    @sentry_sdk.trace
    def handle_frame(self, conn: Connection, raw: str) -> int:
        """Parse a client frame and forward it; malformed frames are dropped"""
        try:
            frame = RealtimeFrame.model_validate(json.loads(raw))
            event = ClientEvent(frame.event)
            payload = CLIENT_PAYLOADS[event].model_validate(frame.data)
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            logger.warning(
                f"Dropping malformed frame from user {conn.user.user_id}: {e}"
            )
            return 0

        sender = conn.party
        sent_at = datetime.now(UTC).isoformat()

        if isinstance(payload, MessageSendPayload):
            return self.send_to_user(
                payload.to_user_id,
                ServerEvent.MESSAGE_RECEIVED,
                {
                    "sender": sender,
                    "message": payload.message,
                    "issueId": payload.issue_id,
                    "sentAt": sent_at,
                },
            )
        if isinstance(payload, HelpOfferPayload):
            return self.send_to_user(
                payload.to_user_id,
                ServerEvent.HELP_OFFER,
                {"from": sender, "issueId": payload.issue_id, "note": payload.note},
            )
        if isinstance(payload, HelpAskPayload):
            return self.send_to_user(
                payload.to_user_id,
                ServerEvent.HELP_REQUEST,
                {"from": sender, "issueId": payload.issue_id, "message": payload.message},
            )
        return self.send_to_user(
            payload.to_user_id,
            ServerEvent.HELP_RESPONSE,
            {
                "from": sender,
                "issueId": payload.issue_id,
                "accepted": payload.accepted,
                "note": payload.note,
            },
        )

    async def close_all(self) -> None:
        """Close every live connection (service shutdown)"""
        connections = [
            conn for sessions in self._connections.values() for conn in sessions.values()
        ]
        for conn in connections:
            with suppress(Exception):
                await conn.websocket.close(code=1001)
            await self.disconnect(conn)
        logger.info(f"Closed {len(connections)} realtime connections")


# Global hub instance
_realtime_hub: RealtimeHub | None = None


def get_realtime_hub() -> RealtimeHub:
    """Get the global realtime hub instance"""
    global _realtime_hub
    if _realtime_hub is None:
        _realtime_hub = RealtimeHub()
    return _realtime_hub
