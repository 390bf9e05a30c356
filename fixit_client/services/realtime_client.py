"""Realtime channel client: sends user events and feeds the notification center"""

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from fixit_client.models import RealtimeEvent
from fixit_client.services.event_parser import RealtimeEventParser
from fixit_client.services.notifications import NotificationCenter

logger = logging.getLogger(__name__)


class RealtimeNotConnectedError(Exception):
    """Raised when an event is emitted without a live connection"""

    def __init__(self, event: str):
        super().__init__(f"Cannot send '{event}': realtime channel is not connected")
        self.event = event


class RealtimeClient:
    """
    One authenticated realtime connection for a logged-in session.

    Incoming frames are parsed (malformed ones dropped) and ingested by
    ``notifications``. The client is also the center's emitter, so
    ``respond_to_help`` goes out over this connection.
    """

    def __init__(self, url: str, token: str, connector=None):
        self.url = url
        self.token = token
        self.connector = connector or websockets.connect
        self.parser = RealtimeEventParser()
        self.notifications = NotificationCenter(emitter=self)
        self._websocket: Any = None
        self._reader_task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None

    async def connect(self) -> None:
        if self._websocket is not None:
            return

        separator = "&" if "?" in self.url else "?"
        url = f"{self.url}{separator}{urlencode({'token': self.token})}"
        self._websocket = await self.connector(url)
        self._reader_task = asyncio.create_task(self._read_loop(self._websocket))
        logger.info(f"Realtime channel connected to {self.url}")

    async def _read_loop(self, websocket: Any) -> None:
        try:
            async for raw in websocket:
                self.handle_frame(raw)
        except ConnectionClosed as e:
            logger.warning(f"Realtime channel closed: {e}")
        finally:
            if self._websocket is websocket:
                self._websocket = None

    def handle_frame(self, raw: str | bytes) -> RealtimeEvent | None:
        event = self.parser.parse_frame(raw)
        if event is not None:
            self.notifications.ingest(event)
        return event

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        websocket = self._websocket
        if websocket is None:
            raise RealtimeNotConnectedError(event)
        try:
            await websocket.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed as e:
            raise RealtimeNotConnectedError(event) from e

    async def send_message(
        self, to_user_id: str, message: str, issue_id: str | None = None
    ) -> None:
        await self.emit(
            "message:send",
            {"toUserId": to_user_id, "message": message, "issueId": issue_id},
        )

    async def offer_help(
        self, to_user_id: str, issue_id: str, note: str | None = None
    ) -> None:
        await self.emit(
            "help:offer", {"toUserId": to_user_id, "issueId": issue_id, "note": note}
        )

    async def ask_for_help(
        self, to_user_id: str, issue_id: str, message: str | None = None
    ) -> None:
        await self.emit(
            "help:ask",
            {"toUserId": to_user_id, "issueId": issue_id, "message": message},
        )

    async def respond_to_help(
        self, to_user_id: str, issue_id: str, accepted: bool, note: str | None = None
    ):
        return await self.notifications.respond_to_help(
            to_user_id, issue_id, accepted, note
        )

    async def close(self) -> None:
        """Tear down the session; later events never reach the feed"""
        self.notifications.close()
        websocket, self._websocket = self._websocket, None

        if self._reader_task is not None:
            self._reader_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None

        if websocket is not None:
            await websocket.close()
        logger.info("Realtime channel closed")
