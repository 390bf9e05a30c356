"""Realtime frame parsing service"""

import json
import logging
from typing import Any

from pydantic import ValidationError

from fixit_client.models import EVENT_MODELS, NotificationType, RealtimeEvent

logger = logging.getLogger(__name__)


class RealtimeEventParser:
    """
    Parses server frames into validated events.

    Frames are ``{"event": <name>, "data": {...}}``. Anything that does not
    match the event catalog, or whose payload fails validation, is dropped
    and counted; the parser never raises.
    """

    def __init__(self):
        self.parsed_count = 0
        self.dropped_count = 0

    def parse_frame(self, raw: str | bytes | dict[str, Any]) -> RealtimeEvent | None:
        """Parse one frame, returning None for anything malformed"""
        try:
            frame = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return self._drop(f"invalid JSON: {e}")

        if not isinstance(frame, dict):
            return self._drop("frame is not an object")

        try:
            event_type = NotificationType(frame.get("event"))
        except ValueError:
            return self._drop(f"unknown event '{frame.get('event')}'")

        data = frame.get("data")
        if not isinstance(data, dict):
            return self._drop(f"'{event_type.value}' without a data object")

        try:
            payload = EVENT_MODELS[event_type].model_validate(data)
        except ValidationError as e:
            return self._drop(
                f"invalid '{event_type.value}' payload ({e.error_count()} errors)"
            )

        self.parsed_count += 1
        return RealtimeEvent(type=event_type, payload=payload)

    def _drop(self, reason: str) -> None:
        self.dropped_count += 1
        logger.warning(f"Dropping realtime frame: {reason}")
        return None

    def get_stats(self) -> dict[str, int]:
        return {"parsed": self.parsed_count, "dropped": self.dropped_count}
