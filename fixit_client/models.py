"""Data models for realtime events and client-side notifications"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr
from pydantic.alias_generators import to_camel


class EventModel(BaseModel):
    """Base for realtime payloads: camelCase keys, unknown keys ignored"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True
    )


class NotificationType(str, Enum):
    ISSUE_ASSIGNED = "issue:assigned"
    MESSAGE_RECEIVED = "message:received"
    HELP_OFFER = "help:offer"
    HELP_REQUEST = "help:request"
    HELP_RESPONSE = "help:response"


class HelpOutcome(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"

    @classmethod
    def from_accepted(cls, accepted: bool) -> "HelpOutcome":
        return cls.ACCEPTED if accepted else cls.DECLINED


class Party(EventModel):
    """A user referenced by an event"""

    id: StrictStr = Field(min_length=1)
    name: str | None = None


class IssueAssignedEvent(EventModel):
    issue_id: StrictStr = Field(min_length=1)
    issue_title: str | None = None
    assigned_by: Party | None = None


class MessageReceivedEvent(EventModel):
    sender: Party
    message: StrictStr
    issue_id: str | None = None
    sent_at: datetime | None = None


class HelpOfferEvent(EventModel):
    from_: Party = Field(alias="from")
    issue_id: StrictStr = Field(min_length=1)
    note: str | None = None


class HelpRequestEvent(EventModel):
    from_: Party = Field(alias="from")
    issue_id: StrictStr = Field(min_length=1)
    message: str | None = None


class HelpResponseEvent(EventModel):
    from_: Party = Field(alias="from")
    issue_id: StrictStr = Field(min_length=1)
    accepted: StrictBool
    note: str | None = None


EVENT_MODELS: dict[NotificationType, type[EventModel]] = {
    NotificationType.ISSUE_ASSIGNED: IssueAssignedEvent,
    NotificationType.MESSAGE_RECEIVED: MessageReceivedEvent,
    NotificationType.HELP_OFFER: HelpOfferEvent,
    NotificationType.HELP_REQUEST: HelpRequestEvent,
    NotificationType.HELP_RESPONSE: HelpResponseEvent,
}


@dataclass(frozen=True)
class RealtimeEvent:
    """A validated server -> client event"""

    type: NotificationType
    payload: EventModel
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def counterpart_id(self) -> str | None:
        """The other user this event is about"""
        if isinstance(self.payload, MessageReceivedEvent):
            return self.payload.sender.id
        if isinstance(self.payload, IssueAssignedEvent):
            return self.payload.assigned_by.id if self.payload.assigned_by else None
        return self.payload.from_.id

    @property
    def issue_id(self) -> str | None:
        return self.payload.issue_id


@dataclass(frozen=True)
class Notification:
    """One entry of the notification feed; replaced, never mutated"""

    id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any]
    created_at: datetime
    read: bool = False
    counterpart_id: str | None = None
    issue_id: str | None = None
    # Set on help:request entries once answered
    status: HelpOutcome | None = None

    @property
    def is_pending_help_request(self) -> bool:
        return self.type is NotificationType.HELP_REQUEST and self.status is None


@dataclass(frozen=True)
class NotificationFeed:
    """Immutable snapshot of the feed, newest entry first"""

    notifications: tuple[Notification, ...] = ()

    @property
    def unread(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def __len__(self) -> int:
        return len(self.notifications)
