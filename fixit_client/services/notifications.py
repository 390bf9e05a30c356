"""Notification feed and reconciliation of help requests with their responses"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from fixit_client.models import (
    HelpOfferEvent,
    HelpOutcome,
    HelpRequestEvent,
    HelpResponseEvent,
    IssueAssignedEvent,
    MessageReceivedEvent,
    Notification,
    NotificationFeed,
    NotificationType,
    RealtimeEvent,
)

logger = logging.getLogger(__name__)

FeedUpdate = Callable[[NotificationFeed], NotificationFeed]


class EventEmitter(Protocol):
    async def emit(self, event: str, data: dict[str, Any]) -> None: ...


def _describe(event: RealtimeEvent) -> tuple[str, str]:
    """Title and message shown for an incoming event"""
    payload = event.payload
    if isinstance(payload, IssueAssignedEvent):
        suffix = f": {payload.issue_title}" if payload.issue_title else ""
        return "New Issue Assigned", f"You were assigned to an issue{suffix}"
    if isinstance(payload, MessageReceivedEvent):
        return (
            f"New message from {payload.sender.name or 'user'}",
            payload.message or "You have a new message",
        )
    if isinstance(payload, HelpOfferEvent):
        return "Offer to Help", f"{payload.from_.name or 'A user'} wants to help on your issue"
    if isinstance(payload, HelpRequestEvent):
        return "Help Requested", f"{payload.from_.name or 'A user'} is asking for help"
    if isinstance(payload, HelpResponseEvent):
        verb = "accepted" if payload.accepted else "declined"
        return (
            f"Help {verb.capitalize()}",
            f"{payload.from_.name or 'User'} {verb} your help request",
        )
    return "Notification", ""


def build_notification(event: RealtimeEvent) -> Notification:
    title, message = _describe(event)
    return Notification(
        id=str(uuid4()),
        type=event.type,
        title=title,
        message=message,
        data=event.payload.model_dump(by_alias=True, mode="json"),
        created_at=event.received_at,
        counterpart_id=event.counterpart_id,
        issue_id=event.issue_id,
    )


def prepend(feed: NotificationFeed, notification: Notification) -> NotificationFeed:
    return NotificationFeed(notifications=(notification, *feed.notifications))


def apply_help_outcome(
    feed: NotificationFeed, counterpart_id: str, issue_id: str, accepted: bool
) -> tuple[NotificationFeed, bool]:
    """Annotate the newest pending help request for (counterpart, issue).

    Returns the new feed and whether a request was found. Only one entry is
    touched, so a second response for the same pair finds nothing pending.
    """
    outcome = HelpOutcome.from_accepted(accepted)
    entries = list(feed.notifications)
    for index, entry in enumerate(entries):
        if (
            entry.is_pending_help_request
            and entry.counterpart_id == counterpart_id
            and entry.issue_id == issue_id
        ):
            entries[index] = replace(entry, status=outcome, read=True)
            return NotificationFeed(notifications=tuple(entries)), True
    return feed, False


def ingest(feed: NotificationFeed, event: RealtimeEvent) -> NotificationFeed:
    """Add an incoming event to the feed, reconciling help responses"""
    updated = prepend(feed, build_notification(event))

    if event.type is NotificationType.HELP_RESPONSE:
        payload = event.payload
        updated, matched = apply_help_outcome(
            updated, payload.from_.id, payload.issue_id, payload.accepted
        )
        if not matched:
            logger.info(
                f"help:response from {payload.from_.id} for issue "
                f"{payload.issue_id} has no pending request, kept standalone"
            )
    return updated


def mark_all_read(feed: NotificationFeed) -> NotificationFeed:
    if feed.unread == 0:
        return feed
    return NotificationFeed(
        notifications=tuple(
            n if n.read else replace(n, read=True) for n in feed.notifications
        )
    )


def record_outgoing_response(
    feed: NotificationFeed,
    target_user_id: str,
    issue_id: str,
    accepted: bool,
    note: str | None = None,
) -> NotificationFeed:
    """Reflect a response we sent: annotate the request, or keep a standalone entry"""
    updated, matched = apply_help_outcome(feed, target_user_id, issue_id, accepted)
    if matched:
        return updated

    verb = "accepted" if accepted else "declined"
    return prepend(
        feed,
        Notification(
            id=str(uuid4()),
            type=NotificationType.HELP_RESPONSE,
            title=f"Help {verb.capitalize()}",
            message=f"You {verb} a help request",
            data={
                "toUserId": target_user_id,
                "issueId": issue_id,
                "accepted": accepted,
                "note": note,
            },
            created_at=datetime.now(UTC),
            counterpart_id=target_user_id,
            issue_id=issue_id,
            status=HelpOutcome.from_accepted(accepted),
        ),
    )


class NotificationCenter:
    """
    Owns the feed snapshot for one logged-in session.

    Every change goes through ``apply`` with a pure update function, so each
    update sees the latest snapshot even when events arrive in bursts. After
    ``close`` the session is dead and late updates (for example an
    optimistic update finishing after logout) are ignored.
    """

    def __init__(self, emitter: EventEmitter | None = None):
        self.emitter = emitter
        self._feed = NotificationFeed()
        self._live = True
        self._listeners: list[Callable[[NotificationFeed], None]] = []

    @property
    def feed(self) -> NotificationFeed:
        return self._feed

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return self._feed.notifications

    @property
    def unread(self) -> int:
        return self._feed.unread

    @property
    def is_live(self) -> bool:
        return self._live

    def subscribe(self, listener: Callable[[NotificationFeed], None]) -> Callable[[], None]:
        """Call listener with every new snapshot; returns an unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(self, update: FeedUpdate) -> NotificationFeed:
        if not self._live:
            logger.debug("Notification session closed, ignoring update")
            return self._feed

        new_feed = update(self._feed)
        if new_feed is not self._feed:
            self._feed = new_feed
            for listener in list(self._listeners):
                listener(new_feed)
        return self._feed

    def ingest(self, event: RealtimeEvent) -> NotificationFeed:
        return self.apply(lambda feed: ingest(feed, event))

    def mark_all_read(self) -> NotificationFeed:
        return self.apply(mark_all_read)

    async def respond_to_help(
        self,
        target_user_id: str,
        issue_id: str,
        accepted: bool,
        note: str | None = None,
    ) -> NotificationFeed:
        """Answer a help request and optimistically record the outcome locally.

        Transport failures from the emitter propagate to the caller and
        leave the feed untouched.
        """
        if not self._live:
            logger.debug(
                f"Notification session closed, not answering help for issue {issue_id}"
            )
            return self._feed
        if self.emitter is None:
            raise RuntimeError("NotificationCenter has no realtime emitter")

        await self.emitter.emit(
            "help:respond",
            {
                "toUserId": target_user_id,
                "issueId": issue_id,
                "accepted": accepted,
                "note": note,
            },
        )
        return self.apply(
            lambda feed: record_outgoing_response(
                feed, target_user_id, issue_id, accepted, note
            )
        )

    def close(self) -> None:
        self._live = False
        self._listeners.clear()
