"""Tests for the notification feed and help request reconciliation."""

from unittest.mock import AsyncMock

import pytest

from fixit_client.models import (
    HelpOutcome,
    HelpRequestEvent,
    HelpResponseEvent,
    IssueAssignedEvent,
    MessageReceivedEvent,
    NotificationFeed,
    NotificationType,
    Party,
    RealtimeEvent,
)
from fixit_client.services.notifications import (
    NotificationCenter,
    apply_help_outcome,
    build_notification,
    ingest,
    mark_all_read,
)


def help_request(from_id="2", issue_id="5", name="Henry"):
    return RealtimeEvent(
        type=NotificationType.HELP_REQUEST,
        payload=HelpRequestEvent(from_=Party(id=from_id, name=name), issue_id=issue_id),
    )


def help_response(from_id="2", issue_id="5", accepted=True, name="Henry"):
    return RealtimeEvent(
        type=NotificationType.HELP_RESPONSE,
        payload=HelpResponseEvent(
            from_=Party(id=from_id, name=name), issue_id=issue_id, accepted=accepted
        ),
    )


def message(sender_id="3", text="hello"):
    return RealtimeEvent(
        type=NotificationType.MESSAGE_RECEIVED,
        payload=MessageReceivedEvent(sender=Party(id=sender_id, name="Sam"), message=text),
    )


def feed_of(*events):
    feed = NotificationFeed()
    for event in events:
        feed = ingest(feed, event)
    return feed


class TestBuildNotification:
    def test_titles(self):
        assigned = RealtimeEvent(
            type=NotificationType.ISSUE_ASSIGNED,
            payload=IssueAssignedEvent(issue_id="5", issue_title="VPN down"),
        )
        assert build_notification(assigned).title == "New Issue Assigned"
        assert build_notification(message()).title == "New message from Sam"
        assert build_notification(help_request()).message == "Henry is asking for help"
        declined = build_notification(help_response(accepted=False))
        assert declined.title == "Help Declined"
        assert declined.message == "Henry declined your help request"

    def test_new_notification_is_unread(self):
        notification = build_notification(message())
        assert not notification.read
        assert notification.data["sender"] == {"id": "3", "name": "Sam"}


class TestIngest:
    def test_newest_first_and_unread_derived(self):
        feed = feed_of(message(text="one"), message(text="two"))
        assert [n.message for n in feed.notifications] == ["two", "one"]
        assert feed.unread == 2

    def test_input_feed_is_not_mutated(self):
        before = feed_of(message())
        after = ingest(before, message())
        assert len(before) == 1
        assert len(after) == 2

    def test_mark_all_read_then_ingest_leaves_one_unread(self):
        feed = mark_all_read(feed_of(message(), help_request()))
        assert feed.unread == 0

        feed = ingest(feed, message())
        assert feed.unread == 1

    def test_response_reconciles_matching_request(self):
        feed = feed_of(help_request(), help_response(accepted=True))

        requests = [n for n in feed.notifications if n.type is NotificationType.HELP_REQUEST]
        assert len(requests) == 1
        assert requests[0].status is HelpOutcome.ACCEPTED
        assert requests[0].read

        accepted = [n for n in feed.notifications if n.status is HelpOutcome.ACCEPTED]
        assert len(accepted) == 1

    def test_response_only_matches_same_issue_and_counterpart(self):
        feed = feed_of(
            help_request(from_id="2", issue_id="5"),
            help_request(from_id="4", issue_id="5"),
            help_request(from_id="2", issue_id="6"),
            help_response(from_id="2", issue_id="5", accepted=False),
        )
        statuses = {
            (n.counterpart_id, n.issue_id): n.status
            for n in feed.notifications
            if n.type is NotificationType.HELP_REQUEST
        }
        assert statuses == {
            ("2", "5"): HelpOutcome.DECLINED,
            ("4", "5"): None,
            ("2", "6"): None,
        }

    def test_duplicate_requests_only_newest_is_answered(self):
        feed = feed_of(help_request(), help_request(), help_response())
        requests = [n for n in feed.notifications if n.type is NotificationType.HELP_REQUEST]
        assert [r.status for r in requests] == [HelpOutcome.ACCEPTED, None]

    def test_response_without_request_is_kept_standalone(self):
        feed = feed_of(help_response())
        assert len(feed) == 1
        assert feed.notifications[0].type is NotificationType.HELP_RESPONSE
        assert feed.unread == 1

    def test_apply_help_outcome_reports_miss(self):
        feed = feed_of(message())
        updated, matched = apply_help_outcome(feed, "2", "5", True)
        assert not matched
        assert updated is feed


class TestNotificationCenter:
    @pytest.fixture
    def emitter(self):
        emitter = AsyncMock()
        emitter.emit = AsyncMock()
        return emitter

    @pytest.fixture
    def center(self, emitter):
        return NotificationCenter(emitter=emitter)

    @pytest.mark.asyncio
    async def test_respond_to_help_annotates_pending_request(self, center, emitter):
        center.ingest(help_request(from_id="2", issue_id="5"))

        await center.respond_to_help("2", "5", accepted=True, note="on my way")

        emitter.emit.assert_awaited_once_with(
            "help:respond",
            {"toUserId": "2", "issueId": "5", "accepted": True, "note": "on my way"},
        )
        assert len(center.notifications) == 1
        assert center.notifications[0].status is HelpOutcome.ACCEPTED
        assert center.unread == 0

    @pytest.mark.asyncio
    async def test_respond_to_help_miss_adds_standalone_entry(self, center):
        center.ingest(message())
        unread_before = center.unread

        await center.respond_to_help("7", "42", accepted=False)

        assert center.notifications[0].type is NotificationType.HELP_RESPONSE
        assert center.notifications[0].status is HelpOutcome.DECLINED
        assert center.unread == unread_before + 1

    @pytest.mark.asyncio
    async def test_emit_failure_leaves_feed_untouched(self, center, emitter):
        center.ingest(help_request())
        emitter.emit.side_effect = ConnectionError("socket closed")

        with pytest.raises(ConnectionError):
            await center.respond_to_help("2", "5", accepted=True)

        assert center.notifications[0].is_pending_help_request

    def test_mark_all_read(self, center):
        center.ingest(message())
        center.ingest(message())
        center.mark_all_read()
        assert center.unread == 0

    def test_listeners_receive_snapshots(self, center):
        seen = []
        unsubscribe = center.subscribe(lambda feed: seen.append(len(feed)))
        center.ingest(message())
        unsubscribe()
        center.ingest(message())
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_no_updates_after_close(self, center):
        center.ingest(message())
        center.close()

        center.ingest(message())
        center.mark_all_read()
        await center.respond_to_help("2", "5", accepted=True)

        assert not center.is_live
        assert len(center.notifications) == 1
        assert center.unread == 1

    @pytest.mark.asyncio
    async def test_closed_session_does_not_answer_help(self, center, emitter):
        center.ingest(help_request(from_id="2", issue_id="5"))
        center.close()

        feed = await center.respond_to_help("2", "5", accepted=True)

        emitter.emit.assert_not_awaited()
        assert feed.notifications[0].is_pending_help_request
