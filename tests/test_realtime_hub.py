"""Tests for the realtime hub."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from fixit_api.auth import AuthenticatedUser
from fixit_api.services.realtime import RealtimeHub, ServerEvent


class FakeWebSocket:
    """Records frames sent by the hub."""

    def __init__(self):
        self.accept = AsyncMock()
        self.close = AsyncMock()
        self.sent = []

    async def send_json(self, frame):
        self.sent.append(frame)


async def drain():
    # Let sender tasks flush their outboxes
    for _ in range(5):
        await asyncio.sleep(0)


ALICE = AuthenticatedUser(user_id="1", name="Alice")
BOB = AuthenticatedUser(user_id="2", name="Bob")


@pytest.fixture
def hub():
    return RealtimeHub()


class TestConnections:
    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, hub):
        ws = FakeWebSocket()
        conn = await hub.connect(ws, ALICE)

        ws.accept.assert_awaited_once()
        assert hub.is_connected("1")
        assert hub.connected_user_count() == 1

        await hub.disconnect(conn)
        assert not hub.is_connected("1")
        assert conn.sender_task.cancelled()

    @pytest.mark.asyncio
    async def test_send_to_offline_user_is_dropped(self, hub):
        assert hub.send_to_user("42", ServerEvent.HELP_OFFER, {}) == 0

    @pytest.mark.asyncio
    async def test_every_session_of_a_user_receives(self, hub):
        first, second = FakeWebSocket(), FakeWebSocket()
        await hub.connect(first, BOB)
        await hub.connect(second, BOB)

        reached = hub.send_to_user("2", ServerEvent.MESSAGE_RECEIVED, {"message": "hi"})
        await drain()

        assert reached == 2
        assert first.sent == second.sent == [
            {"event": "message:received", "data": {"message": "hi"}}
        ]

    @pytest.mark.asyncio
    async def test_per_recipient_order_is_preserved(self, hub):
        ws = FakeWebSocket()
        await hub.connect(ws, BOB)

        for i in range(10):
            hub.send_to_user("2", ServerEvent.MESSAGE_RECEIVED, {"n": i})
        await drain()

        assert [f["data"]["n"] for f in ws.sent] == list(range(10))

    @pytest.mark.asyncio
    async def test_failed_send_unregisters_connection(self, hub):
        ws = FakeWebSocket()
        ws.send_json = AsyncMock(side_effect=RuntimeError("socket gone"))
        conn = await hub.connect(ws, BOB)

        assert hub.send_to_user("2", ServerEvent.MESSAGE_RECEIVED, {"message": "hi"}) == 1
        await drain()

        assert conn.sender_task.done()
        assert not hub.is_connected("2")
        assert hub.send_to_user("2", ServerEvent.MESSAGE_RECEIVED, {"message": "again"}) == 0

        # The receive loop still disconnects it later
        await hub.disconnect(conn)
        assert hub.connected_user_count() == 0

    @pytest.mark.asyncio
    async def test_failed_send_keeps_other_sessions(self, hub):
        broken, healthy = FakeWebSocket(), FakeWebSocket()
        broken.send_json = AsyncMock(side_effect=RuntimeError("socket gone"))
        await hub.connect(broken, BOB)
        await hub.connect(healthy, BOB)

        hub.send_to_user("2", ServerEvent.MESSAGE_RECEIVED, {"n": 1})
        await drain()

        assert hub.is_connected("2")
        assert hub.send_to_user("2", ServerEvent.MESSAGE_RECEIVED, {"n": 2}) == 1
        await drain()
        assert [f["data"]["n"] for f in healthy.sent] == [1, 2]

    @pytest.mark.asyncio
    async def test_close_all(self, hub):
        ws = FakeWebSocket()
        await hub.connect(ws, ALICE)
        await hub.close_all()
        ws.close.assert_awaited_once_with(code=1001)
        assert hub.connected_user_count() == 0


class TestHandleFrame:
    @pytest_asyncio.fixture
    async def peers(self, hub):
        alice_ws, bob_ws = FakeWebSocket(), FakeWebSocket()
        alice = await hub.connect(alice_ws, ALICE)
        await hub.connect(bob_ws, BOB)
        return alice, alice_ws, bob_ws

    @pytest.mark.asyncio
    async def test_message_is_forwarded_with_sender(self, hub, peers):
        alice, _, bob_ws = peers
        raw = json.dumps(
            {"event": "message:send", "data": {"toUserId": "2", "message": "hello", "issueId": "5"}}
        )

        assert hub.handle_frame(alice, raw) == 1
        await drain()

        frame = bob_ws.sent[0]
        assert frame["event"] == "message:received"
        assert frame["data"]["sender"] == {"id": "1", "name": "Alice"}
        assert frame["data"]["message"] == "hello"
        assert frame["data"]["issueId"] == "5"
        assert "sentAt" in frame["data"]

    @pytest.mark.asyncio
    async def test_help_ask_becomes_help_request(self, hub, peers):
        alice, _, bob_ws = peers
        hub.handle_frame(
            alice,
            json.dumps({"event": "help:ask", "data": {"toUserId": "2", "issueId": "5"}}),
        )
        await drain()
        assert bob_ws.sent[0]["event"] == "help:request"
        assert bob_ws.sent[0]["data"]["from"]["id"] == "1"

    @pytest.mark.asyncio
    async def test_help_respond_becomes_help_response(self, hub, peers):
        alice, _, bob_ws = peers
        hub.handle_frame(
            alice,
            json.dumps(
                {
                    "event": "help:respond",
                    "data": {"toUserId": "2", "issueId": "5", "accepted": False},
                }
            ),
        )
        await drain()
        assert bob_ws.sent[0] == {
            "event": "help:response",
            "data": {"from": {"id": "1", "name": "Alice"}, "issueId": "5", "accepted": False, "note": None},
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [
            "garbage",
            json.dumps({"event": "issue:delete", "data": {}}),
            json.dumps({"event": "message:send", "data": {"toUserId": "2"}}),
            json.dumps({"event": "help:respond", "data": {"toUserId": "2", "issueId": "5", "accepted": "yes"}}),
        ],
    )
    async def test_malformed_frames_are_dropped(self, hub, peers, raw):
        alice, _, bob_ws = peers
        assert hub.handle_frame(alice, raw) == 0
        await drain()
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_notify_issue_assigned(self, hub, peers):
        _, _, bob_ws = peers
        hub.notify_issue_assigned("2", 5, "VPN down", assigned_by=ALICE)
        await drain()
        assert bob_ws.sent[0] == {
            "event": "issue:assigned",
            "data": {
                "issueId": "5",
                "issueTitle": "VPN down",
                "assignedBy": {"id": "1", "name": "Alice"},
            },
        }
