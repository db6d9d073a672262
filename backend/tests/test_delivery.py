"""Tests for the direct message delivery state machine."""

from __future__ import annotations

import pytest

from app.services import SqlChatStore
from zap.realtime.auth import ConnectionAuthenticator
from zap.realtime.coordinator import ConnectionSession
from zap.realtime.delivery import DeliveryState, state_of
from zap.realtime.managers import RealtimeContext
from zap.realtime.schemas import Identity

from conftest import SECRET, DummyWebSocket, make_token

ALICE = Identity(user_id="alice", username="Alice")
BOB = Identity(user_id="bob", username="Bob")


class HookedStore(SqlChatStore):
    """Store that runs a one-shot coroutine right after a chosen operation."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.hooks = {}

    async def _fire(self, operation: str) -> None:
        hook = self.hooks.pop(operation, None)
        if hook is not None:
            await hook()

    async def create_direct_message(self, sender_id, receiver_id, content):
        message = await super().create_direct_message(sender_id, receiver_id, content)
        await self._fire("create_direct_message")
        return message

    async def mark_delivered(self, message_ids, *, receiver_id=None):
        claimed = await super().mark_delivered(message_ids, receiver_id=receiver_id)
        await self._fire("mark_delivered")
        return claimed


@pytest.fixture()
def hooked(session_factory) -> RealtimeContext:
    return RealtimeContext(
        store=HookedStore(session_factory),
        authenticator=ConnectionAuthenticator(SECRET),
    )


@pytest.mark.anyio("asyncio")
async def test_offline_receiver_keeps_message_pending(realtime, store) -> None:
    message = await store.create_direct_message("alice", "bob", "hi")

    outcome = await realtime.delivery.on_send(message, sender_username="Alice")

    assert outcome.state is DeliveryState.PENDING
    assert outcome.receiver_connection is None
    assert outcome.receipts == []
    assert [pending.id for pending in await store.get_undelivered("bob")] == [message.id]


@pytest.mark.anyio("asyncio")
async def test_online_receiver_marks_delivered(realtime, store, connect) -> None:
    bob_session, bob_ws = await connect("bob", "Bob")
    message = await store.create_direct_message("alice", "bob", "hi")

    outcome = await realtime.delivery.on_send(message, sender_username="Alice")

    assert outcome.state is DeliveryState.DELIVERED
    assert outcome.receiver_connection == bob_session.connection_id
    assert state_of(outcome.message) is DeliveryState.DELIVERED
    assert [(receipt.user_id, receipt.event) for receipt in outcome.receipts] == [
        ("alice", "message_delivered")
    ]
    assert outcome.receipts[0].data == {"messageId": message.id, "to": "bob"}
    assert await store.get_undelivered("bob") == []
    [received] = bob_ws.events("receive_message")
    assert received["id"] == message.id
    assert received["senderUsername"] == "Alice"


@pytest.mark.anyio("asyncio")
async def test_receiver_viewing_sender_marks_seen(realtime, store, connect) -> None:
    await connect("bob", "Bob")
    await realtime.delivery.open_conversation(BOB, "alice")
    message = await store.create_direct_message("alice", "bob", "hi")

    outcome = await realtime.delivery.on_send(message, sender_username="Alice")

    assert outcome.state is DeliveryState.SEEN
    assert outcome.message.delivered is True and outcome.message.seen is True
    assert outcome.receipts[0].event == "messages_seen"
    assert outcome.receipts[0].data == {"by": "bob", "chatWith": "alice"}


@pytest.mark.anyio("asyncio")
async def test_flush_pending_on_connect(realtime, store, connect) -> None:
    _, alice_ws = await connect("alice", "Alice")
    first = await store.create_direct_message("alice", "bob", "one")
    second = await store.create_direct_message("alice", "bob", "two")
    alice_ws.clear()

    _, bob_ws = await connect("bob", "Bob")

    received = bob_ws.events("receive_message")
    assert [message["id"] for message in received] == [first.id, second.id]
    assert all(message["delivered"] is True for message in received)
    assert all(message["senderUsername"] == "Alice" for message in received)
    assert await store.get_undelivered("bob") == []
    assert alice_ws.events("message_delivered") == [
        {"messageId": first.id, "to": "bob"},
        {"messageId": second.id, "to": "bob"},
    ]


@pytest.mark.anyio("asyncio")
async def test_flush_pending_with_sender_offline(realtime, store, connect) -> None:
    await store.create_direct_message("alice", "bob", "one")

    _, bob_ws = await connect("bob", "Bob")

    [received] = bob_ws.events("receive_message")
    # Senders missing from the users directory fall back to their id.
    assert received["senderUsername"] == "alice"
    assert await store.get_undelivered("bob") == []


@pytest.mark.anyio("asyncio")
async def test_mark_seen_notifies_peer(realtime, store, connect) -> None:
    _, alice_ws = await connect("alice", "Alice")
    await store.create_direct_message("alice", "bob", "one")
    await store.create_direct_message("alice", "bob", "two")

    updated = await realtime.delivery.mark_seen(BOB, "alice")

    assert updated == 2
    assert alice_ws.events("messages_seen") == [
        {"by": "bob", "byUsername": "Bob", "chatWith": "alice"}
    ]
    conversation = await store.get_conversation("alice", "bob")
    assert all(message.seen and message.delivered for message in conversation)


@pytest.mark.anyio("asyncio")
async def test_open_conversation_without_peer_clears_tracker(realtime) -> None:
    await realtime.delivery.open_conversation(BOB, "alice")
    assert realtime.active.is_viewing("bob", "alice")

    await realtime.delivery.open_conversation(BOB, None)

    assert realtime.active.get("bob") is None


@pytest.mark.anyio("asyncio")
async def test_acknowledge_only_by_receiver(realtime, store, connect) -> None:
    _, alice_ws = await connect("alice", "Alice")
    message = await store.create_direct_message("alice", "bob", "hi")

    assert await realtime.delivery.acknowledge(ALICE, message.id) is False
    assert alice_ws.events("message_delivered") == []

    assert await realtime.delivery.acknowledge(BOB, message.id) is True
    assert alice_ws.events("message_delivered") == [{"messageId": message.id, "to": "bob"}]

    assert await realtime.delivery.acknowledge(BOB, message.id) is False


@pytest.mark.anyio("asyncio")
async def test_receiver_coming_online_mid_send_gets_message_once(hooked, connect) -> None:
    alice_session, alice_ws = await connect("alice", "Alice", context=hooked)
    sockets = {}

    async def bring_bob_online() -> None:
        _, sockets["bob"] = await connect("bob", "Bob", context=hooked)

    hooked.store.hooks["create_direct_message"] = bring_bob_online
    message = await hooked.router.send(ALICE, "bob", "hi", reply_to=alice_session.connection_id)

    received = sockets["bob"].events("receive_message")
    assert [frame["id"] for frame in received] == [message.id]
    assert received[0]["senderUsername"] == "Alice"
    assert alice_ws.events("message_delivered") == [{"messageId": message.id, "to": "bob"}]
    assert await hooked.store.get_undelivered("bob") == []


@pytest.mark.anyio("asyncio")
async def test_receiver_dropping_mid_send_keeps_message_pending(hooked, connect) -> None:
    alice_session, alice_ws = await connect("alice", "Alice", context=hooked)
    bob_session, bob_ws = await connect("bob", "Bob", context=hooked)

    hooked.store.hooks["mark_delivered"] = bob_session.close
    message = await hooked.router.send(ALICE, "bob", "hi", reply_to=alice_session.connection_id)

    assert bob_ws.events("receive_message") == []
    assert alice_ws.events("message_delivered") == []
    assert [pending.id for pending in await hooked.store.get_undelivered("bob")] == [message.id]

    _, reconnected_ws = await connect("bob", "Bob", context=hooked)

    assert [frame["id"] for frame in reconnected_ws.events("receive_message")] == [message.id]
    assert alice_ws.events("message_delivered") == [{"messageId": message.id, "to": "bob"}]


@pytest.mark.anyio("asyncio")
async def test_flush_to_closed_socket_keeps_messages_pending(realtime, store, connect) -> None:
    _, alice_ws = await connect("alice", "Alice")
    first = await store.create_direct_message("alice", "bob", "one")
    second = await store.create_direct_message("alice", "bob", "two")

    websocket = DummyWebSocket()
    await websocket.close()
    session = ConnectionSession(realtime, websocket)  # type: ignore[arg-type]
    await session.authenticate(make_token("bob", "Bob"))
    await session.activate()

    assert websocket.events("receive_message") == []
    assert alice_ws.events("message_delivered") == []
    pending = await store.get_undelivered("bob")
    assert [message.id for message in pending] == [first.id, second.id]
