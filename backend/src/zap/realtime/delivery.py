"""Delivery and read-receipt lifecycle of direct messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .presence import ActiveConversationTracker, PresenceRegistry
from .schemas import DirectMessage, Identity
from .store import MessageStore
from .transport import ConnectionHub

logger = logging.getLogger(__name__)


class DeliveryState(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    SEEN = "seen"


@dataclass(slots=True)
class Receipt:
    """Outbound notification owed to a user once a message is dispatched."""

    user_id: str
    event: str
    data: dict[str, Any]


@dataclass(slots=True)
class DeliveryOutcome:
    message: DirectMessage
    state: DeliveryState
    receiver_connection: str | None = None
    receipts: list[Receipt] = field(default_factory=list)


def state_of(message: DirectMessage) -> DeliveryState:
    if message.seen:
        return DeliveryState.SEEN
    if message.delivered:
        return DeliveryState.DELIVERED
    return DeliveryState.PENDING


def message_payload(message: DirectMessage, sender_username: str) -> dict[str, Any]:
    """Wire shape of ``receive_message``, shared by live sends and flushes."""

    return {**message.to_wire(), "senderUsername": sender_username}


class DeliveryStateMachine:
    """Advance direct messages through pending -> delivered -> seen.

    Delivery is claimed in the store before a message is pushed, and the claim
    is released when the push fails. Only the claimant pushes, so a message
    reaches the receiver once even when a live send races the pending flush.
    """

    def __init__(
        self,
        store: MessageStore,
        presence: PresenceRegistry,
        active: ActiveConversationTracker,
        hub: ConnectionHub,
    ) -> None:
        self._store = store
        self._presence = presence
        self._active = active
        self._hub = hub

    async def on_send(self, message: DirectMessage, *, sender_username: str) -> DeliveryOutcome:
        """Push a freshly persisted message to its receiver if they are online."""

        sender_id = message.sender_id
        receiver_id = message.receiver_id
        receiver_connection = self._presence.lookup(receiver_id)
        if receiver_connection is None:
            return DeliveryOutcome(message=message, state=DeliveryState.PENDING)

        claimed = await self._store.mark_delivered([message.id], receiver_id=receiver_id)
        if not claimed:
            # A pending flush got there first and owns the push and the receipt.
            return DeliveryOutcome(message=message, state=state_of(message))

        viewing = self._active.is_viewing(receiver_id, sender_id)
        advanced = message.model_copy(update={"delivered": True, "seen": viewing})
        pushed = await self._hub.emit(
            receiver_connection, "receive_message", message_payload(advanced, sender_username)
        )
        if not pushed:
            await self._store.release_delivered([message.id], receiver_id=receiver_id)
            logger.info("Receiver %s dropped; message %s stays pending", receiver_id, message.id)
            return DeliveryOutcome(message=message, state=DeliveryState.PENDING)

        if viewing:
            await self._store.mark_seen(sender_id, receiver_id)
            receipt = Receipt(
                user_id=sender_id,
                event="messages_seen",
                data={"by": receiver_id, "chatWith": sender_id},
            )
            return DeliveryOutcome(
                message=advanced,
                state=DeliveryState.SEEN,
                receiver_connection=receiver_connection,
                receipts=[receipt],
            )

        receipt = Receipt(
            user_id=sender_id,
            event="message_delivered",
            data={"messageId": message.id, "to": receiver_id},
        )
        return DeliveryOutcome(
            message=advanced,
            state=DeliveryState.DELIVERED,
            receiver_connection=receiver_connection,
            receipts=[receipt],
        )

    async def dispatch_receipts(self, receipts: list[Receipt]) -> None:
        for receipt in receipts:
            connection_id = self._presence.lookup(receipt.user_id)
            if connection_id is not None:
                await self._hub.emit(connection_id, receipt.event, receipt.data)

    async def flush_pending(self, user_id: str, connection_id: str) -> int:
        """Push every undelivered message to a user who just came online.

        Returns how many messages reached the connection. Messages left unsent
        by a dropped connection go back to pending for the next flush.
        """

        pending = await self._store.get_undelivered(user_id)
        if not pending:
            return 0

        claimed = await self._store.mark_delivered(
            [message.id for message in pending], receiver_id=user_id
        )
        claimed_ids = {message.id for message in claimed}
        batch = [
            message.model_copy(update={"delivered": True})
            for message in pending
            if message.id in claimed_ids
        ]
        if not batch:
            return 0

        usernames = await self._store.get_usernames({message.sender_id for message in batch})
        logger.info("Sending %d pending messages to %s", len(batch), user_id)
        sent: list[DirectMessage] = []
        for index, message in enumerate(batch):
            payload = message_payload(message, usernames.get(message.sender_id, message.sender_id))
            if not await self._hub.emit(connection_id, "receive_message", payload):
                unsent = batch[index:]
                logger.info(
                    "Connection %s dropped during flush; %d messages stay pending",
                    connection_id,
                    len(unsent),
                )
                await self._store.release_delivered(
                    [message.id for message in unsent], receiver_id=user_id
                )
                break
            sent.append(message)

        await self.dispatch_receipts(
            [
                Receipt(
                    user_id=message.sender_id,
                    event="message_delivered",
                    data={"messageId": message.id, "to": user_id},
                )
                for message in sent
            ]
        )
        return len(sent)

    async def mark_seen(self, viewer: Identity, peer_id: str) -> int:
        """Flip every message from ``peer_id`` to ``viewer`` to seen."""

        updated = await self._store.mark_seen(peer_id, viewer.user_id)
        await self.dispatch_receipts(
            [
                Receipt(
                    user_id=peer_id,
                    event="messages_seen",
                    data={
                        "by": viewer.user_id,
                        "byUsername": viewer.username,
                        "chatWith": peer_id,
                    },
                )
            ]
        )
        return updated

    async def open_conversation(self, viewer: Identity, peer_id: str | None) -> None:
        """Track the conversation a user has open; opening one marks it seen."""

        if not peer_id:
            self._active.clear_active(viewer.user_id)
            return
        self._active.set_active(viewer.user_id, peer_id)
        await self.mark_seen(viewer, peer_id)

    async def acknowledge(self, receiver: Identity, message_id: str) -> bool:
        """Handle an explicit delivery acknowledgement from the receiver."""

        messages = await self._store.mark_delivered([message_id], receiver_id=receiver.user_id)
        if not messages:
            return False
        await self.dispatch_receipts(
            [
                Receipt(
                    user_id=message.sender_id,
                    event="message_delivered",
                    data={"messageId": message.id, "to": receiver.user_id},
                )
                for message in messages
            ]
        )
        return True


__all__ = [
    "DeliveryOutcome",
    "DeliveryState",
    "DeliveryStateMachine",
    "Receipt",
    "message_payload",
    "state_of",
]
