"""Routing of direct (1:1) messages and typing indicators."""

from __future__ import annotations

import logging

from .delivery import DeliveryStateMachine, message_payload
from .errors import InvalidContentError
from .presence import PresenceRegistry
from .schemas import DirectMessage, Identity
from .store import MessageStore
from .transport import ConnectionHub

logger = logging.getLogger(__name__)


class DirectMessageRouter:
    """Persist, advance and dispatch direct messages."""

    def __init__(
        self,
        store: MessageStore,
        delivery: DeliveryStateMachine,
        presence: PresenceRegistry,
        hub: ConnectionHub,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._presence = presence
        self._hub = hub

    async def send(
        self,
        sender: Identity,
        receiver_id: str,
        content: str,
        *,
        reply_to: str | None = None,
    ) -> DirectMessage:
        """Send ``content`` from ``sender`` to ``receiver_id``.

        ``reply_to`` is the sender's own connection, which always receives the
        authoritative copy of the message. Nothing is emitted if persistence
        fails.
        """

        if not receiver_id or not content or not content.strip():
            raise InvalidContentError()

        message = await self._store.create_direct_message(sender.user_id, receiver_id, content)
        outcome = await self._delivery.on_send(message, sender_username=sender.username)
        logger.debug(
            "Message %s from %s to %s is %s",
            message.id,
            sender.user_id,
            receiver_id,
            outcome.state.value,
        )

        payload = message_payload(outcome.message, sender.username)
        sender_connection = reply_to or self._presence.lookup(sender.user_id)
        if sender_connection is not None and sender_connection != outcome.receiver_connection:
            await self._hub.emit(sender_connection, "receive_message", payload)

        await self._delivery.dispatch_receipts(outcome.receipts)
        return outcome.message

    async def relay_typing(self, sender: Identity, receiver_id: str, *, typing: bool) -> bool:
        if not receiver_id:
            return False
        connection_id = self._presence.lookup(receiver_id)
        if connection_id is None:
            return False
        if typing:
            return await self._hub.emit(connection_id, "user_typing", sender.to_public())
        return await self._hub.emit(
            connection_id, "user_stop_typing", {"userId": sender.user_id}
        )


__all__ = ["DirectMessageRouter"]
