"""Process-wide realtime state and its lifecycle helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .auth import ConnectionAuthenticator
from .delivery import DeliveryStateMachine
from .direct import DirectMessageRouter
from .presence import ActiveConversationTracker, PresenceRegistry
from .rooms import DEFAULT_GROUP_MESSAGE_MAX_LENGTH, GroupRoomManager
from .store import MessageStore
from .transport import ConnectionHub

logger = logging.getLogger(__name__)


@dataclass
class RealtimeContext:
    """Owner of every piece of shared runtime state.

    Handlers receive this object explicitly; nothing reaches the maps through
    module globals. A single process owns the state, it cannot be shared
    between instances.
    """

    store: MessageStore
    authenticator: ConnectionAuthenticator
    hub: ConnectionHub = field(default_factory=ConnectionHub)
    presence: PresenceRegistry = field(default_factory=PresenceRegistry)
    active: ActiveConversationTracker = field(default_factory=ActiveConversationTracker)
    group_message_max_length: int = DEFAULT_GROUP_MESSAGE_MAX_LENGTH
    delivery: DeliveryStateMachine = field(init=False)
    router: DirectMessageRouter = field(init=False)
    groups: GroupRoomManager = field(init=False)

    def __post_init__(self) -> None:
        self.delivery = DeliveryStateMachine(self.store, self.presence, self.active, self.hub)
        self.router = DirectMessageRouter(self.store, self.delivery, self.presence, self.hub)
        self.groups = GroupRoomManager(
            self.store,
            self.presence,
            self.hub,
            max_content_length=self.group_message_max_length,
        )


_context: RealtimeContext | None = None


def configure_realtime(
    store: MessageStore,
    *,
    secret_key: str,
    algorithm: str = "HS256",
    leeway_seconds: int = 0,
    group_message_max_length: int = DEFAULT_GROUP_MESSAGE_MAX_LENGTH,
) -> RealtimeContext:
    global _context
    _context = RealtimeContext(
        store=store,
        authenticator=ConnectionAuthenticator(
            secret_key, algorithm=algorithm, leeway_seconds=leeway_seconds
        ),
        group_message_max_length=group_message_max_length,
    )
    return _context


def get_realtime() -> RealtimeContext:
    if _context is None:
        raise RuntimeError("Realtime context has not been configured")
    return _context


async def shutdown_realtime() -> None:
    global _context
    if _context is None:
        return
    logger.info("Closing %d realtime connections", len(_context.hub.connection_ids()))
    await _context.hub.close_all(reason="Server shutting down")
    _context = None


__all__ = [
    "RealtimeContext",
    "configure_realtime",
    "get_realtime",
    "shutdown_realtime",
]
