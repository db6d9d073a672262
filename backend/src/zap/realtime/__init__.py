"""Realtime messaging core: presence, direct delivery and group rooms."""

from .coordinator import ConnectionSession, ConnectionState  # noqa: F401
from .managers import (  # noqa: F401
    RealtimeContext,
    configure_realtime,
    get_realtime,
    shutdown_realtime,
)

__all__ = [
    "ConnectionSession",
    "ConnectionState",
    "RealtimeContext",
    "configure_realtime",
    "get_realtime",
    "shutdown_realtime",
]
