"""Error taxonomy shared by the realtime components."""

from __future__ import annotations

from enum import Enum


class RealtimeError(Exception):
    """Base class for errors reported back to a connection."""

    default_message = "Realtime error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthFailure(str, Enum):
    """Reasons a connection credential can be rejected."""

    MISSING = "missing"
    INVALID = "invalid"
    EXPIRED = "expired"


_AUTH_MESSAGES: dict[AuthFailure, str] = {
    AuthFailure.MISSING: "Authentication required",
    AuthFailure.INVALID: "Invalid token",
    AuthFailure.EXPIRED: "Token expired",
}


class AuthError(RealtimeError):
    """Raised when a connection cannot be authenticated. Always fatal."""

    def __init__(self, kind: AuthFailure) -> None:
        self.kind = kind
        super().__init__(_AUTH_MESSAGES[kind])


class RouteError(RealtimeError):
    """Recoverable failure while routing a direct message."""


class InvalidContentError(RouteError):
    default_message = "Invalid message data"


class GroupError(RealtimeError):
    """Recoverable failure while handling a group action."""


class NotAMemberError(GroupError):
    default_message = "You are not a member of this group"


class NotAdminError(GroupError):
    default_message = "Only admins can manage members"


class SelfRemovalError(GroupError):
    default_message = "Use leave group to remove yourself"


class ContentTooLongError(GroupError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Message too long (max {limit} characters)")


class GroupNotFoundError(GroupError):
    default_message = "Group not found"


class StoreError(Exception):
    """Persistence failure surfaced by a store implementation."""


__all__ = [
    "AuthError",
    "AuthFailure",
    "ContentTooLongError",
    "GroupError",
    "GroupNotFoundError",
    "InvalidContentError",
    "NotAMemberError",
    "NotAdminError",
    "RealtimeError",
    "RouteError",
    "SelfRemovalError",
    "StoreError",
]
