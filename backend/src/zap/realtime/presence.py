"""Process-local presence and active conversation state."""

from __future__ import annotations

from typing import Dict


class PresenceRegistry:
    """Single source of truth for which user is reachable on which connection.

    Registration is last-write-wins: a second ``set_online`` for the same user
    replaces the previous connection id and returns it so the caller can deal
    with the displaced connection.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, str] = {}

    def set_online(self, user_id: str, connection_id: str) -> str | None:
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection_id
        if previous == connection_id:
            return None
        return previous

    def remove(self, user_id: str, connection_id: str | None = None) -> bool:
        """Drop the user's registration.

        When ``connection_id`` is given the entry is only removed if it still
        points at that connection, so a displaced connection cannot evict its
        replacement.
        """

        current = self._connections.get(user_id)
        if current is None:
            return False
        if connection_id is not None and current != connection_id:
            return False
        del self._connections[user_id]
        return True

    def lookup(self, user_id: str) -> str | None:
        return self._connections.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def all_online(self) -> set[str]:
        return set(self._connections)

    def __len__(self) -> int:
        return len(self._connections)


class ActiveConversationTracker:
    """Remembers which peer each user currently has open."""

    def __init__(self) -> None:
        self._active: Dict[str, str] = {}

    def set_active(self, user_id: str, peer_id: str) -> None:
        self._active[user_id] = peer_id

    def clear_active(self, user_id: str) -> bool:
        return self._active.pop(user_id, None) is not None

    def get(self, user_id: str) -> str | None:
        return self._active.get(user_id)

    def is_viewing(self, user_id: str, peer_id: str) -> bool:
        return self._active.get(user_id) == peer_id


__all__ = ["ActiveConversationTracker", "PresenceRegistry"]
