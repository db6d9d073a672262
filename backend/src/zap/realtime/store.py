"""Interface of the durable message/group store consumed by the core.

Every call is a suspension point; implementations are expected to be atomic at
the single row or batch level and to raise :class:`~zap.realtime.errors.StoreError`
on persistence failure. The core never retries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol, Sequence

from .schemas import DirectMessage, Group, GroupMembership, GroupMessage, LeaveResult


class MessageStore(Protocol):
    async def upsert_user(self, user_id: str, username: str) -> None: ...

    async def create_direct_message(
        self, sender_id: str, receiver_id: str, content: str
    ) -> DirectMessage: ...

    async def get_undelivered(self, user_id: str) -> list[DirectMessage]: ...

    async def mark_delivered(
        self, message_ids: Sequence[str], *, receiver_id: str | None = None
    ) -> list[DirectMessage]: ...

    async def release_delivered(self, message_ids: Sequence[str], *, receiver_id: str) -> int: ...

    async def mark_seen(self, sender_id: str, receiver_id: str) -> int: ...

    async def get_conversation(self, user_id: str, other_user_id: str) -> list[DirectMessage]: ...

    async def create_group(
        self,
        creator_id: str,
        name: str,
        description: str | None = None,
        member_ids: Iterable[str] = (),
    ) -> Group: ...

    async def get_user_groups(self, user_id: str) -> list[Group]: ...

    async def get_group_by_id(self, group_id: str) -> Group | None: ...

    async def get_membership(self, group_id: str, user_id: str) -> GroupMembership | None: ...

    async def add_members(self, group_id: str, member_ids: Sequence[str]) -> list[str]: ...

    async def remove_member(self, group_id: str, user_id: str) -> bool: ...

    async def leave_group(self, group_id: str, user_id: str) -> LeaveResult: ...

    async def send_group_message(
        self, group_id: str, sender_id: str, content: str
    ) -> GroupMessage: ...

    async def create_system_message(
        self, group_id: str, actor_id: str, content: str
    ) -> GroupMessage: ...

    async def get_group_messages(
        self,
        group_id: str,
        user_id: str,
        *,
        limit: int = 50,
        before: datetime | None = None,
    ) -> list[GroupMessage]: ...

    async def get_usernames(self, user_ids: Iterable[str]) -> dict[str, str]: ...


__all__ = ["MessageStore"]
