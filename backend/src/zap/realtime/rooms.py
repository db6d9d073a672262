"""Group rooms: runtime subscriptions and authorised membership changes."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Set

from .errors import (
    ContentTooLongError,
    GroupNotFoundError,
    InvalidContentError,
    NotAMemberError,
    NotAdminError,
    SelfRemovalError,
)
from .presence import PresenceRegistry
from .schemas import Group, GroupMembership, GroupMessage, GroupRole, Identity
from .store import MessageStore
from .transport import ConnectionHub

logger = logging.getLogger(__name__)

DEFAULT_GROUP_MESSAGE_MAX_LENGTH = 5000

ADDED_TEMPLATE = "{actor} added {member} to the group"
REMOVED_TEMPLATE = "{actor} removed {member} from the group"
LEFT_TEMPLATE = "{member} left the group"


class RoomRegistry:
    """Runtime view of which connections listen to which group.

    Derived from persisted memberships and presence; rebuilt per connection by
    ``join_groups`` and never persisted.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = defaultdict(set)

    def join(self, group_id: str, connection_id: str) -> None:
        self._rooms[group_id].add(connection_id)

    def leave(self, group_id: str, connection_id: str) -> bool:
        members = self._rooms.get(group_id)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            self._rooms.pop(group_id, None)
        return True

    def discard_connection(self, connection_id: str) -> list[str]:
        left: list[str] = []
        for group_id in list(self._rooms):
            if self.leave(group_id, connection_id):
                left.append(group_id)
        return left

    def members(self, group_id: str) -> frozenset[str]:
        return frozenset(self._rooms.get(group_id, ()))

    def contains(self, group_id: str, connection_id: str) -> bool:
        return connection_id in self._rooms.get(group_id, ())

    def rooms_of(self, connection_id: str) -> list[str]:
        return [group_id for group_id, members in self._rooms.items() if connection_id in members]


def _require_membership(group: Group, user_id: str) -> GroupMembership:
    membership = group.membership(user_id)
    if membership is None:
        raise NotAMemberError()
    return membership


class GroupRoomManager:
    """Authorise group actions and keep room subscriptions consistent."""

    def __init__(
        self,
        store: MessageStore,
        presence: PresenceRegistry,
        hub: ConnectionHub,
        *,
        max_content_length: int = DEFAULT_GROUP_MESSAGE_MAX_LENGTH,
    ) -> None:
        self._store = store
        self._presence = presence
        self._hub = hub
        self._max_content_length = max_content_length
        self.rooms = RoomRegistry()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def join_groups(self, user: Identity, connection_id: str) -> list[str]:
        groups = await self._store.get_user_groups(user.user_id)
        group_ids = [group.id for group in groups]
        for group_id in group_ids:
            self.rooms.join(group_id, connection_id)
        await self._hub.emit(
            connection_id, "groups_joined", {"groupIds": group_ids, "count": len(group_ids)}
        )
        logger.info("User %s joined %d group rooms", user.user_id, len(group_ids))
        return group_ids

    def drop_connection(self, connection_id: str) -> list[str]:
        return self.rooms.discard_connection(connection_id)

    async def broadcast(
        self,
        group_id: str,
        event: str,
        data: dict,
        *,
        exclude: set[str] | None = None,
    ) -> int:
        return await self._hub.emit_many(
            self.rooms.members(group_id), event, data, exclude=exclude
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, sender: Identity, group_id: str, content: str) -> GroupMessage:
        if not group_id or not content or not content.strip():
            raise InvalidContentError()
        if len(content) > self._max_content_length:
            raise ContentTooLongError(self._max_content_length)

        membership = await self._store.get_membership(group_id, sender.user_id)
        if membership is None:
            raise NotAMemberError()

        message = await self._store.send_group_message(group_id, sender.user_id, content)
        payload = {
            **message.to_wire(),
            "senderUsername": sender.username,
            "sender": sender.to_public(),
        }
        await self.broadcast(group_id, "receive_group_message", payload)
        return message

    async def relay_typing(
        self, user: Identity, connection_id: str, group_id: str, *, typing: bool
    ) -> int:
        if not group_id or not self.rooms.contains(group_id, connection_id):
            return 0
        if typing:
            event = "group_user_typing"
            data = {"groupId": group_id, **user.to_public()}
        else:
            event = "group_user_stop_typing"
            data = {"groupId": group_id, "userId": user.user_id}
        return await self.broadcast(group_id, event, data, exclude={connection_id})

    async def _announce(self, group_id: str, actor: Identity, content: str) -> GroupMessage:
        message = await self._store.create_system_message(group_id, actor.user_id, content)
        payload = {
            **message.to_wire(),
            "senderUsername": actor.username,
            "sender": actor.to_public(),
        }
        await self.broadcast(group_id, "receive_group_message", payload)
        return message

    async def _display_name(self, user_id: str) -> str:
        names = await self._store.get_usernames([user_id])
        return names.get(user_id, user_id)

    # ------------------------------------------------------------------
    # Membership changes
    # ------------------------------------------------------------------

    async def _load_group(self, group_id: str) -> Group:
        group = await self._store.get_group_by_id(group_id)
        if group is None:
            raise GroupNotFoundError()
        return group

    async def add_member(self, actor: Identity, group_id: str, member_id: str) -> bool:
        if not group_id or not member_id:
            raise InvalidContentError("Invalid data")

        group = await self._load_group(group_id)
        membership = _require_membership(group, actor.user_id)
        if membership.role != GroupRole.ADMIN:
            raise NotAdminError("Only admins can add members")

        added = await self._store.add_members(group_id, [member_id])
        if not added:
            return False

        member_connection = self._presence.lookup(member_id)
        if member_connection is not None:
            self.rooms.join(group_id, member_connection)
            await self._hub.emit(member_connection, "added_to_group", {"groupId": group_id})

        await self.broadcast(
            group_id,
            "group_member_added",
            {
                "groupId": group_id,
                "memberId": member_id,
                "addedBy": actor.user_id,
                "addedByUsername": actor.username,
            },
        )
        member_name = await self._display_name(member_id)
        await self._announce(
            group_id, actor, ADDED_TEMPLATE.format(actor=actor.username, member=member_name)
        )
        return True

    async def remove_member(self, actor: Identity, group_id: str, member_id: str) -> bool:
        if not group_id or not member_id:
            raise InvalidContentError("Invalid data")

        group = await self._load_group(group_id)
        membership = _require_membership(group, actor.user_id)
        if membership.role != GroupRole.ADMIN:
            raise NotAdminError("Only admins can remove members")
        if member_id == actor.user_id:
            raise SelfRemovalError()
        if group.membership(member_id) is None:
            raise NotAMemberError("User is not a member of this group")

        removed = await self._store.remove_member(group_id, member_id)
        if not removed:
            return False

        member_connection = self._presence.lookup(member_id)
        if member_connection is not None:
            self.rooms.leave(group_id, member_connection)
            await self._hub.emit(
                member_connection,
                "removed_from_group",
                {
                    "groupId": group_id,
                    "removedBy": actor.user_id,
                    "removedByUsername": actor.username,
                },
            )

        await self.broadcast(
            group_id,
            "group_member_removed",
            {
                "groupId": group_id,
                "memberId": member_id,
                "removedBy": actor.user_id,
                "removedByUsername": actor.username,
            },
        )
        member_name = await self._display_name(member_id)
        await self._announce(
            group_id, actor, REMOVED_TEMPLATE.format(actor=actor.username, member=member_name)
        )
        return True

    async def leave(self, user: Identity, connection_id: str, group_id: str) -> str | None:
        """Leave a group; returns the id of a member promoted to admin, if any."""

        if not group_id:
            raise InvalidContentError("Group ID is required")

        membership = await self._store.get_membership(group_id, user.user_id)
        if membership is None:
            raise NotAMemberError()

        result = await self._store.leave_group(group_id, user.user_id)
        self.rooms.leave(group_id, connection_id)

        if result.promoted_user_id is not None:
            logger.info(
                "Promoted %s to admin of group %s after %s left",
                result.promoted_user_id,
                group_id,
                user.user_id,
            )
        await self.broadcast(
            group_id,
            "member_left_group",
            {
                "groupId": group_id,
                **user.to_public(),
                "promotedUserId": result.promoted_user_id,
            },
        )
        if result.remaining_members > 0:
            await self._announce(group_id, user, LEFT_TEMPLATE.format(member=user.username))
        await self._hub.emit(connection_id, "left_group_success", {"groupId": group_id})
        return result.promoted_user_id

    async def group_details(self, user: Identity, group_id: str) -> Group:
        if not group_id:
            raise InvalidContentError("Group ID is required")
        group = await self._load_group(group_id)
        _require_membership(group, user.user_id)
        return group


__all__ = [
    "DEFAULT_GROUP_MESSAGE_MAX_LENGTH",
    "GroupRoomManager",
    "RoomRegistry",
]
