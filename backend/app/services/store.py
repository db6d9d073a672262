"""SQLAlchemy implementation of the realtime message store."""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Callable, Iterable, Sequence, TypeVar

import anyio
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.models import DirectMessage, Group, GroupMember, GroupMessage, User
from zap.realtime import schemas
from zap.realtime.errors import NotAMemberError, StoreError
from zap.realtime.schemas import GroupRole

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _parse_id(value: str | int | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _direct_record(row: DirectMessage) -> schemas.DirectMessage:
    return schemas.DirectMessage(
        id=str(row.id),
        sender_id=row.sender_id,
        receiver_id=row.receiver_id,
        content=row.content,
        created_at=row.created_at,
        delivered=row.delivered,
        seen=row.seen,
    )


def _membership_record(row: GroupMember, username: str | None = None) -> schemas.GroupMembership:
    return schemas.GroupMembership(
        group_id=str(row.group_id),
        user_id=row.user_id,
        username=username,
        role=row.role,
        joined_at=row.joined_at,
    )


def _group_message_record(row: GroupMessage, username: str | None) -> schemas.GroupMessage:
    return schemas.GroupMessage(
        id=str(row.id),
        group_id=str(row.group_id),
        sender_id=row.sender_id,
        sender_username=username,
        content=row.content,
        created_at=row.created_at,
        is_system=row.is_system,
    )


def _usernames(session: Session, user_ids: Iterable[str]) -> dict[str, str]:
    ids = {user_id for user_id in user_ids if user_id}
    if not ids:
        return {}
    stmt = select(User.id, User.username).where(User.id.in_(ids))
    return {user_id: username for user_id, username in session.execute(stmt)}


def _ordered_members(group: Group) -> list[GroupMember]:
    return sorted(group.members, key=lambda member: (member.joined_at, member.id))


def _group_record(session: Session, group: Group) -> schemas.Group:
    members = _ordered_members(group)
    names = _usernames(session, [member.user_id for member in members])
    return schemas.Group(
        id=str(group.id),
        name=group.name,
        description=group.description,
        creator_id=group.creator_id,
        created_at=group.created_at,
        members=[_membership_record(member, names.get(member.user_id)) for member in members],
    )


def _get_member(session: Session, group_id: int, user_id: str) -> GroupMember | None:
    stmt = select(GroupMember).where(
        GroupMember.group_id == group_id,
        GroupMember.user_id == user_id,
    )
    return session.execute(stmt).scalar_one_or_none()


class SqlChatStore:
    """Durable store for direct messages, groups and group messages.

    Every public coroutine opens a short-lived session in a worker thread, so
    each call is a genuine suspension point for the event loop. Failures are
    rolled back and surfaced as :class:`StoreError`.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _execute(self, operation: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            result = operation(session)
            session.commit()
            return result
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(str(exc)) from exc
        finally:
            session.close()

    async def _run(self, operation: Callable[[Session], T]) -> T:
        return await anyio.to_thread.run_sync(partial(self._execute, operation))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def upsert_user(self, user_id: str, username: str) -> None:
        def operation(session: Session) -> None:
            user = session.get(User, user_id)
            if user is None:
                session.add(User(id=user_id, username=username))
            elif user.username != username:
                user.username = username

        await self._run(operation)

    async def get_usernames(self, user_ids: Iterable[str]) -> dict[str, str]:
        ids = list(user_ids)
        return await self._run(lambda session: _usernames(session, ids))

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    async def create_direct_message(
        self, sender_id: str, receiver_id: str, content: str
    ) -> schemas.DirectMessage:
        def operation(session: Session) -> schemas.DirectMessage:
            row = DirectMessage(sender_id=sender_id, receiver_id=receiver_id, content=content)
            session.add(row)
            session.flush()
            return _direct_record(row)

        return await self._run(operation)

    async def get_undelivered(self, user_id: str) -> list[schemas.DirectMessage]:
        def operation(session: Session) -> list[schemas.DirectMessage]:
            stmt = (
                select(DirectMessage)
                .where(
                    DirectMessage.receiver_id == user_id,
                    DirectMessage.delivered.is_(False),
                )
                .order_by(DirectMessage.created_at, DirectMessage.id)
            )
            return [_direct_record(row) for row in session.execute(stmt).scalars()]

        return await self._run(operation)

    async def mark_delivered(
        self, message_ids: Sequence[str], *, receiver_id: str | None = None
    ) -> list[schemas.DirectMessage]:
        """Flip ``delivered`` on the given messages.

        Returns only the messages that actually changed. Each row is claimed
        with a conditional update, so concurrent callers never both get the
        same message back. With ``receiver_id`` messages addressed to someone
        else are left untouched.
        """

        ids = [parsed for parsed in (_parse_id(value) for value in message_ids) if parsed is not None]
        if not ids:
            return []

        def operation(session: Session) -> list[schemas.DirectMessage]:
            claimed: list[int] = []
            for message_id in ids:
                stmt = update(DirectMessage).where(
                    DirectMessage.id == message_id,
                    DirectMessage.delivered.is_(False),
                )
                if receiver_id is not None:
                    stmt = stmt.where(DirectMessage.receiver_id == receiver_id)
                result = session.execute(
                    stmt.values(delivered=True).execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    claimed.append(message_id)
            if not claimed:
                return []
            rows = session.execute(
                select(DirectMessage).where(DirectMessage.id.in_(claimed)).order_by(DirectMessage.id)
            ).scalars()
            return [_direct_record(row) for row in rows]

        return await self._run(operation)

    async def release_delivered(self, message_ids: Sequence[str], *, receiver_id: str) -> int:
        """Return claimed but unpushed messages to the pending state."""

        ids = [parsed for parsed in (_parse_id(value) for value in message_ids) if parsed is not None]
        if not ids:
            return 0

        def operation(session: Session) -> int:
            stmt = (
                update(DirectMessage)
                .where(
                    DirectMessage.id.in_(ids),
                    DirectMessage.receiver_id == receiver_id,
                    DirectMessage.seen.is_(False),
                )
                .values(delivered=False)
                .execution_options(synchronize_session=False)
            )
            return session.execute(stmt).rowcount or 0

        return await self._run(operation)

    async def mark_seen(self, sender_id: str, receiver_id: str) -> int:
        def operation(session: Session) -> int:
            stmt = (
                update(DirectMessage)
                .where(
                    DirectMessage.sender_id == sender_id,
                    DirectMessage.receiver_id == receiver_id,
                    DirectMessage.seen.is_(False),
                )
                .values(seen=True, delivered=True)
                .execution_options(synchronize_session=False)
            )
            return session.execute(stmt).rowcount or 0

        return await self._run(operation)

    async def get_conversation(
        self, user_id: str, other_user_id: str
    ) -> list[schemas.DirectMessage]:
        def operation(session: Session) -> list[schemas.DirectMessage]:
            stmt = (
                select(DirectMessage)
                .where(
                    (
                        (DirectMessage.sender_id == user_id)
                        & (DirectMessage.receiver_id == other_user_id)
                    )
                    | (
                        (DirectMessage.sender_id == other_user_id)
                        & (DirectMessage.receiver_id == user_id)
                    )
                )
                .order_by(DirectMessage.created_at, DirectMessage.id)
            )
            return [_direct_record(row) for row in session.execute(stmt).scalars()]

        return await self._run(operation)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(
        self,
        creator_id: str,
        name: str,
        description: str | None = None,
        member_ids: Iterable[str] = (),
    ) -> schemas.Group:
        """Create a group with its creator as admin, all in one transaction."""

        members: list[str] = []
        for member_id in member_ids:
            if member_id and member_id != creator_id and member_id not in members:
                members.append(member_id)

        def operation(session: Session) -> schemas.Group:
            group = Group(name=name, description=description, creator_id=creator_id)
            group.members.append(GroupMember(user_id=creator_id, role=GroupRole.ADMIN))
            for member_id in members:
                group.members.append(GroupMember(user_id=member_id, role=GroupRole.MEMBER))
            session.add(group)
            session.flush()
            return _group_record(session, group)

        group = await self._run(operation)
        logger.info("Created group %s with %d members", group.id, len(group.members))
        return group

    async def get_user_groups(self, user_id: str) -> list[schemas.Group]:
        def operation(session: Session) -> list[schemas.Group]:
            stmt = (
                select(Group)
                .join(GroupMember, GroupMember.group_id == Group.id)
                .where(GroupMember.user_id == user_id)
                .options(selectinload(Group.members))
                .order_by(Group.id)
            )
            return [_group_record(session, group) for group in session.execute(stmt).scalars()]

        return await self._run(operation)

    async def get_group_by_id(self, group_id: str) -> schemas.Group | None:
        parsed = _parse_id(group_id)
        if parsed is None:
            return None

        def operation(session: Session) -> schemas.Group | None:
            group = session.get(Group, parsed, options=[selectinload(Group.members)])
            if group is None:
                return None
            return _group_record(session, group)

        return await self._run(operation)

    async def get_membership(
        self, group_id: str, user_id: str
    ) -> schemas.GroupMembership | None:
        parsed = _parse_id(group_id)
        if parsed is None:
            return None

        def operation(session: Session) -> schemas.GroupMembership | None:
            member = _get_member(session, parsed, user_id)
            if member is None:
                return None
            return _membership_record(member)

        return await self._run(operation)

    async def add_members(self, group_id: str, member_ids: Sequence[str]) -> list[str]:
        """Add members, skipping existing ones. Returns the newly added ids."""

        parsed = _parse_id(group_id)
        if parsed is None:
            return []

        def operation(session: Session) -> list[str]:
            if session.get(Group, parsed) is None:
                return []
            existing = set(
                session.execute(
                    select(GroupMember.user_id).where(GroupMember.group_id == parsed)
                ).scalars()
            )
            added: list[str] = []
            for member_id in member_ids:
                if not member_id or member_id in existing or member_id in added:
                    continue
                session.add(GroupMember(group_id=parsed, user_id=member_id, role=GroupRole.MEMBER))
                added.append(member_id)
            session.flush()
            return added

        return await self._run(operation)

    async def remove_member(self, group_id: str, user_id: str) -> bool:
        parsed = _parse_id(group_id)
        if parsed is None:
            return False

        def operation(session: Session) -> bool:
            member = _get_member(session, parsed, user_id)
            if member is None:
                return False
            session.delete(member)
            return True

        return await self._run(operation)

    async def leave_group(self, group_id: str, user_id: str) -> schemas.LeaveResult:
        """Remove ``user_id`` from the group, promoting a successor if needed.

        When the leaver is the last admin and others remain, the member with
        the earliest ``joined_at`` is promoted in the same transaction that
        deletes the leaver's row.
        """

        parsed = _parse_id(group_id)
        if parsed is None:
            raise NotAMemberError()

        def operation(session: Session) -> schemas.LeaveResult | None:
            member = _get_member(session, parsed, user_id)
            if member is None:
                return None

            others = list(
                session.execute(
                    select(GroupMember)
                    .where(GroupMember.group_id == parsed, GroupMember.user_id != user_id)
                    .order_by(GroupMember.joined_at, GroupMember.id)
                ).scalars()
            )
            promoted: str | None = None
            if member.role == GroupRole.ADMIN and others:
                if not any(other.role == GroupRole.ADMIN for other in others):
                    successor = others[0]
                    successor.role = GroupRole.ADMIN
                    promoted = successor.user_id
                    session.flush()
            session.delete(member)
            return schemas.LeaveResult(
                group_id=str(parsed),
                user_id=user_id,
                promoted_user_id=promoted,
                remaining_members=len(others),
            )

        result = await self._run(operation)
        if result is None:
            raise NotAMemberError()
        return result

    # ------------------------------------------------------------------
    # Group messages
    # ------------------------------------------------------------------

    async def _create_group_message(
        self, group_id: str, sender_id: str, content: str, *, is_system: bool
    ) -> schemas.GroupMessage:
        parsed = _parse_id(group_id)
        if parsed is None:
            raise StoreError(f"Invalid group id {group_id!r}")

        def operation(session: Session) -> schemas.GroupMessage:
            row = GroupMessage(
                group_id=parsed, sender_id=sender_id, content=content, is_system=is_system
            )
            session.add(row)
            session.flush()
            names = _usernames(session, [sender_id])
            return _group_message_record(row, names.get(sender_id))

        return await self._run(operation)

    async def send_group_message(
        self, group_id: str, sender_id: str, content: str
    ) -> schemas.GroupMessage:
        return await self._create_group_message(group_id, sender_id, content, is_system=False)

    async def create_system_message(
        self, group_id: str, actor_id: str, content: str
    ) -> schemas.GroupMessage:
        return await self._create_group_message(group_id, actor_id, content, is_system=True)

    async def get_group_messages(
        self,
        group_id: str,
        user_id: str,
        *,
        limit: int = 50,
        before: datetime | None = None,
    ) -> list[schemas.GroupMessage]:
        """Return up to ``limit`` messages visible to ``user_id``, oldest first.

        Members only see messages posted since they joined.
        """

        parsed = _parse_id(group_id)
        if parsed is None:
            return []

        def operation(session: Session) -> list[schemas.GroupMessage]:
            member = _get_member(session, parsed, user_id)
            if member is None:
                return []
            stmt = select(GroupMessage).where(
                GroupMessage.group_id == parsed,
                GroupMessage.created_at >= member.joined_at,
            )
            if before is not None:
                stmt = stmt.where(GroupMessage.created_at < before)
            stmt = stmt.order_by(GroupMessage.created_at.desc(), GroupMessage.id.desc()).limit(
                max(1, limit)
            )
            rows = list(session.execute(stmt).scalars())
            rows.reverse()
            names = _usernames(session, [row.sender_id for row in rows])
            return [_group_message_record(row, names.get(row.sender_id)) for row in rows]

        return await self._run(operation)


__all__ = ["SqlChatStore"]
