"""Records exchanged between the realtime core and the message store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated identity attached to a connection."""

    user_id: str
    username: str

    def to_public(self) -> dict[str, str]:
        return {"userId": self.user_id, "username": self.username}


class GroupRole(str, Enum):
    """Roles a user can hold inside a group."""

    ADMIN = "admin"
    MEMBER = "member"


class WireModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DirectMessage(WireModel):
    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    delivered: bool = False
    seen: bool = False

    @model_validator(mode="after")
    def _seen_implies_delivered(self) -> "DirectMessage":
        if self.seen and not self.delivered:
            self.delivered = True
        return self


class GroupMembership(WireModel):
    group_id: str
    user_id: str
    username: str | None = None
    role: GroupRole
    joined_at: datetime


class Group(WireModel):
    id: str
    name: str
    description: str | None = None
    creator_id: str
    created_at: datetime
    members: list[GroupMembership] = []

    def membership(self, user_id: str) -> GroupMembership | None:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    @property
    def admin_ids(self) -> list[str]:
        return [member.user_id for member in self.members if member.role == GroupRole.ADMIN]


class GroupMessage(WireModel):
    id: str
    group_id: str
    sender_id: str
    sender_username: str | None = None
    content: str
    created_at: datetime
    is_system: bool = False


class LeaveResult(WireModel):
    """Outcome of a member leaving a group."""

    group_id: str
    user_id: str
    promoted_user_id: str | None = None
    remaining_members: int = 0


__all__ = [
    "DirectMessage",
    "Group",
    "GroupMembership",
    "GroupMessage",
    "GroupRole",
    "Identity",
    "LeaveResult",
    "WireModel",
]
