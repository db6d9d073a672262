"""Database models package."""

from .base import Base
from .chat import DirectMessage, Group, GroupMember, GroupMessage, User

__all__ = [
    "Base",
    "User",
    "DirectMessage",
    "Group",
    "GroupMember",
    "GroupMessage",
]
