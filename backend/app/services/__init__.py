"""Application service helpers."""

from .store import SqlChatStore

__all__ = ["SqlChatStore"]
