"""Pydantic schemas for API payloads."""

from .groups import GroupCreate

__all__ = ["GroupCreate"]
