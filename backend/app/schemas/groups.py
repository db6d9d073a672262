"""Schemas for group management."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator
from pydantic.alias_generators import to_camel


class GroupCreate(BaseModel):
    """Payload for creating a new group."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: constr(strip_whitespace=True, min_length=1, max_length=128) = Field(
        ..., description="Human readable group name"
    )
    description: constr(strip_whitespace=True, max_length=2000) | None = None
    member_ids: list[str] = Field(default_factory=list, description="Initial members")

    @field_validator("member_ids")
    @classmethod
    def drop_blank_ids(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for member_id in value:
            member_id = member_id.strip()
            if member_id and member_id not in seen:
                seen.append(member_id)
        return seen
