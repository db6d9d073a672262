"""Typed inbound commands parsed from client frames."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class Command(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SendMessage(Command):
    to: str = ""
    content: str = ""


class Typing(Command):
    to: str = ""


class StopTyping(Command):
    to: str = ""


class MarkSeen(Command):
    with_user: str = ""


class ActiveChat(Command):
    chat_with: str | None = None


class AcknowledgeDelivery(Command):
    message_id: str = ""
    sender_id: str | None = Field(default=None, alias="from")


class GetOnlineUsers(Command):
    pass


class JoinGroups(Command):
    pass


class SendGroupMessage(Command):
    group_id: str = ""
    content: str = ""


class GroupTyping(Command):
    group_id: str = ""


class GroupStopTyping(Command):
    group_id: str = ""


class AddMember(Command):
    group_id: str = ""
    member_id: str = ""


class RemoveMember(Command):
    group_id: str = ""
    member_id: str = ""


class LeaveGroup(Command):
    group_id: str = ""


class GetGroupDetails(Command):
    group_id: str = ""


COMMANDS: dict[str, type[Command]] = {
    "send_message": SendMessage,
    "typing": Typing,
    "stop_typing": StopTyping,
    "mark_seen": MarkSeen,
    "active_chat": ActiveChat,
    "message_delivered": AcknowledgeDelivery,
    "get_online_users": GetOnlineUsers,
    "join_groups": JoinGroups,
    "send_group_message": SendGroupMessage,
    "group_typing": GroupTyping,
    "group_stop_typing": GroupStopTyping,
    "member_added": AddMember,
    "member_removed": RemoveMember,
    "leave_group": LeaveGroup,
    "get_group_details": GetGroupDetails,
}


class CommandError(ValueError):
    """Raised when a frame cannot be turned into a command."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def parse_command(frame: Any) -> tuple[str, Command]:
    """Validate a decoded ``{"type": ..., "data": ...}`` frame."""

    if not isinstance(frame, dict):
        raise CommandError("Message payload must be a JSON object")
    event = frame.get("type")
    if not isinstance(event, str) or not event:
        raise CommandError("Message type must be provided")
    command_cls = COMMANDS.get(event)
    if command_cls is None:
        raise CommandError("Unsupported event")

    data = frame.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CommandError("Invalid message data")
    try:
        command = command_cls.model_validate(data)
    except ValidationError as exc:
        raise CommandError("Invalid message data") from exc
    return event, command


__all__ = [
    "COMMANDS",
    "AcknowledgeDelivery",
    "ActiveChat",
    "AddMember",
    "Command",
    "CommandError",
    "GetGroupDetails",
    "GetOnlineUsers",
    "GroupStopTyping",
    "GroupTyping",
    "JoinGroups",
    "LeaveGroup",
    "MarkSeen",
    "RemoveMember",
    "SendGroupMessage",
    "SendMessage",
    "StopTyping",
    "Typing",
    "parse_command",
]
