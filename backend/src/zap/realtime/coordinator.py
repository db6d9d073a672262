"""Per-connection supervisor: authentication, command dispatch and cleanup."""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import status
from fastapi.websockets import WebSocket, WebSocketState

from . import commands as cmd
from .errors import AuthError, InvalidContentError, RealtimeError, StoreError
from .schemas import Identity
from .transport import build_frame, safe_send_json

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .managers import RealtimeContext


logger = logging.getLogger(__name__)

SESSION_REPLACED = "Session replaced"

FAILURE_MESSAGES: dict[str, str] = {
    "send_message": "Failed to send message",
    "mark_seen": "Failed to mark messages as seen",
    "active_chat": "Failed to mark messages as seen",
    "message_delivered": "Failed to acknowledge delivery",
    "join_groups": "Failed to join groups",
    "send_group_message": "Failed to send message",
    "member_added": "Failed to add member",
    "member_removed": "Failed to remove member",
    "leave_group": "Failed to leave group",
    "get_group_details": "Failed to fetch group details",
}


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class ConnectionSession:
    """Supervise one websocket from handshake to cleanup.

    ``Connecting -> Authenticating -> Active -> Disconnected``. Nothing is
    registered anywhere until authentication succeeded, and :meth:`close` runs
    the cleanup at most once regardless of how many paths call it.
    """

    def __init__(
        self,
        context: "RealtimeContext",
        websocket: WebSocket,
        *,
        connection_id: str | None = None,
    ) -> None:
        self.connection_id = connection_id or uuid.uuid4().hex
        self.state = ConnectionState.CONNECTING
        self.identity: Identity | None = None
        self._context = context
        self._websocket = websocket
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "send_message": self._on_send_message,
            "typing": self._on_typing,
            "stop_typing": self._on_stop_typing,
            "mark_seen": self._on_mark_seen,
            "active_chat": self._on_active_chat,
            "message_delivered": self._on_message_delivered,
            "get_online_users": self._on_get_online_users,
            "join_groups": self._on_join_groups,
            "send_group_message": self._on_send_group_message,
            "group_typing": self._on_group_typing,
            "group_stop_typing": self._on_group_stop_typing,
            "member_added": self._on_member_added,
            "member_removed": self._on_member_removed,
            "leave_group": self._on_leave_group,
            "get_group_details": self._on_get_group_details,
        }

    @property
    def user(self) -> Identity:
        if self.identity is None:
            raise RuntimeError("Connection is not authenticated")
        return self.identity

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def authenticate(self, credential: str | None) -> Identity:
        """Verify the credential or tell the client why and close the socket."""

        self.state = ConnectionState.AUTHENTICATING
        try:
            identity = self._context.authenticator.authenticate(credential)
        except AuthError as exc:
            logger.warning(
                "Rejecting connection %s: %s", self.connection_id, exc.kind.value
            )
            self.state = ConnectionState.DISCONNECTED
            await safe_send_json(self._websocket, build_frame("error", {"message": exc.message}))
            if self._websocket.application_state == WebSocketState.CONNECTED:
                try:
                    await self._websocket.close(
                        code=status.WS_1008_POLICY_VIOLATION, reason=exc.message
                    )
                except RuntimeError:
                    logger.debug("Connection %s closed during rejection", self.connection_id)
            raise
        self.identity = identity
        return identity

    async def activate(self) -> None:
        """Register presence, announce the user and flush pending messages."""

        user = self.user
        context = self._context
        context.hub.register(self.connection_id, self._websocket)
        displaced = context.presence.set_online(user.user_id, self.connection_id)
        self.state = ConnectionState.ACTIVE
        logger.info(
            "User %s (%s) is online on %s; %d connected",
            user.username,
            user.user_id,
            self.connection_id,
            len(context.presence),
        )

        if displaced is not None:
            logger.info("Replacing session %s of user %s", displaced, user.user_id)
            await context.hub.emit(displaced, "error", {"message": SESSION_REPLACED})
            await context.hub.disconnect(displaced, reason=SESSION_REPLACED)

        await context.hub.emit_all("user_online", user.to_public(), exclude={self.connection_id})

        try:
            await context.store.upsert_user(user.user_id, user.username)
        except StoreError:
            logger.exception("Error recording user %s", user.user_id)

        try:
            await context.delivery.flush_pending(user.user_id, self.connection_id)
        except StoreError:
            logger.exception("Error fetching pending messages for %s", user.user_id)

    async def close(self) -> bool:
        """Tear the connection down. Returns False if cleanup already ran."""

        if self.state is ConnectionState.DISCONNECTED:
            return False
        was_active = self.state is ConnectionState.ACTIVE
        self.state = ConnectionState.DISCONNECTED
        if not was_active or self.identity is None:
            return False

        user = self.identity
        context = self._context
        removed = context.presence.remove(user.user_id, self.connection_id)
        if removed:
            context.active.clear_active(user.user_id)
        left_rooms = context.groups.drop_connection(self.connection_id)
        context.hub.unregister(self.connection_id)
        logger.info(
            "Cleaned up %s for %s (%d rooms)", self.connection_id, user.user_id, len(left_rooms)
        )
        # A displaced session must not announce the user as gone.
        if removed:
            await context.hub.emit_all("user_offline", user.to_public())
        return True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle_frame(self, frame: Any) -> None:
        if self.state is not ConnectionState.ACTIVE:
            return
        try:
            event, command = cmd.parse_command(frame)
        except cmd.CommandError as exc:
            await self._error(exc.message)
            return

        try:
            await self._handlers[event](command)
        except RealtimeError as exc:
            await self._error(exc.message)
        except StoreError:
            logger.exception("Store failure while handling %s for %s", event, self.user.user_id)
            await self._error(FAILURE_MESSAGES.get(event, "Request failed"))

    async def _error(self, message: str) -> None:
        await self._context.hub.emit(self.connection_id, "error", {"message": message})

    # ------------------------------------------------------------------
    # Direct messaging
    # ------------------------------------------------------------------

    async def _on_send_message(self, command: cmd.SendMessage) -> None:
        await self._context.router.send(
            self.user, command.to, command.content, reply_to=self.connection_id
        )

    async def _on_typing(self, command: cmd.Typing) -> None:
        await self._context.router.relay_typing(self.user, command.to, typing=True)

    async def _on_stop_typing(self, command: cmd.StopTyping) -> None:
        await self._context.router.relay_typing(self.user, command.to, typing=False)

    async def _on_mark_seen(self, command: cmd.MarkSeen) -> None:
        if not command.with_user:
            raise InvalidContentError()
        await self._context.delivery.mark_seen(self.user, command.with_user)

    async def _on_active_chat(self, command: cmd.ActiveChat) -> None:
        await self._context.delivery.open_conversation(self.user, command.chat_with)

    async def _on_message_delivered(self, command: cmd.AcknowledgeDelivery) -> None:
        if not command.message_id:
            raise InvalidContentError()
        await self._context.delivery.acknowledge(self.user, command.message_id)

    async def _on_get_online_users(self, command: cmd.GetOnlineUsers) -> None:
        online = sorted(self._context.presence.all_online())
        await self._context.hub.emit(self.connection_id, "online_users_list", online)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def _on_join_groups(self, command: cmd.JoinGroups) -> None:
        await self._context.groups.join_groups(self.user, self.connection_id)

    async def _on_send_group_message(self, command: cmd.SendGroupMessage) -> None:
        await self._context.groups.send_message(self.user, command.group_id, command.content)

    async def _on_group_typing(self, command: cmd.GroupTyping) -> None:
        await self._context.groups.relay_typing(
            self.user, self.connection_id, command.group_id, typing=True
        )

    async def _on_group_stop_typing(self, command: cmd.GroupStopTyping) -> None:
        await self._context.groups.relay_typing(
            self.user, self.connection_id, command.group_id, typing=False
        )

    async def _on_member_added(self, command: cmd.AddMember) -> None:
        await self._context.groups.add_member(self.user, command.group_id, command.member_id)

    async def _on_member_removed(self, command: cmd.RemoveMember) -> None:
        await self._context.groups.remove_member(self.user, command.group_id, command.member_id)

    async def _on_leave_group(self, command: cmd.LeaveGroup) -> None:
        await self._context.groups.leave(self.user, self.connection_id, command.group_id)

    async def _on_get_group_details(self, command: cmd.GetGroupDetails) -> None:
        group = await self._context.groups.group_details(self.user, command.group_id)
        await self._context.hub.emit(self.connection_id, "group_details", group.to_wire())


__all__ = ["ConnectionSession", "ConnectionState", "FAILURE_MESSAGES", "SESSION_REPLACED"]
