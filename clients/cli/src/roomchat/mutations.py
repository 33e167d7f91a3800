"""Write-side contract: send, edit, delete for everyone, delete for me.

Writes go straight to the remote store. Nothing here touches the local echo
store; the subscription reflects every accepted write back.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from roomstore.documents import SERVER_TIMESTAMP

from roomchat.access_gate import GateState
from roomchat.errors import AccessError, AuthorizationViolation, MutationError
from roomchat.local_store import HiddenMessageSet, LocalEchoStore
from roomchat.models import Message
from roomchat.remote import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)

DELETED_PLACEHOLDER = "This message was deleted"

Confirm = Callable[[Message], Union[bool, Awaitable[bool]]]


class MessageMutations:
    def __init__(
        self,
        remote: RemoteStore,
        echo: LocalEchoStore,
        *,
        deleted_placeholder: str = DELETED_PLACEHOLDER,
    ) -> None:
        self.remote = remote
        self.echo = echo
        self.deleted_placeholder = deleted_placeholder

    @staticmethod
    def _room_id(gate: GateState) -> str:
        gate.require_allowed()
        if gate.room is None:
            raise AccessError("room access not granted")
        return gate.room.room_id

    def _require_own(self, nickname: str, message_id: str, action: str) -> Message:
        message = self.echo.get(message_id)
        if message is None:
            raise MutationError(f"message {message_id} is not loaded")
        if message.name != nickname:
            raise AuthorizationViolation(f"you can only {action} your own messages")
        return message

    async def send(
        self,
        gate: GateState,
        nickname: str,
        text: str,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """Append a message; returns the new id, or None when the text is blank."""

        trimmed = text.strip()
        if not trimmed:
            return None
        room_id = self._room_id(gate)
        fields = {
            "text": trimmed,
            "name": nickname,
            "created_at": SERVER_TIMESTAMP,
            "reply_to": reply_to,
            "is_deleted": False,
        }
        try:
            return await self.remote.append(room_id, fields)
        except RemoteStoreError as exc:
            logger.warning("send failed room_id=%s code=%s: %s", room_id, exc.code, exc)
            raise MutationError("Failed to send message. Please try again.") from exc

    async def edit(self, gate: GateState, nickname: str, message_id: str, text: str) -> bool:
        trimmed = text.strip()
        if not trimmed:
            return False
        room_id = self._room_id(gate)
        message = self._require_own(nickname, message_id, "edit")
        if message.is_deleted:
            raise MutationError("Deleted messages cannot be edited.")
        try:
            await self.remote.update_fields(
                room_id,
                message_id,
                {"text": trimmed, "edited_at": SERVER_TIMESTAMP},
                actor=nickname,
            )
        except RemoteStoreError as exc:
            logger.warning("edit failed room_id=%s message_id=%s code=%s: %s", room_id, message_id, exc.code, exc)
            raise MutationError("Failed to edit message. Please try again.") from exc
        return True

    async def delete_for_everyone(
        self,
        gate: GateState,
        nickname: str,
        message_id: str,
        confirm: Confirm,
    ) -> bool:
        """Soft-delete after confirmation; the record and its reply links stay in place."""

        room_id = self._room_id(gate)
        message = self._require_own(nickname, message_id, "delete")
        decision = confirm(message)
        if inspect.isawaitable(decision):
            decision = await decision
        if not decision:
            return False
        try:
            await self.remote.update_fields(
                room_id,
                message_id,
                {"text": self.deleted_placeholder, "is_deleted": True},
                actor=nickname,
            )
        except RemoteStoreError as exc:
            logger.warning("delete failed room_id=%s message_id=%s code=%s: %s", room_id, message_id, exc.code, exc)
            raise MutationError("Failed to delete message. Please try again.") from exc
        return True

    def delete_for_me(self, gate: GateState, hidden: HiddenMessageSet, message_id: str) -> bool:
        gate.require_allowed()
        return hidden.add(message_id)
