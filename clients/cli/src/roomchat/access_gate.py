"""Room access gate: decides whether this session may read and write a room."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from roomstore.documents import passkey_digest

from roomchat.errors import AccessError
from roomchat.models import Room
from roomchat.remote import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)

GATE_PENDING = "pending"
GATE_ALLOWED = "allowed"
GATE_DENIED = "denied"

REASON_NO_ROOM = "no room specified"
REASON_WRONG_PASSKEY = "protected room, wrong/missing passkey"
REASON_VALIDATION_FAILED = "validation failed, retry"


@dataclass(frozen=True)
class GateState:
    status: str
    reason: Optional[str] = None
    room: Optional[Room] = None
    created: bool = False

    @classmethod
    def pending(cls) -> "GateState":
        return cls(GATE_PENDING)

    @classmethod
    def allowed(cls, room: Room, created: bool = False) -> "GateState":
        return cls(GATE_ALLOWED, room=room, created=created)

    @classmethod
    def denied(cls, reason: str) -> "GateState":
        return cls(GATE_DENIED, reason=reason)

    @property
    def is_pending(self) -> bool:
        return self.status == GATE_PENDING

    @property
    def is_allowed(self) -> bool:
        return self.status == GATE_ALLOWED

    @property
    def is_denied(self) -> bool:
        return self.status == GATE_DENIED

    def require_allowed(self) -> None:
        if self.is_allowed:
            return
        raise AccessError(self.reason or "room access not granted")


def passkey_matches(room: Room, supplied: Optional[str]) -> bool:
    if not room.has_passkey:
        return True
    if not supplied or not room.passkey_digest:
        return False
    return hmac.compare_digest(passkey_digest(room.room_id, supplied), room.passkey_digest)


class RoomAccessGate:
    def __init__(self, remote: RemoteStore) -> None:
        self.remote = remote

    async def resolve(self, room_id: Optional[str], passkey: Optional[str] = None) -> GateState:
        """Read the room, creating it on first access, and check the supplied passkey.

        The creator of a room is always allowed. A caller that loses a
        creation race is checked against the record that won.
        """

        if not room_id or not room_id.strip():
            return GateState.denied(REASON_NO_ROOM)
        try:
            room = await self.remote.read_room(room_id)
            if room is None:
                room, created = await self.remote.create_room_if_absent(room_id, {"passkey": passkey or None})
                if created:
                    logger.info("created room %s (protected=%s)", room_id, room.has_passkey)
                    return GateState.allowed(room, created=True)
        except RemoteStoreError as exc:
            logger.warning("room validation failed room_id=%s code=%s: %s", room_id, exc.code, exc)
            return GateState.denied(REASON_VALIDATION_FAILED)

        if passkey_matches(room, passkey):
            return GateState.allowed(room)
        return GateState.denied(REASON_WRONG_PASSKEY)
