from __future__ import annotations

import hashlib
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import DocumentNotFound, ImmutableFieldError, InvalidDocument, WriteRejected

SERVER_TIMESTAMP = "__server_timestamp__"

IMMUTABLE_MESSAGE_FIELDS = frozenset({"id", "message_id", "created_at", "name", "reply_to"})
MUTABLE_MESSAGE_FIELDS = frozenset({"text", "is_deleted", "edited_at"})

_NS_PER_SECOND = 1_000_000_000


@dataclass(frozen=True, order=True)
class ServerTimestamp:
    """Commit time assigned by the store; ordered by (seconds, nanoseconds)."""

    seconds: int
    nanoseconds: int

    @classmethod
    def from_ns(cls, value: int) -> "ServerTimestamp":
        return cls(seconds=value // _NS_PER_SECOND, nanoseconds=value % _NS_PER_SECOND)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerTimestamp":
        return cls(seconds=int(data["seconds"]), nanoseconds=int(data["nanoseconds"]))

    def to_ns(self) -> int:
        return self.seconds * _NS_PER_SECOND + self.nanoseconds

    def to_dict(self) -> Dict[str, int]:
        return {"seconds": self.seconds, "nanoseconds": self.nanoseconds}


@dataclass(frozen=True)
class RoomDocument:
    room_id: str
    has_passkey: bool
    passkey_digest: Optional[str]
    created_at: ServerTimestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "room_id": self.room_id,
            "has_passkey": self.has_passkey,
            "passkey_digest": self.passkey_digest,
            "created_at": self.created_at.to_dict(),
        }


@dataclass(frozen=True)
class MessageDocument:
    """An immutable view of one message record at a point in time."""

    room_id: str
    message_id: str
    created_at: ServerTimestamp
    text: str
    name: str
    reply_to: Optional[str] = None
    is_deleted: bool = False
    edited_at: Optional[ServerTimestamp] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "text": self.text,
            "name": self.name,
            "created_at": self.created_at.to_dict(),
            "reply_to": self.reply_to,
            "is_deleted": self.is_deleted,
            "edited_at": self.edited_at.to_dict() if self.edited_at is not None else None,
        }


def passkey_digest(room_id: str, passkey: str) -> str:
    """Return the one-way value stored in place of a room passkey."""

    return hashlib.sha256(f"{room_id}:{passkey}".encode("utf-8")).hexdigest()


def validate_room_id(room_id: object) -> str:
    if not isinstance(room_id, str) or not room_id.strip():
        raise InvalidDocument("room_id required")
    if "/" in room_id:
        raise InvalidDocument("room_id must not contain '/'")
    return room_id


def new_message_id() -> str:
    return f"m_{secrets.token_urlsafe(12)}"


class TimestampSource:
    """Hands out commit timestamps that strictly increase per room."""

    def __init__(self, now_ns: Callable[[], int] = time.time_ns) -> None:
        self._now_ns = now_ns
        self._last: Dict[str, int] = {}

    def observe(self, room_id: str, value: ServerTimestamp) -> None:
        self._last[room_id] = max(self._last.get(room_id, 0), value.to_ns())

    def next(self, room_id: str) -> ServerTimestamp:
        candidate = max(self._now_ns(), self._last.get(room_id, 0) + 1)
        self._last[room_id] = candidate
        return ServerTimestamp.from_ns(candidate)


def room_passkey_from_fields(fields: Mapping[str, Any]) -> Optional[str]:
    passkey = fields.get("passkey")
    if passkey is None or passkey == "":
        return None
    if not isinstance(passkey, str):
        raise InvalidDocument("passkey must be a string")
    return passkey


def validate_new_message(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Check the caller-supplied fields of a new message record."""

    text = fields.get("text")
    name = fields.get("name")
    reply_to = fields.get("reply_to")
    is_deleted = fields.get("is_deleted", False)
    if not isinstance(text, str):
        raise InvalidDocument("text must be a string")
    if not isinstance(name, str):
        raise InvalidDocument("name must be a string")
    if reply_to is not None and not isinstance(reply_to, str):
        raise InvalidDocument("reply_to must be a string or null")
    if not isinstance(is_deleted, bool):
        raise InvalidDocument("is_deleted must be a boolean")
    return {"text": text, "name": name, "reply_to": reply_to or None, "is_deleted": is_deleted}


def validate_update(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Check a partial update; identity fields are rejected outright."""

    if not fields:
        raise InvalidDocument("fields required")
    for key in fields:
        if key in IMMUTABLE_MESSAGE_FIELDS:
            raise ImmutableFieldError(key)
        if key not in MUTABLE_MESSAGE_FIELDS:
            raise InvalidDocument(f"unknown field {key!r}")
    if "text" in fields and not isinstance(fields["text"], str):
        raise InvalidDocument("text must be a string")
    if "is_deleted" in fields and not isinstance(fields["is_deleted"], bool):
        raise InvalidDocument("is_deleted must be a boolean")
    if "edited_at" in fields and fields["edited_at"] != SERVER_TIMESTAMP:
        raise InvalidDocument("edited_at only accepts the server timestamp sentinel")
    return dict(fields)


def check_write_rule(current: MessageDocument, actor: Optional[str]) -> None:
    if actor is not None and actor != current.name:
        raise WriteRejected("only the author may modify this message")


def apply_update(current: MessageDocument, fields: Mapping[str, Any], now: ServerTimestamp) -> MessageDocument:
    return MessageDocument(
        room_id=current.room_id,
        message_id=current.message_id,
        created_at=current.created_at,
        text=fields.get("text", current.text),
        name=current.name,
        reply_to=current.reply_to,
        is_deleted=fields.get("is_deleted", current.is_deleted),
        edited_at=now if "edited_at" in fields else current.edited_at,
    )


class InMemoryDocumentStore:
    """In-memory room and message documents with atomic create-if-absent."""

    def __init__(self, *, now_ns: Callable[[], int] = time.time_ns) -> None:
        self._lock = threading.Lock()
        self._clock = TimestampSource(now_ns)
        self._rooms: Dict[str, RoomDocument] = {}
        self._messages: Dict[str, List[MessageDocument]] = {}
        self._index: Dict[Tuple[str, str], int] = {}

    def create_room_if_absent(self, room_id: str, fields: Mapping[str, Any]) -> tuple[RoomDocument, bool]:
        """Create the room record unless one exists; return it and whether it was created."""

        validate_room_id(room_id)
        passkey = room_passkey_from_fields(fields)
        with self._lock:
            existing = self._rooms.get(room_id)
            if existing is not None:
                return existing, False
            room = RoomDocument(
                room_id=room_id,
                has_passkey=passkey is not None,
                passkey_digest=passkey_digest(room_id, passkey) if passkey is not None else None,
                created_at=self._clock.next(room_id),
            )
            self._rooms[room_id] = room
            return room, True

    def read_room(self, room_id: str) -> RoomDocument | None:
        validate_room_id(room_id)
        with self._lock:
            return self._rooms.get(room_id)

    def append_message(self, room_id: str, fields: Mapping[str, Any]) -> MessageDocument:
        validate_room_id(room_id)
        clean = validate_new_message(fields)
        with self._lock:
            message = MessageDocument(
                room_id=room_id,
                message_id=new_message_id(),
                created_at=self._clock.next(room_id),
                **clean,
            )
            events = self._messages.setdefault(room_id, [])
            self._index[(room_id, message.message_id)] = len(events)
            events.append(message)
            return message

    def update_message(
        self,
        room_id: str,
        message_id: str,
        fields: Mapping[str, Any],
        actor: str | None = None,
    ) -> MessageDocument:
        validate_room_id(room_id)
        clean = validate_update(fields)
        with self._lock:
            position = self._index.get((room_id, message_id))
            if position is None:
                raise DocumentNotFound(f"message {message_id} not found")
            current = self._messages[room_id][position]
            check_write_rule(current, actor)
            updated = apply_update(current, clean, self._clock.next(room_id))
            self._messages[room_id][position] = updated
            return updated

    def list_messages(self, room_id: str) -> list[MessageDocument]:
        """Return the room's messages ordered by ascending creation timestamp."""

        with self._lock:
            return sorted(self._messages.get(room_id, []), key=lambda message: message.created_at)
