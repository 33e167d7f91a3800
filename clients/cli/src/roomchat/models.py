"""Client-side records for rooms and messages as read from the room stream."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from roomstore.documents import ServerTimestamp

ANONYMOUS_NAME = "Anonymous"


def _parse_timestamp(value: Any) -> Optional[ServerTimestamp]:
    if isinstance(value, ServerTimestamp):
        return value
    if not isinstance(value, Mapping):
        return None
    try:
        return ServerTimestamp.from_dict(value)
    except (KeyError, TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Message:
    id: str
    text: str
    name: str
    created_at: Optional[ServerTimestamp] = None
    reply_to: Optional[str] = None
    is_deleted: bool = False
    edited_at: Optional[ServerTimestamp] = None

    @property
    def is_edited(self) -> bool:
        return self.edited_at is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        reply_to = data.get("reply_to")
        return cls(
            id=str(data["id"]),
            text=str(data.get("text", "")),
            name=str(data.get("name", "")),
            created_at=_parse_timestamp(data.get("created_at")),
            reply_to=str(reply_to) if reply_to else None,
            is_deleted=bool(data.get("is_deleted", False)),
            edited_at=_parse_timestamp(data.get("edited_at")),
        )


@dataclass(frozen=True)
class Room:
    room_id: str
    has_passkey: bool
    passkey_digest: Optional[str]
    created_at: Optional[ServerTimestamp] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Room":
        digest = data.get("passkey_digest")
        return cls(
            room_id=str(data["room_id"]),
            has_passkey=bool(data.get("has_passkey", False)),
            passkey_digest=str(digest) if digest else None,
            created_at=_parse_timestamp(data.get("created_at")),
        )


def parse_snapshot(entries: Iterable[Mapping[str, Any]]) -> List[Message]:
    """Parse one snapshot, skipping entries without an identifier."""

    messages: List[Message] = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not entry.get("id"):
            continue
        messages.append(Message.from_dict(entry))
    return messages


def normalize_nickname(name: str | None) -> str:
    cleaned = (name or "").strip()
    return cleaned or ANONYMOUS_NAME
