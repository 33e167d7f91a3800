"""Local echo of the room stream plus the per-device hidden-message set."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from roomchat.models import Message

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload: Dict[str, object]) -> None:
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    content = json.dumps(payload, indent=2, sort_keys=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


class LocalStorage:
    """String key/value entries persisted to a single JSON file.

    ``path=None`` keeps entries in memory only.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path).expanduser() if path is not None else None
        self._memory: Dict[str, str] = {}

    def _load(self) -> Dict[str, str]:
        if self.path is None:
            return dict(self._memory)
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, ValueError):
            logger.warning("ignoring unreadable local storage at %s", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): value for key, value in data.items() if isinstance(value, str)}

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        entries = self._load()
        entries[key] = value
        if self.path is None:
            self._memory = entries
            return
        _atomic_write_json(self.path, dict(entries))

    def remove_item(self, key: str) -> None:
        entries = self._load()
        if entries.pop(key, None) is None:
            return
        if self.path is None:
            self._memory = entries
            return
        _atomic_write_json(self.path, dict(entries))


def hidden_messages_key(room_id: str, nickname: str) -> str:
    return f"hiddenMessages:{room_id}:{nickname}"


class HiddenMessageSet:
    """Message ids hidden on this device for one (room, nickname) pair."""

    def __init__(self, storage: LocalStorage, room_id: str, nickname: str) -> None:
        self._storage = storage
        self.key = hidden_messages_key(room_id, nickname)
        self._ids: List[str] = self._read()

    def _read(self) -> List[str]:
        raw = self._storage.get_item(self.key)
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return []
        if not isinstance(data, list):
            return []
        ids: List[str] = []
        for entry in data:
            if isinstance(entry, str) and entry not in ids:
                ids.append(entry)
        return ids

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> bool:
        """Hide ``message_id`` and persist; returns False when it was already hidden."""

        if message_id in self._ids:
            return False
        self._ids.append(message_id)
        self._storage.set_item(self.key, json.dumps(self._ids))
        return True

    def as_frozenset(self) -> frozenset[str]:
        return frozenset(self._ids)


class LocalEchoStore:
    """Read-through cache of the room stream; only snapshots ever change it."""

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}

    def replace_all(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)
        self._by_id = {message.id: message for message in self._messages}

    def clear(self) -> None:
        self.replace_all([])

    def messages(self) -> List[Message]:
        return list(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        return self._by_id.get(message_id)

    def __len__(self) -> int:
        return len(self._messages)
