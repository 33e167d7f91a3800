from __future__ import annotations

import sqlite3
import time
from typing import Any, Callable, Mapping

from .documents import (
    MessageDocument,
    RoomDocument,
    ServerTimestamp,
    apply_update,
    check_write_rule,
    new_message_id,
    passkey_digest,
    room_passkey_from_fields,
    validate_new_message,
    validate_room_id,
    validate_update,
)
from .errors import DocumentNotFound
from .sqlite_backend import SQLiteBackend

_MESSAGE_COLUMNS = "room_id, message_id, created_at_ns, text, name, reply_to, is_deleted, edited_at_ns"


def _row_to_message(row: sqlite3.Row) -> MessageDocument:
    return MessageDocument(
        room_id=row[0],
        message_id=row[1],
        created_at=ServerTimestamp.from_ns(row[2]),
        text=row[3],
        name=row[4],
        reply_to=row[5],
        is_deleted=bool(row[6]),
        edited_at=ServerTimestamp.from_ns(row[7]) if row[7] is not None else None,
    )


def _row_to_room(row: sqlite3.Row) -> RoomDocument:
    return RoomDocument(
        room_id=row[0],
        has_passkey=bool(row[1]),
        passkey_digest=row[2],
        created_at=ServerTimestamp.from_ns(row[3]),
    )


class SQLiteDocumentStore:
    """Durable room and message documents backed by SQLite."""

    def __init__(self, backend: SQLiteBackend, *, now_ns: Callable[[], int] = time.time_ns) -> None:
        self._backend = backend
        self._now_ns = now_ns

    def _next_ts(self, cursor: sqlite3.Cursor, room_id: str) -> ServerTimestamp:
        row = cursor.execute(
            """
            SELECT MAX(
                COALESCE((SELECT created_at_ns FROM rooms WHERE room_id=?), 0),
                COALESCE((SELECT MAX(created_at_ns) FROM messages WHERE room_id=?), 0),
                COALESCE((SELECT MAX(edited_at_ns) FROM messages WHERE room_id=?), 0)
            )
            """,
            (room_id, room_id, room_id),
        ).fetchone()
        last = int(row[0] or 0)
        return ServerTimestamp.from_ns(max(self._now_ns(), last + 1))

    def create_room_if_absent(self, room_id: str, fields: Mapping[str, Any]) -> tuple[RoomDocument, bool]:
        """Insert the room record atomically unless it already exists."""

        validate_room_id(room_id)
        passkey = room_passkey_from_fields(fields)
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                created_at = self._next_ts(cursor, room_id)
                cursor.execute(
                    """
                    INSERT OR IGNORE INTO rooms (room_id, has_passkey, passkey_digest, created_at_ns)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        room_id,
                        int(passkey is not None),
                        passkey_digest(room_id, passkey) if passkey is not None else None,
                        created_at.to_ns(),
                    ),
                )
                created = cursor.rowcount == 1
                row = cursor.execute(
                    "SELECT room_id, has_passkey, passkey_digest, created_at_ns FROM rooms WHERE room_id=?",
                    (room_id,),
                ).fetchone()
                conn.commit()
                return _row_to_room(row), created
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def read_room(self, room_id: str) -> RoomDocument | None:
        validate_room_id(room_id)
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT room_id, has_passkey, passkey_digest, created_at_ns FROM rooms WHERE room_id=?",
                (room_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_room(row)

    def append_message(self, room_id: str, fields: Mapping[str, Any]) -> MessageDocument:
        validate_room_id(room_id)
        clean = validate_new_message(fields)
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                message = MessageDocument(
                    room_id=room_id,
                    message_id=new_message_id(),
                    created_at=self._next_ts(cursor, room_id),
                    **clean,
                )
                cursor.execute(
                    f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, NULL)",
                    (
                        room_id,
                        message.message_id,
                        message.created_at.to_ns(),
                        message.text,
                        message.name,
                        message.reply_to,
                        int(message.is_deleted),
                    ),
                )
                conn.commit()
                return message
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def update_message(
        self,
        room_id: str,
        message_id: str,
        fields: Mapping[str, Any],
        actor: str | None = None,
    ) -> MessageDocument:
        validate_room_id(room_id)
        clean = validate_update(fields)
        conn = self._backend.connection
        with self._backend.lock:
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                row = cursor.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE room_id=? AND message_id=?",
                    (room_id, message_id),
                ).fetchone()
                if row is None:
                    raise DocumentNotFound(f"message {message_id} not found")
                current = _row_to_message(row)
                check_write_rule(current, actor)
                updated = apply_update(current, clean, self._next_ts(cursor, room_id))
                cursor.execute(
                    """
                    UPDATE messages SET text=?, is_deleted=?, edited_at_ns=?
                    WHERE room_id=? AND message_id=?
                    """,
                    (
                        updated.text,
                        int(updated.is_deleted),
                        updated.edited_at.to_ns() if updated.edited_at is not None else None,
                        room_id,
                        message_id,
                    ),
                )
                conn.commit()
                return updated
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def list_messages(self, room_id: str) -> list[MessageDocument]:
        with self._backend.lock:
            rows = self._backend.connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE room_id=? ORDER BY created_at_ns ASC",
                (room_id,),
            ).fetchall()
        return [_row_to_message(row) for row in rows]
