from __future__ import annotations

import sqlite3
import threading
from pathlib import Path


class SQLiteBackend:
    """Owns a shared SQLite connection and applies store migrations."""

    def __init__(self, db_path: str) -> None:
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._configure()
        self._apply_migrations()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def close(self) -> None:
        self._conn.close()

    def _configure(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    def _apply_migrations(self) -> None:
        user_version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if user_version == 0:
            self._create_v1_schema()
            self._conn.execute("PRAGMA user_version = 1")
        elif user_version != 1:
            raise ValueError(f"Unsupported schema version: {user_version}")

    def _create_v1_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS rooms (
                room_id TEXT PRIMARY KEY,
                has_passkey INTEGER NOT NULL,
                passkey_digest TEXT,
                created_at_ns INTEGER NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                room_id TEXT NOT NULL,
                message_id TEXT NOT NULL,
                created_at_ns INTEGER NOT NULL,
                text TEXT NOT NULL,
                name TEXT NOT NULL,
                reply_to TEXT,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                edited_at_ns INTEGER,
                PRIMARY KEY (room_id, message_id)
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_room_created ON messages(room_id, created_at_ns)"
        )
