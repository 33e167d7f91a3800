import os
import sqlite3
import tempfile
import unittest

from roomstore.documents import SERVER_TIMESTAMP, passkey_digest
from roomstore.errors import DocumentNotFound, ImmutableFieldError, WriteRejected
from roomstore.sqlite_backend import SQLiteBackend
from roomstore.sqlite_documents import SQLiteDocumentStore


class SQLiteDocumentStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "rooms.db")
        self.backend = SQLiteBackend(self.db_path)
        self.store = SQLiteDocumentStore(self.backend, now_ns=lambda: 7_000_000_000)

    def tearDown(self) -> None:
        self.backend.close()
        self.tmpdir.cleanup()

    def test_schema_version_is_recorded(self):
        version = self.backend.connection.execute("PRAGMA user_version").fetchone()[0]
        self.assertEqual(version, 1)

    def test_create_if_absent_is_atomic_and_idempotent(self):
        room, created = self.store.create_room_if_absent("r1", {"passkey": "abc"})
        again, created_again = self.store.create_room_if_absent("r1", {"passkey": "zzz"})

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(again.passkey_digest, passkey_digest("r1", "abc"))
        self.assertEqual(self.store.read_room("r1"), room)

    def test_messages_survive_restart_in_order(self):
        self.store.create_room_if_absent("r1", {})
        first = self.store.append_message("r1", {"text": "one", "name": "alice", "created_at": SERVER_TIMESTAMP})
        self.store.append_message("r1", {"text": "two", "name": "bob", "reply_to": first.message_id})
        self.backend.close()

        self.backend = SQLiteBackend(self.db_path)
        self.store = SQLiteDocumentStore(self.backend, now_ns=lambda: 7_000_000_000)
        messages = self.store.list_messages("r1")

        self.assertEqual([m.text for m in messages], ["one", "two"])
        self.assertLess(messages[0].created_at, messages[1].created_at)
        self.assertEqual(messages[1].reply_to, first.message_id)

        third = self.store.append_message("r1", {"text": "three", "name": "alice"})
        self.assertGreater(third.created_at, messages[1].created_at)

    def test_update_rules_match_memory_store(self):
        message = self.store.append_message("r1", {"text": "hello", "name": "alice"})

        edited = self.store.update_message(
            "r1",
            message.message_id,
            {"text": "hello again", "edited_at": SERVER_TIMESTAMP},
            actor="alice",
        )
        self.assertEqual(edited.text, "hello again")
        self.assertGreater(edited.edited_at, message.created_at)

        with self.assertRaises(ImmutableFieldError):
            self.store.update_message("r1", message.message_id, {"name": "bob"})
        with self.assertRaises(WriteRejected):
            self.store.update_message("r1", message.message_id, {"text": "x"}, actor="bob")
        with self.assertRaises(DocumentNotFound):
            self.store.update_message("r1", "m_missing", {"text": "x"})

        stored = self.store.list_messages("r1")[0]
        self.assertEqual(stored.text, "hello again")
        self.assertEqual(stored.name, "alice")

    def test_failed_update_leaves_no_open_transaction(self):
        with self.assertRaises(DocumentNotFound):
            self.store.update_message("r1", "m_missing", {"text": "x"})
        self.assertFalse(self.backend.connection.in_transaction)
        self.store.append_message("r1", {"text": "still writable", "name": "alice"})

    def test_unsupported_schema_version_is_rejected(self):
        self.backend.close()
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA user_version = 9")
        conn.close()

        with self.assertRaises(ValueError):
            SQLiteBackend(self.db_path)


if __name__ == "__main__":
    unittest.main()
