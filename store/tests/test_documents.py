import threading
import unittest

from roomstore.documents import (
    SERVER_TIMESTAMP,
    InMemoryDocumentStore,
    ServerTimestamp,
    passkey_digest,
    validate_update,
)
from roomstore.errors import DocumentNotFound, ImmutableFieldError, InvalidDocument, WriteRejected


def _fixed_clock(value: int = 5_000_000_000):
    return lambda: value


class TestServerTimestamp(unittest.TestCase):
    def test_orders_by_seconds_then_nanoseconds(self):
        stamps = [
            ServerTimestamp(2, 0),
            ServerTimestamp(1, 999_999_999),
            ServerTimestamp(1, 5),
        ]
        self.assertEqual(sorted(stamps), [ServerTimestamp(1, 5), ServerTimestamp(1, 999_999_999), ServerTimestamp(2, 0)])

    def test_from_ns_splits_seconds(self):
        stamp = ServerTimestamp.from_ns(3_000_000_042)
        self.assertEqual((stamp.seconds, stamp.nanoseconds), (3, 42))
        self.assertEqual(stamp.to_ns(), 3_000_000_042)
        self.assertEqual(ServerTimestamp.from_dict(stamp.to_dict()), stamp)


class TestRooms(unittest.TestCase):
    def test_create_if_absent_reports_creation_once(self):
        store = InMemoryDocumentStore()

        room, created = store.create_room_if_absent("r1", {"passkey": "abc"})
        again, created_again = store.create_room_if_absent("r1", {"passkey": "other"})

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(again, room)
        self.assertTrue(room.has_passkey)
        self.assertEqual(room.passkey_digest, passkey_digest("r1", "abc"))

    def test_passkey_is_never_stored_in_plaintext(self):
        store = InMemoryDocumentStore()
        room, _ = store.create_room_if_absent("r1", {"passkey": "abc"})
        self.assertNotIn("abc", str(room.to_dict()))

    def test_open_room_has_no_digest(self):
        store = InMemoryDocumentStore()
        room, _ = store.create_room_if_absent("lobby", {"passkey": ""})
        self.assertFalse(room.has_passkey)
        self.assertIsNone(room.passkey_digest)

    def test_read_missing_room_returns_none(self):
        self.assertIsNone(InMemoryDocumentStore().read_room("nope"))

    def test_invalid_room_ids_are_rejected(self):
        store = InMemoryDocumentStore()
        for room_id in ("", "   ", "a/b", None):
            with self.assertRaises(InvalidDocument):
                store.create_room_if_absent(room_id, {})

    def test_concurrent_creates_produce_one_winner(self):
        store = InMemoryDocumentStore()
        results = []
        barrier = threading.Barrier(8)

        def create(index: int) -> None:
            barrier.wait()
            results.append(store.create_room_if_absent("race", {"passkey": f"k{index}"}))

        threads = [threading.Thread(target=create, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sum(1 for _, created in results if created), 1)
        self.assertEqual(len({room.passkey_digest for room, _ in results}), 1)


class TestMessages(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore(now_ns=_fixed_clock())

    def _append(self, text: str, name: str = "alice", **extra):
        fields = {"text": text, "name": name, "created_at": SERVER_TIMESTAMP, "is_deleted": False}
        fields.update(extra)
        return self.store.append_message("r1", fields)

    def test_timestamps_strictly_increase_under_a_stalled_clock(self):
        first = self._append("one")
        second = self._append("two")
        third = self._append("three")

        self.assertLess(first.created_at, second.created_at)
        self.assertLess(second.created_at, third.created_at)
        self.assertEqual([m.text for m in self.store.list_messages("r1")], ["one", "two", "three"])

    def test_message_ids_are_unique(self):
        ids = {self._append(str(i)).message_id for i in range(20)}
        self.assertEqual(len(ids), 20)

    def test_rooms_are_isolated(self):
        self._append("in r1")
        self.store.append_message("r2", {"text": "in r2", "name": "bob"})
        self.assertEqual([m.text for m in self.store.list_messages("r2")], ["in r2"])

    def test_append_validates_types(self):
        with self.assertRaises(InvalidDocument):
            self.store.append_message("r1", {"text": 3, "name": "alice"})
        with self.assertRaises(InvalidDocument):
            self.store.append_message("r1", {"text": "hi", "name": "alice", "reply_to": 7})

    def test_edit_updates_text_and_edited_at_only(self):
        original = self._append("hello", reply_to=None)
        edited = self.store.update_message(
            "r1",
            original.message_id,
            {"text": "hello!", "edited_at": SERVER_TIMESTAMP},
            actor="alice",
        )

        self.assertEqual(edited.text, "hello!")
        self.assertIsNotNone(edited.edited_at)
        self.assertGreater(edited.edited_at, original.created_at)
        self.assertEqual(edited.created_at, original.created_at)
        self.assertEqual(edited.name, original.name)
        self.assertEqual(edited.message_id, original.message_id)

    def test_soft_delete_keeps_record_and_reply_links(self):
        target = self._append("target")
        reply = self._append("reply", name="bob", reply_to=target.message_id)

        deleted = self.store.update_message(
            "r1",
            target.message_id,
            {"text": "This message was deleted", "is_deleted": True},
            actor="alice",
        )

        messages = self.store.list_messages("r1")
        self.assertEqual(len(messages), 2)
        self.assertTrue(deleted.is_deleted)
        self.assertIsNone(deleted.edited_at)
        self.assertEqual(messages[1].reply_to, target.message_id)
        self.assertEqual(reply.reply_to, target.message_id)

    def test_delete_is_idempotent(self):
        target = self._append("target")
        fields = {"text": "This message was deleted", "is_deleted": True}

        first = self.store.update_message("r1", target.message_id, fields, actor="alice")
        second = self.store.update_message("r1", target.message_id, fields, actor="alice")

        self.assertEqual((first.text, first.is_deleted), (second.text, second.is_deleted))
        self.assertEqual(len(self.store.list_messages("r1")), 1)

    def test_identity_fields_cannot_be_updated(self):
        target = self._append("target")
        for field in ("name", "created_at", "reply_to", "id"):
            with self.assertRaises(ImmutableFieldError):
                self.store.update_message("r1", target.message_id, {field: "x"})

    def test_update_of_unknown_message_fails(self):
        with self.assertRaises(DocumentNotFound):
            self.store.update_message("r1", "m_missing", {"text": "x"})

    def test_only_the_author_may_write(self):
        target = self._append("mine")
        with self.assertRaises(WriteRejected):
            self.store.update_message("r1", target.message_id, {"text": "hijack"}, actor="mallory")
        self.assertEqual(self.store.list_messages("r1")[0].text, "mine")


class TestValidateUpdate(unittest.TestCase):
    def test_rejects_empty_and_unknown_fields(self):
        with self.assertRaises(InvalidDocument):
            validate_update({})
        with self.assertRaises(InvalidDocument):
            validate_update({"color": "red"})

    def test_edited_at_only_accepts_sentinel(self):
        with self.assertRaises(InvalidDocument):
            validate_update({"edited_at": {"seconds": 1, "nanoseconds": 0}})
        self.assertEqual(validate_update({"edited_at": SERVER_TIMESTAMP}), {"edited_at": SERVER_TIMESTAMP})


if __name__ == "__main__":
    unittest.main()
