import logging
import unittest

from roomchat.gateway_client import GatewayRemoteStore
from roomchat.redact import MASK, redact_argv, redact_mapping, redact_text
from roomchat.remote import RemoteStoreError


class TestRedactionHelpers(unittest.TestCase):
    def test_redact_text_masks_inline_passkeys(self):
        text = 'GET /join?room=r1&passkey=abc123 passkey_digest="d1g3st" passkey: hunter2'
        redacted = redact_text(text)
        self.assertIn("passkey=[REDACTED]", redacted)
        self.assertIn('passkey_digest="[REDACTED]"', redacted)
        self.assertIn("passkey: [REDACTED]", redacted)
        self.assertIn("room=r1", redacted)
        for secret in ("abc123", "d1g3st", "hunter2"):
            self.assertNotIn(secret, redacted)

    def test_redact_text_masks_room_command(self):
        self.assertEqual(redact_text("/room vault s3cret"), f"/room vault {MASK}")
        self.assertEqual(redact_text("/room open"), "/room open")

    def test_redact_argv(self):
        argv = ["--name", "alice", "--passkey", "abc", "--room", "r1", "--passkey=xyz"]
        self.assertEqual(
            redact_argv(argv),
            ["--name", "alice", "--passkey", MASK, "--room", "r1", f"--passkey={MASK}"],
        )

    def test_redact_mapping_replaces_sensitive_values(self):
        payload = {
            "room_id": "r1",
            "fields": {"passkey": "abc", "text": "hello"},
            "rooms": [{"passkey_digest": "d1"}, {"other": "ok"}, ["nested", {"passkey": "p"}]],
            "missing": {"passkey": None},
        }
        redacted = redact_mapping(payload)
        self.assertEqual(redacted["room_id"], "r1")
        self.assertEqual(redacted["fields"], {"passkey": MASK, "text": "hello"})
        self.assertEqual(redacted["rooms"][0]["passkey_digest"], MASK)
        self.assertEqual(redacted["rooms"][1]["other"], "ok")
        self.assertEqual(redacted["rooms"][2], ["nested", {"passkey": MASK}])
        self.assertIsNone(redacted["missing"]["passkey"])
        self.assertEqual(payload["fields"]["passkey"], "abc")


class TestRequestLogging(unittest.IsolatedAsyncioTestCase):
    async def test_failed_request_log_omits_passkey(self):
        remote = GatewayRemoteStore("http://127.0.0.1:1")
        try:
            with self.assertLogs("roomchat.gateway_client", level=logging.WARNING) as captured:
                with self.assertRaises(RemoteStoreError):
                    await remote.create_room_if_absent("r1", {"passkey": "very-secret"})
        finally:
            await remote.close()
        self.assertFalse(any("very-secret" in line for line in captured.output))


if __name__ == "__main__":
    unittest.main()
