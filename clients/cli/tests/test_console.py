import asyncio
import io
import unittest

import pytest

from roomchat import console
from roomchat.chat_model import ChatRoomModel
from roomchat.local_store import LocalStorage
from roomchat.remote import InProcessRemoteStore


class ConsoleSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.remote = InProcessRemoteStore()
        self.output = io.StringIO()
        self.lines: asyncio.Queue = asyncio.Queue()
        self.model = ChatRoomModel(self.remote, "alice", storage=LocalStorage())
        self.session = console.ConsoleSession(self.model, self.lines, self.output)
        self.model.confirm = self.session.confirm
        self.model.on_change = self.session.refresh
        await self.model.enter_room("r1", None)

    def _printed(self) -> str:
        return self.output.getvalue()

    async def test_plain_lines_send_and_print_once(self):
        await self.session.handle_line("hello room\n")

        printed = self._printed()
        self.assertIn("-- no messages yet --", printed)
        self.assertEqual(printed.count("[1] alice (you): hello room"), 1)

    async def test_reply_and_edit_commands(self):
        await self.session.handle_line("question")
        await self.session.handle_line("/reply 1")
        await self.session.handle_line("answer")
        await self.session.handle_line("/edit 1")
        await self.session.handle_line("question, revised")

        printed = self._printed()
        self.assertIn("-- replying to [1] --", printed)
        self.assertIn("re alice: question", printed)
        self.assertIn("[1] alice (you): question, revised (edited)", printed)

    async def test_delete_asks_for_confirmation(self):
        await self.session.handle_line("oops")
        await self.lines.put("y\n")

        await self.session.handle_line("/delete 1")

        printed = self._printed()
        self.assertIn('Delete this message for everyone? "oops" [y/N]', printed)
        self.assertIn("[1] alice (you): _This message was deleted_", printed)
        self.assertIn("-- deleted [1] for everyone --", printed)

    async def test_declined_delete_keeps_message(self):
        await self.session.handle_line("keep me")
        await self.lines.put("n\n")

        await self.session.handle_line("/delete 1")

        self.assertNotIn("deleted [1]", self._printed())
        self.assertFalse(self.model.echo.messages()[0].is_deleted)

    async def test_hide_menu_and_unknown_commands(self):
        await self.session.handle_line("noise")
        await self.session.handle_line("/menu 1")
        self.assertIn("actions: reply, edit, delete, hide", self._printed())

        await self.session.handle_line("/hide 1")
        await self.session.handle_line("/bogus 1")
        await self.session.handle_line("/reply")

        printed = self._printed()
        self.assertIn("-- hidden [1] on this device --", printed)
        self.assertIn("unknown command /bogus", printed)
        self.assertIn("usage: /reply <ref>", printed)
        self.assertEqual(self.model.render().view.rows, ())

    async def test_room_switch_reports_denial(self):
        await self.model.remote.create_room_if_absent("vault", {"passkey": "abc"})

        await self.session.handle_line("/room vault wrong")

        self.assertIn("-- access denied: protected room, wrong/missing passkey --", self._printed())

    async def test_quit_ends_session(self):
        self.assertFalse(await self.session.handle_line("/quit"))


class RunConsoleTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_console_closes_subscription_on_eof(self):
        remote = InProcessRemoteStore()
        model = ChatRoomModel(remote, "alice", storage=LocalStorage())
        lines: asyncio.Queue = asyncio.Queue()
        for line in ("hi\n", None):
            lines.put_nowait(line)
        output = io.StringIO()

        code = await console.run_console(model, "r1", None, lines, output)

        self.assertEqual(code, 0)
        self.assertEqual(remote.active_subscriptions(), 0)
        self.assertIn("joining r1 as alice", output.getvalue())
        self.assertIn("alice (you): hi", output.getvalue())


def test_main_requires_a_name(capsys):
    with pytest.raises(SystemExit) as exc_info:
        console.main(["--room", "r1"])
    assert exc_info.value.code == 2
    assert "display name is required" in capsys.readouterr().err


def test_parser_defaults():
    args = console.build_parser().parse_args(["--name", "alice"])
    assert args.profile == "default"
    assert args.passkey is None
    assert args.local is False
