"""Line-oriented console client for one chat room."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from typing import Dict, List, Optional, TextIO

from roomchat.chat_model import ChatRoomModel, RenderState
from roomchat.gateway_client import GatewayRemoteStore
from roomchat.local_store import LocalStorage
from roomchat.models import Message
from roomchat.presentation import VIEW_CONNECTING, VIEW_DENIED, VIEW_EMPTY, VIEW_LOADING, MessageRow
from roomchat.profile_paths import resolve_profile_paths
from roomchat.redact import redact_argv, redact_text
from roomchat.remote import InProcessRemoteStore, RemoteStore
from roomchat.settings import load_settings, resolve_settings

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "commands: /reply <ref>, /edit <ref>, /delete <ref>, /hide <ref>, /menu <ref>, "
    "/jump [ref], /cancel, /room <room> [passkey], /quit"
)

_STATUS_LINES = {
    VIEW_LOADING: "-- checking room access --",
    VIEW_CONNECTING: "-- connecting --",
    VIEW_EMPTY: "-- no messages yet --",
}


def format_row(ref: int, row: MessageRow) -> str:
    message = row.message
    marker = ">>" if row.is_highlighted else "  "
    author = f"{message.name} (you)" if row.is_own else message.name
    suffix = " (edited)" if message.is_edited and not message.is_deleted else ""
    body = f"_{message.text}_" if message.is_deleted else message.text
    lines = [f"{marker}[{ref}] {author}: {body}{suffix}"]
    if row.reply_preview is not None:
        preview = row.reply_preview
        quoted = f"_{preview.text}_" if preview.is_deleted else preview.text
        lines.insert(0, f"     re {preview.name}: {quoted}")
    if row.menu_open:
        actions = ["reply", "hide"]
        if row.can_modify:
            actions[1:1] = ["edit", "delete"]
        lines.append("     actions: " + ", ".join(actions))
    return "\n".join(lines)


class ConsoleSession:
    """Prints model changes as lines and dispatches typed commands."""

    def __init__(self, model: ChatRoomModel, lines: "asyncio.Queue[Optional[str]]", output: TextIO) -> None:
        self.model = model
        self.lines = lines
        self.output = output
        self._refs: Dict[str, int] = {}
        self._printed: Dict[str, str] = {}
        self._last_status: Optional[str] = None
        self._last_alert: Optional[str] = None
        self._last_connection_error: Optional[str] = None
        self._jump_shown = False

    def write(self, text: str) -> None:
        self.output.write(text + "\n")
        self.output.flush()

    def ref_for(self, message_id: str) -> int:
        if message_id not in self._refs:
            self._refs[message_id] = len(self._refs) + 1
        return self._refs[message_id]

    def resolve_ref(self, token: str) -> Optional[str]:
        token = token.strip().lstrip("#")
        if token.isdigit():
            wanted = int(token)
            for message_id, ref in self._refs.items():
                if ref == wanted:
                    return message_id
            return None
        return token or None

    def reset(self) -> None:
        self._refs.clear()
        self._printed.clear()
        self._last_status = None
        self._jump_shown = False

    def refresh(self) -> None:
        state = self.model.render()
        self._print_status(state)
        for row in state.view.rows:
            ref = self.ref_for(row.message.id)
            line = format_row(ref, row)
            if self._printed.get(row.message.id) != line:
                self._printed[row.message.id] = line
                self.write(line)
        if state.show_jump_to_newest and not self._jump_shown:
            self.write("-- new messages below, /jump to see them --")
        self._jump_shown = state.show_jump_to_newest
        if state.alert and state.alert != self._last_alert:
            self.write(f"! {state.alert}")
        self._last_alert = state.alert
        self.model.take_scroll_request()

    def _print_status(self, state: RenderState) -> None:
        status = state.view.status
        if status != self._last_status:
            self._last_status = status
            if status == VIEW_DENIED:
                self.write(f"-- access denied: {state.view.reason} --")
            elif status in _STATUS_LINES:
                self.write(_STATUS_LINES[status])
        if state.connection_error != self._last_connection_error:
            self._last_connection_error = state.connection_error
            if state.connection_error:
                self.write(f"-- connection problem: {state.connection_error} --")

    async def confirm(self, message: Message) -> bool:
        self.write(f"Delete this message for everyone? \"{message.text}\" [y/N]")
        answer = await self.lines.get()
        return (answer or "").strip().lower() in {"y", "yes"}

    async def handle_line(self, line: str) -> bool:
        """Run one typed line; returns False when the session should end."""

        text = line.rstrip("\n")
        if not text.startswith("/"):
            self.model.set_compose_text(text)
            await self.model.submit()
            self.refresh()
            return True

        logger.debug("command %s", redact_text(text))
        command, _, rest = text[1:].partition(" ")
        rest = rest.strip()
        if command in {"quit", "exit"}:
            return False
        if command == "help":
            self.write(HELP_TEXT)
        elif command == "cancel":
            self.model.cancel()
            self.write("-- cancelled --")
        elif command == "room":
            room_id, _, passkey = rest.partition(" ")
            self.reset()
            await self.model.enter_room(room_id, passkey.strip() or None)
        elif command == "jump" and not rest:
            self.model.jump_to_newest()
        else:
            await self._run_message_command(command, rest)
        self.refresh()
        return True

    async def _run_message_command(self, command: str, rest: str) -> None:
        message_id = self.resolve_ref(rest)
        if command not in {"reply", "edit", "delete", "hide", "menu", "jump"}:
            self.write(f"unknown command /{command}; {HELP_TEXT}")
            return
        if message_id is None:
            self.write(f"usage: /{command} <ref>")
            return
        if command == "reply":
            if self.model.start_reply(message_id):
                self.write(f"-- replying to [{self.ref_for(message_id)}] --")
        elif command == "edit":
            if self.model.start_edit(message_id):
                self.write(f"-- editing [{self.ref_for(message_id)}]: {self.model.compose_text} --")
                self.write("-- type the replacement text --")
        elif command == "delete":
            if await self.model.delete_for_everyone(message_id):
                self.write(f"-- deleted [{self.ref_for(message_id)}] for everyone --")
        elif command == "hide":
            if self.model.delete_for_me(message_id):
                self._printed.pop(message_id, None)
                self.write(f"-- hidden [{self.ref_for(message_id)}] on this device --")
        elif command == "menu":
            self.model.toggle_menu(message_id)
            self._printed.pop(message_id, None)
        elif command == "jump":
            if self.model.jump_to_original(message_id):
                self._printed.pop(message_id, None)


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: "asyncio.Queue[Optional[str]]") -> threading.Thread:
    """Feed stdin lines into ``lines`` from a daemon thread; None marks EOF."""

    def _pump() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # loop already closed
            return

    thread = threading.Thread(target=_pump, name="roomchat-stdin", daemon=True)
    thread.start()
    return thread


async def run_console(
    model: ChatRoomModel,
    room_id: str,
    passkey: Optional[str],
    lines: "asyncio.Queue[Optional[str]]",
    output: TextIO,
) -> int:
    session = ConsoleSession(model, lines, output)
    model.confirm = session.confirm
    model.on_change = session.refresh
    session.write(f"joining {room_id or '(no room)'} as {model.nickname}; /help for commands")
    await model.enter_room(room_id, passkey)
    try:
        while True:
            line = await lines.get()
            if line is None:
                break
            if not await session.handle_line(line):
                break
    finally:
        model.leave()
        await model.remote.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Room chat console client")
    parser.add_argument("--name", default="", help="display name shown on your messages")
    parser.add_argument("--room", default="", help="room to join")
    parser.add_argument("--passkey", default=None, help="room passkey")
    parser.add_argument("--base-url", default=None, help="room store base URL")
    parser.add_argument("--profile", default="default", help="profile name for local settings and storage")
    parser.add_argument("--local", action="store_true", help="use an in-process store instead of a server")
    parser.add_argument("--log-level", default="WARNING", help="logging level")
    return parser


async def _main(args: argparse.Namespace) -> int:
    paths = resolve_profile_paths(args.profile)
    settings = resolve_settings(load_settings(paths.settings_path), base_url=args.base_url)
    storage = LocalStorage(settings.storage_path or paths.local_storage_path)
    remote: RemoteStore
    if args.local:
        remote = InProcessRemoteStore()
    else:
        remote = GatewayRemoteStore(settings.base_url)
    logger.info("profile=%s store=%s", args.profile, "in-process" if args.local else settings.base_url)
    model = ChatRoomModel(remote, args.name, storage=storage, settings=settings)
    lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), lines)
    return await run_console(model, args.room, args.passkey, lines, sys.stdout)


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    args = parser.parse_args(argv)
    if not args.name.strip():
        parser.error("a display name is required (--name)")
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.debug("argv=%s", redact_argv(argv))
    try:
        return asyncio.run(_main(args))
    except ValueError as exc:
        parser.error(str(exc))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
