"""Pure-Python state machine for one mounted room view."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from roomchat.access_gate import GateState, RoomAccessGate
from roomchat.errors import AuthorizationViolation, ChatError
from roomchat.local_store import HiddenMessageSet, LocalEchoStore, LocalStorage
from roomchat.models import Message, normalize_nickname
from roomchat.mutations import Confirm, MessageMutations
from roomchat.presentation import (
    Highlight,
    ReplyPreview,
    ViewState,
    Viewport,
    decide_scroll,
    derive_view,
    start_highlight,
)
from roomchat.remote import RemoteStore
from roomchat.session_state import Selection, SessionState
from roomchat.settings import ChatSettings
from roomchat.subscription import StreamSubscription

logger = logging.getLogger(__name__)


def _decline(_: Message) -> bool:
    return False


@dataclass(frozen=True)
class ScrollRequest:
    message_id: str
    smooth: bool = True


@dataclass
class RenderState:
    room_id: str
    nickname: str
    view: ViewState
    live: bool
    compose_text: str
    selection: Selection
    open_menu_id: Optional[str]
    reply_target: Optional[ReplyPreview]
    can_compose: bool
    can_send: bool
    show_jump_to_newest: bool
    alert: Optional[str]
    connection_error: Optional[str]


class ChatRoomModel:
    """Composes gate, subscription, echo store, mutations and presentation for one room."""

    def __init__(
        self,
        remote: RemoteStore,
        nickname: str | None,
        *,
        storage: LocalStorage | None = None,
        settings: ChatSettings | None = None,
        confirm: Confirm = _decline,
        clock: Callable[[], float] = time.monotonic,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.remote = remote
        self.nickname = normalize_nickname(nickname)
        self.storage = storage if storage is not None else LocalStorage()
        self.settings = settings if settings is not None else ChatSettings()
        self.confirm = confirm
        self.clock = clock
        self.on_change = on_change

        self.echo = LocalEchoStore()
        self.gate = RoomAccessGate(remote)
        self.subscription = StreamSubscription(remote, self.echo, on_change=self._on_stream_change)
        self.mutations = MessageMutations(
            remote,
            self.echo,
            deleted_placeholder=self.settings.deleted_placeholder,
        )
        self.session = SessionState()

        self.room_id = ""
        self.passkey: Optional[str] = None
        self.gate_state = GateState.pending()
        self.hidden = HiddenMessageSet(self.storage, "", self.nickname)
        self.compose_text = ""
        self.alert: Optional[str] = None
        self.viewport = Viewport()
        self.show_jump_to_newest = False
        self._scroll_request: Optional[ScrollRequest] = None
        self._highlight: Optional[Highlight] = None
        self._newest_id: Optional[str] = None
        self._pending_send: Optional[str] = None
        self._room_key: Optional[Tuple[str, Optional[str]]] = None
        self._generation = 0
        self._unmounted = False

    # -- room lifecycle -------------------------------------------------

    async def enter_room(self, room_id: str | None, passkey: str | None = None) -> GateState:
        """Resolve access for ``room_id`` and subscribe when allowed.

        Re-entering with the same room and passkey returns the current gate
        state without contacting the store again. A resolution that completes
        after the view moved on is discarded.
        """

        room_key = ((room_id or "").strip(), passkey or None)
        if room_key == self._room_key and not self._unmounted:
            return self.gate_state

        self._reset_room()
        self._unmounted = False
        self._room_key = room_key
        self._generation += 1
        generation = self._generation
        self.room_id, self.passkey = room_key
        self.hidden = HiddenMessageSet(self.storage, self.room_id, self.nickname)
        self._notify()

        state = await self.gate.resolve(self.room_id, self.passkey)
        if generation != self._generation or self._unmounted:
            logger.debug("discarding stale gate result for room_id=%s", self.room_id)
            return state

        self.gate_state = state
        if state.is_allowed:
            self.subscription.open(self.room_id)
        self._notify()
        return state

    def leave(self) -> None:
        """Unmount the view: close the subscription and ignore in-flight results."""

        self._unmounted = True
        self._generation += 1
        self._room_key = None
        self._reset_room()

    def _reset_room(self) -> None:
        self.subscription.close()
        self.echo.clear()
        self.gate_state = GateState.pending()
        self.session.cancel()
        self.compose_text = ""
        self.alert = None
        self.viewport = Viewport()
        self.show_jump_to_newest = False
        self._scroll_request = None
        self._highlight = None
        self._newest_id = None

    # -- compose & selection --------------------------------------------

    def set_compose_text(self, text: str) -> None:
        self.compose_text = text

    def start_reply(self, message_id: str) -> bool:
        if self.echo.get(message_id) is None:
            self.alert = "That message is no longer available."
            return False
        self.session.start_reply(message_id)
        return True

    def start_edit(self, message_id: str) -> bool:
        message = self.echo.get(message_id)
        if message is None:
            self.alert = "That message is no longer available."
            return False
        if message.name != self.nickname:
            self.alert = str(AuthorizationViolation("you can only edit your own messages"))
            return False
        if message.is_deleted:
            self.alert = "Deleted messages cannot be edited."
            return False
        self.session.start_edit(message_id)
        self.compose_text = message.text
        return True

    def toggle_menu(self, message_id: str) -> None:
        self.session.toggle_menu(message_id)

    def cancel(self) -> None:
        if self.session.selection.editing_id is not None:
            self.compose_text = ""
        self.session.cancel()

    def dismiss_alert(self) -> None:
        self.alert = None

    # -- mutations ------------------------------------------------------

    async def submit(self) -> Optional[str]:
        """Send the compose text, or save it as an edit while editing."""

        if self.session.selection.editing_id is not None:
            return self.session.selection.editing_id if await self.save_edit() else None
        return await self.send()

    async def send(self) -> Optional[str]:
        text = self.compose_text
        if not text.strip():
            return None
        reply_to = self.session.selection.reply_to
        self._pending_send = text
        self.compose_text = ""
        try:
            message_id = await self.mutations.send(self.gate_state, self.nickname, text, reply_to=reply_to)
        except ChatError as exc:
            if not self.compose_text:
                self.compose_text = self._pending_send
            self.alert = str(exc)
            return None
        finally:
            self._pending_send = None
        if reply_to is not None and self.session.selection.reply_to == reply_to:
            self.session.cancel()
        return message_id

    async def save_edit(self) -> bool:
        message_id = self.session.selection.editing_id
        if message_id is None:
            return False
        try:
            saved = await self.mutations.edit(self.gate_state, self.nickname, message_id, self.compose_text)
        except ChatError as exc:
            self.alert = str(exc)
            return False
        if saved:
            self.session.cancel()
            self.compose_text = ""
        return saved

    async def delete_for_everyone(self, message_id: str) -> bool:
        self.session.close_menu()
        try:
            return await self.mutations.delete_for_everyone(
                self.gate_state,
                self.nickname,
                message_id,
                self.confirm,
            )
        except ChatError as exc:
            self.alert = str(exc)
            return False

    def delete_for_me(self, message_id: str) -> bool:
        self.session.close_menu()
        try:
            hidden = self.mutations.delete_for_me(self.gate_state, self.hidden, message_id)
        except ChatError as exc:
            self.alert = str(exc)
            return False
        if self.session.selection.message_id == message_id:
            self.cancel()
        self._notify()
        return hidden

    # -- scrolling ------------------------------------------------------

    def update_viewport(self, scroll_top: float, viewport_height: float, content_height: float) -> None:
        self.viewport = Viewport(scroll_top, viewport_height, content_height)
        if self.viewport.is_near_bottom(self.settings.scroll_threshold_px):
            self.show_jump_to_newest = False

    def take_scroll_request(self) -> Optional[ScrollRequest]:
        request, self._scroll_request = self._scroll_request, None
        return request

    def jump_to_newest(self) -> None:
        self.show_jump_to_newest = False
        if self._newest_id is not None:
            self._scroll_request = ScrollRequest(self._newest_id)

    def jump_to_original(self, message_id: str) -> bool:
        """Scroll a reply's target into view and highlight it briefly."""

        if self.echo.get(message_id) is None or message_id in self.hidden:
            return False
        self._scroll_request = ScrollRequest(message_id)
        duration = self.settings.highlight_duration_s
        self._highlight = start_highlight(message_id, self.clock(), duration)
        self._schedule_refresh(duration)
        return True

    def _schedule_refresh(self, delay_s: float) -> None:
        if self.on_change is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(delay_s, self.on_change)

    # -- derivation -----------------------------------------------------

    def _highlighted_id(self) -> Optional[str]:
        if self._highlight is None:
            return None
        if not self._highlight.active(self.clock()):
            self._highlight = None
            return None
        return self._highlight.message_id

    def view(self) -> ViewState:
        return derive_view(
            self.gate_state,
            self.echo.messages(),
            self.hidden,
            self.subscription.live,
            self.nickname,
            highlighted_id=self._highlighted_id(),
            open_menu_id=self.session.open_menu_id,
        )

    def _on_stream_change(self) -> None:
        newest = self.view().newest
        newest_id = newest.id if newest is not None else None
        if newest is not None and newest_id != self._newest_id:
            first_load = self._newest_id is None
            decision = decide_scroll(self.viewport, newest, self.nickname, self.settings.scroll_threshold_px)
            if first_load or decision.auto_scroll:
                self._scroll_request = ScrollRequest(newest.id, smooth=not first_load)
                self.show_jump_to_newest = False
            else:
                self.show_jump_to_newest = decision.show_jump_to_newest
        self._newest_id = newest_id
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def render(self) -> RenderState:
        reply_target = None
        reply_to = self.session.selection.reply_to
        if reply_to is not None:
            target = self.echo.get(reply_to)
            if target is not None:
                reply_target = ReplyPreview(target.id, target.name, target.text, target.is_deleted)
        can_compose = self.gate_state.is_allowed and self.subscription.live
        last_error = self.subscription.last_error
        return RenderState(
            room_id=self.room_id,
            nickname=self.nickname,
            view=self.view(),
            live=self.subscription.live,
            compose_text=self.compose_text,
            selection=self.session.selection,
            open_menu_id=self.session.open_menu_id,
            reply_target=reply_target,
            can_compose=can_compose,
            can_send=can_compose and bool(self.compose_text.strip()),
            show_jump_to_newest=self.show_jump_to_newest,
            alert=self.alert,
            connection_error=str(last_error) if last_error is not None and not self.subscription.live else None,
        )


__all__ = ["ChatRoomModel", "RenderState", "ScrollRequest"]
