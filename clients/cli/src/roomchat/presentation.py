"""Pure derivation of what the room view shows and when it should scroll."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Container, Dict, List, Mapping, Optional, Sequence, Tuple

from roomchat.access_gate import GateState
from roomchat.models import Message

VIEW_LOADING = "loading"
VIEW_DENIED = "denied"
VIEW_CONNECTING = "connecting"
VIEW_EMPTY = "empty"
VIEW_MESSAGES = "messages"

DEFAULT_SCROLL_THRESHOLD_PX = 100
DEFAULT_HIGHLIGHT_DURATION_S = 2.0


def _sort_keys(messages: Sequence[Message]) -> List[Tuple[int, int]]:
    # Messages without a server timestamp take their neighbour's key so that
    # they stay put until the store assigns one.
    keys: List[Optional[Tuple[int, int]]] = []
    last: Optional[Tuple[int, int]] = None
    for message in messages:
        if message.created_at is not None:
            last = (message.created_at.seconds, message.created_at.nanoseconds)
        keys.append(last)
    following: Optional[Tuple[int, int]] = None
    for index in range(len(keys) - 1, -1, -1):
        if keys[index] is None:
            keys[index] = following
        else:
            following = keys[index]
    return [key if key is not None else (0, 0) for key in keys]


def ordered_messages(messages: Sequence[Message]) -> List[Message]:
    """Sort by (seconds, nanoseconds) ascending; stable for equal keys."""

    keys = _sort_keys(messages)
    order = sorted(range(len(messages)), key=lambda index: keys[index])
    return [messages[index] for index in order]


def visible_messages(messages: Sequence[Message], hidden: Container[str]) -> List[Message]:
    return ordered_messages([message for message in messages if message.id not in hidden])


@dataclass(frozen=True)
class ReplyPreview:
    message_id: str
    name: str
    text: str
    is_deleted: bool


def resolve_reply_preview(message: Message, by_id: Mapping[str, Message]) -> Optional[ReplyPreview]:
    """Look the reply target up in the full message set; silently absent when unknown."""

    if not message.reply_to:
        return None
    target = by_id.get(message.reply_to)
    if target is None:
        return None
    return ReplyPreview(
        message_id=target.id,
        name=target.name,
        text=target.text,
        is_deleted=target.is_deleted,
    )


@dataclass(frozen=True)
class MessageRow:
    message: Message
    is_own: bool
    reply_preview: Optional[ReplyPreview]
    is_highlighted: bool = False
    menu_open: bool = False

    @property
    def can_modify(self) -> bool:
        return self.is_own and not self.message.is_deleted


@dataclass(frozen=True)
class ViewState:
    status: str
    rows: Tuple[MessageRow, ...] = ()
    reason: Optional[str] = None

    @property
    def newest(self) -> Optional[Message]:
        return self.rows[-1].message if self.rows else None


def derive_view(
    gate: GateState,
    messages: Sequence[Message],
    hidden: Container[str],
    live: bool,
    nickname: str,
    *,
    highlighted_id: Optional[str] = None,
    open_menu_id: Optional[str] = None,
) -> ViewState:
    if gate.is_pending:
        return ViewState(VIEW_LOADING)
    if gate.is_denied:
        return ViewState(VIEW_DENIED, reason=gate.reason)
    if not messages:
        return ViewState(VIEW_EMPTY if live else VIEW_CONNECTING)

    by_id: Dict[str, Message] = {message.id: message for message in messages}
    shown = visible_messages(messages, hidden)
    if not shown:
        return ViewState(VIEW_EMPTY)
    rows = tuple(
        MessageRow(
            message=message,
            is_own=message.name == nickname,
            reply_preview=resolve_reply_preview(message, by_id),
            is_highlighted=message.id == highlighted_id,
            menu_open=message.id == open_menu_id,
        )
        for message in shown
    )
    return ViewState(VIEW_MESSAGES, rows=rows)


@dataclass(frozen=True)
class Viewport:
    scroll_top: float = 0.0
    viewport_height: float = 0.0
    content_height: float = 0.0

    @property
    def distance_from_bottom(self) -> float:
        return max(0.0, self.content_height - self.scroll_top - self.viewport_height)

    def is_near_bottom(self, threshold_px: float = DEFAULT_SCROLL_THRESHOLD_PX) -> bool:
        return self.distance_from_bottom <= threshold_px


@dataclass(frozen=True)
class ScrollDecision:
    auto_scroll: bool
    show_jump_to_newest: bool
    target_id: Optional[str] = None


def decide_scroll(
    viewport: Viewport,
    newest: Optional[Message],
    nickname: str,
    threshold_px: float = DEFAULT_SCROLL_THRESHOLD_PX,
) -> ScrollDecision:
    """Auto-scroll when already near the bottom or when the newest message is ours."""

    if newest is None:
        return ScrollDecision(auto_scroll=False, show_jump_to_newest=False)
    if viewport.is_near_bottom(threshold_px) or newest.name == nickname:
        return ScrollDecision(auto_scroll=True, show_jump_to_newest=False, target_id=newest.id)
    return ScrollDecision(auto_scroll=False, show_jump_to_newest=True, target_id=newest.id)


@dataclass(frozen=True)
class Highlight:
    message_id: str
    expires_at: float

    def active(self, now: float) -> bool:
        return now < self.expires_at


def start_highlight(message_id: str, now: float, duration_s: float = DEFAULT_HIGHLIGHT_DURATION_S) -> Highlight:
    return Highlight(message_id=message_id, expires_at=now + duration_s)
