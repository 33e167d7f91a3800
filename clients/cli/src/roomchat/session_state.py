"""Ephemeral per-view selection state: reply/edit targets and the open action menu."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

SELECTION_NONE = "none"
SELECTION_REPLYING = "replying"
SELECTION_EDITING = "editing"


@dataclass(frozen=True)
class Selection:
    kind: str = SELECTION_NONE
    message_id: Optional[str] = None

    @classmethod
    def none(cls) -> "Selection":
        return cls()

    @classmethod
    def replying(cls, message_id: str) -> "Selection":
        return cls(SELECTION_REPLYING, message_id)

    @classmethod
    def editing(cls, message_id: str) -> "Selection":
        return cls(SELECTION_EDITING, message_id)

    @property
    def reply_to(self) -> Optional[str]:
        return self.message_id if self.kind == SELECTION_REPLYING else None

    @property
    def editing_id(self) -> Optional[str]:
        return self.message_id if self.kind == SELECTION_EDITING else None


class SessionState:
    """Holds the reply/edit selection and the open menu; selecting one clears the others."""

    def __init__(self) -> None:
        self.selection = Selection.none()
        self.open_menu_id: Optional[str] = None

    def start_reply(self, message_id: str) -> None:
        self.selection = Selection.replying(message_id)
        self.open_menu_id = None

    def start_edit(self, message_id: str) -> None:
        self.selection = Selection.editing(message_id)
        self.open_menu_id = None

    def toggle_menu(self, message_id: str) -> None:
        if self.open_menu_id == message_id:
            self.open_menu_id = None
            return
        self.open_menu_id = message_id
        self.selection = Selection.none()

    def close_menu(self) -> None:
        self.open_menu_id = None

    def cancel(self) -> None:
        self.selection = Selection.none()
        self.open_menu_id = None
