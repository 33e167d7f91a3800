"""Live subscription that mirrors the room stream into the local echo store."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence

from roomchat.errors import SubscriptionError
from roomchat.local_store import LocalEchoStore
from roomchat.models import parse_snapshot
from roomchat.remote import RemoteStore, SubscriptionHandle

logger = logging.getLogger(__name__)


class StreamSubscription:
    """Keeps at most one subscription open and replaces the echo store on every snapshot."""

    def __init__(
        self,
        remote: RemoteStore,
        echo: LocalEchoStore,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.remote = remote
        self.echo = echo
        self.on_change = on_change
        self.room_id: Optional[str] = None
        self.live = False
        self.last_error: Optional[SubscriptionError] = None
        self._handle: Optional[SubscriptionHandle] = None
        self._generation = 0

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def open(self, room_id: str) -> None:
        """Close any previous subscription, then subscribe to ``room_id``."""

        self.close()
        self._generation += 1
        generation = self._generation
        self.room_id = room_id
        self.last_error = None
        self.echo.clear()

        def on_snapshot(entries: Sequence[Mapping[str, Any]]) -> None:
            if generation != self._generation:
                return
            self.echo.replace_all(parse_snapshot(entries))
            self.live = True
            self._notify()

        def on_error(exc: Exception) -> None:
            if generation != self._generation:
                return
            logger.warning("room stream error room_id=%s: %s", room_id, exc)
            self.live = False
            self.last_error = SubscriptionError(str(exc) or exc.__class__.__name__)
            self._notify()

        self._handle = self.remote.subscribe_ordered(room_id, on_snapshot, on_error)

    def close(self) -> None:
        self._generation += 1
        handle, self._handle = self._handle, None
        self.live = False
        if handle is not None:
            handle.close()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()
