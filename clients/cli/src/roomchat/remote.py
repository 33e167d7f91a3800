"""The remote document store capability the chat client is written against."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from roomstore.errors import StoreError
from roomstore.hub import Subscription
from roomstore.service import DocumentService

from roomchat.models import Room

SnapshotCallback = Callable[[Sequence[Mapping[str, Any]]], None]
ErrorCallback = Callable[[Exception], None]


class RemoteStoreError(Exception):
    """A remote call failed; ``code`` mirrors the store's error code when known."""

    def __init__(self, code: str, message: str, status: Optional[int] = None) -> None:
        self.code = code
        self.status = status
        super().__init__(message)


class SubscriptionHandle:
    """Closes one live subscription; closing twice is a no-op."""

    def __init__(self, on_close: Callable[[], None]) -> None:
        self._on_close = on_close
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._on_close()


class RemoteStore:
    """Durable ordered append, subscribe-to-changes, conditional create, field update."""

    async def read_room(self, room_id: str) -> Optional[Room]:
        raise NotImplementedError

    async def create_room_if_absent(self, room_id: str, fields: Mapping[str, Any]) -> tuple[Room, bool]:
        raise NotImplementedError

    def subscribe_ordered(
        self,
        room_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> SubscriptionHandle:
        """Deliver the room's full message list, ordered by ``created_at``, on every change."""

        raise NotImplementedError

    async def append(self, room_id: str, fields: Mapping[str, Any]) -> str:
        raise NotImplementedError

    async def update_fields(
        self,
        room_id: str,
        message_id: str,
        fields: Mapping[str, Any],
        actor: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InProcessRemoteStore(RemoteStore):
    """Adapts a local ``DocumentService`` to the remote store capability."""

    def __init__(self, service: Optional[DocumentService] = None) -> None:
        self.service = service if service is not None else DocumentService()
        self._live: Dict[int, tuple[Subscription, ErrorCallback]] = {}

    async def read_room(self, room_id: str) -> Optional[Room]:
        try:
            room = self.service.read_room(room_id)
        except StoreError as exc:
            raise RemoteStoreError(exc.code, str(exc)) from exc
        return Room.from_dict(room.to_dict()) if room is not None else None

    async def create_room_if_absent(self, room_id: str, fields: Mapping[str, Any]) -> tuple[Room, bool]:
        try:
            room, created = self.service.create_room_if_absent(room_id, fields)
        except StoreError as exc:
            raise RemoteStoreError(exc.code, str(exc)) from exc
        return Room.from_dict(room.to_dict()), created

    def subscribe_ordered(
        self,
        room_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> SubscriptionHandle:
        def deliver(snapshot) -> None:
            on_snapshot([message.to_dict() for message in snapshot])

        subscription = self.service.subscribe(room_id, deliver)
        key = id(subscription)
        self._live[key] = (subscription, on_error)

        def close() -> None:
            self._live.pop(key, None)
            self.service.unsubscribe(subscription)

        return SubscriptionHandle(close)

    def active_subscriptions(self) -> int:
        return len(self._live)

    def fail_subscriptions(self, exc: Exception) -> None:
        """Report ``exc`` to every open subscription without closing them."""

        for _, on_error in list(self._live.values()):
            on_error(exc)

    async def append(self, room_id: str, fields: Mapping[str, Any]) -> str:
        try:
            message = self.service.append_message(room_id, fields)
        except StoreError as exc:
            raise RemoteStoreError(exc.code, str(exc)) from exc
        return message.message_id

    async def update_fields(
        self,
        room_id: str,
        message_id: str,
        fields: Mapping[str, Any],
        actor: Optional[str] = None,
    ) -> None:
        try:
            self.service.update_message(room_id, message_id, fields, actor=actor)
        except StoreError as exc:
            raise RemoteStoreError(exc.code, str(exc)) from exc

