"""Pairs a document store with a subscription hub so every write fans out a snapshot."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Union

from .documents import InMemoryDocumentStore, MessageDocument, RoomDocument
from .hub import Callback, Subscription, SubscriptionHub
from .sqlite_documents import SQLiteDocumentStore

logger = logging.getLogger(__name__)


DocumentStore = Union[InMemoryDocumentStore, SQLiteDocumentStore]


class DocumentService:
    def __init__(self, store: DocumentStore | None = None, hub: SubscriptionHub | None = None) -> None:
        self.store: DocumentStore = store if store is not None else InMemoryDocumentStore()
        self.hub = hub if hub is not None else SubscriptionHub()

    def create_room_if_absent(self, room_id: str, fields: Mapping[str, Any]) -> tuple[RoomDocument, bool]:
        room, created = self.store.create_room_if_absent(room_id, fields)
        if created:
            logger.info("room created room_id=%s has_passkey=%s", room_id, room.has_passkey)
        return room, created

    def read_room(self, room_id: str) -> RoomDocument | None:
        return self.store.read_room(room_id)

    def append_message(self, room_id: str, fields: Mapping[str, Any]) -> MessageDocument:
        message = self.store.append_message(room_id, fields)
        self._publish(room_id)
        return message

    def update_message(
        self,
        room_id: str,
        message_id: str,
        fields: Mapping[str, Any],
        actor: str | None = None,
    ) -> MessageDocument:
        message = self.store.update_message(room_id, message_id, fields, actor=actor)
        self._publish(room_id)
        return message

    def snapshot(self, room_id: str) -> list[MessageDocument]:
        return self.store.list_messages(room_id)

    def subscribe(self, room_id: str, callback: Callback) -> Subscription:
        """Register ``callback`` and deliver the current snapshot to it right away.

        Later writes to the room deliver one full snapshot each, ordered by
        ascending creation timestamp.
        """

        subscription = self.hub.subscribe(room_id, callback)
        subscription.deliver(self.snapshot(room_id))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self.hub.unsubscribe(subscription)

    def _publish(self, room_id: str) -> None:
        if self.hub.subscriber_count(room_id) == 0:
            return
        self.hub.broadcast_snapshot(room_id, self.snapshot(room_id))
