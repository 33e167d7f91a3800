from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from .documents import MessageDocument


Snapshot = Sequence[MessageDocument]
Callback = Callable[[Snapshot], None]


@dataclass(eq=False)
class Subscription:
    room_id: str
    callback: Callback

    def deliver(self, snapshot: Snapshot) -> None:
        self.callback(snapshot)


class SubscriptionHub:
    """Registers room subscriptions and broadcasts full snapshots to all listeners."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, room_id: str, callback: Callback) -> Subscription:
        subscription = Subscription(room_id=room_id, callback=callback)
        self._subscriptions.setdefault(room_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.room_id)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.room_id, None)

    def subscriber_count(self, room_id: str) -> int:
        return len(self._subscriptions.get(room_id, []))

    def broadcast_snapshot(self, room_id: str, snapshot: Snapshot) -> None:
        for subscription in list(self._subscriptions.get(room_id, [])):
            subscription.deliver(snapshot)
