"""In-process change notifications.

Delivery is synchronous and best-effort: nothing is persisted or replayed,
and a subscriber that raises is logged and skipped.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass
class ChangeEvent:
    table: str
    event_type: str  # INSERT, UPDATE, DELETE, or a topic-specific name such as RESTART
    new: Any = None
    commit_timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Subscription:
    def __init__(self, bus: "EventBus", topic: str, callback: Callable[[ChangeEvent], Any]):
        self.bus = bus
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.bus._remove(self)
            self.active = False


class EventBus:
    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Callable[[ChangeEvent], Any]) -> Subscription:
        sub = Subscription(self, topic, callback)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.topic, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.topic, None)

    def subscriber_count(self, topic: str | None = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subscribers.get(topic, []))
            return sum(len(subs) for subs in self._subscribers.values())

    def emit(self, table: str, payload: ChangeEvent) -> int:
        """Deliver ``payload`` to subscribers of ``table`` and of ``*``. Returns how many were called."""
        with self._lock:
            targets = list(self._subscribers.get(table, []))
            if table != WILDCARD:
                targets += self._subscribers.get(WILDCARD, [])
        delivered = 0
        for sub in targets:
            try:
                sub.callback(payload)
            except Exception:
                logger.exception("Subscriber for %s failed on %s", sub.topic, table)
                continue
            delivered += 1
        return delivered


bus = EventBus()
