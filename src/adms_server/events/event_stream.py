"""In-process broadcaster feeding the /live-events SSE endpoint."""

import json
import queue
import threading
from typing import Any, Dict, Iterable, Optional, Tuple

Message = Tuple[str, str]  # (event type, JSON payload)


class Subscription(queue.Queue):
    """Bounded queue of messages for one SSE client, optionally limited to some event types"""

    def __init__(self, maxsize: int, event_types: Optional[Iterable[str]] = None):
        super().__init__(maxsize=maxsize)
        self.event_types = frozenset(event_types) if event_types else None

    def wants(self, event_type: str) -> bool:
        return self.event_types is None or event_type in self.event_types

    def offer(self, message: Message) -> None:
        """Enqueue without blocking; a full queue loses its oldest message"""
        while True:
            try:
                self.put_nowait(message)
                return
            except queue.Full:
                try:
                    self.get_nowait()
                except queue.Empty:
                    pass


class EventStream:
    """Thread-safe fan-out of device_status and attendance events to SSE clients"""

    def __init__(self, max_queue_size: int = 100):
        self._subscribers = set()
        self._lock = threading.Lock()
        self._max_queue_size = max_queue_size

    def subscribe(self, event_types: Optional[Iterable[str]] = None) -> Subscription:
        subscription = Subscription(self._max_queue_size, event_types)
        with self._lock:
            self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        """Deliver ``data`` to every interested subscriber as ``(event_type, json)``"""
        if not data:
            return

        message = (event_type, json.dumps({"type": event_type, **data}, ensure_ascii=False, default=str))
        with self._lock:
            targets = [s for s in self._subscribers if s.wants(event_type)]

        for subscription in targets:
            subscription.offer(message)


device_event_stream = EventStream()
