# Overview: In-process publish/subscribe for live dashboard updates (best-effort, no acks).

from __future__ import annotations

import itertools
import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


def role_room(role: str) -> str:
    return f"role:{role}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


@dataclass(frozen=True)
class PushMessage:
    room: str
    event: str
    payload: Any
    sent_at: float = field(default_factory=time.time)

    def to_sse(self) -> str:
        """Server-sent events frame."""
        data = json.dumps(self.payload, default=str, separators=(",", ":"))
        return f"event: {self.event}\ndata: {data}\n\n"


class Subscription:
    """
    One connected listener.

    Messages go into a bounded queue; when the consumer falls behind, new
    messages are dropped rather than blocking the publisher.
    """

    _ids = itertools.count(1)

    def __init__(self, broker: "PushBroker", rooms: Iterable[str], max_queue: int = DEFAULT_QUEUE_SIZE):
        self.id = next(self._ids)
        self.rooms = frozenset(rooms)
        self.dropped = 0
        self._broker = broker
        self._queue: queue.Queue[PushMessage] = queue.Queue(maxsize=max_queue)
        self.closed = False

    def offer(self, message: PushMessage) -> bool:
        try:
            self._queue.put_nowait(message)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: float | None = None) -> PushMessage | None:
        """Next message, or None when the timeout elapses."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._broker.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class PushBroker:
    """Room-based fan-out: rooms are `role:<role>` and `user:<id>`."""

    def __init__(self, max_queue: int = DEFAULT_QUEUE_SIZE):
        self.max_queue = max_queue
        self._subscriptions: dict[int, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, rooms: Iterable[str]) -> Subscription:
        rooms = [room for room in rooms if room]
        if not rooms:
            raise ValueError("at least one room is required")
        sub = Subscription(self, rooms, max_queue=self.max_queue)
        with self._lock:
            self._subscriptions[sub.id] = sub
        logger.debug("Subscriber %s joined %s", sub.id, sorted(sub.rooms))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(sub.id, None)
        sub.closed = True

    def has_subscribers(self, room: str | None = None) -> bool:
        with self._lock:
            if room is None:
                return bool(self._subscriptions)
            return any(room in sub.rooms for sub in self._subscriptions.values())

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, room: str, event: str, payload: Any) -> int:
        """Fire-and-forget; returns how many subscribers accepted the message."""
        message = PushMessage(room=room, event=event, payload=payload)
        with self._lock:
            targets = [sub for sub in self._subscriptions.values() if room in sub.rooms]

        delivered = 0
        for sub in targets:
            if sub.offer(message):
                delivered += 1
            else:
                logger.warning("Dropped %s for subscriber %s (queue full)", event, sub.id)
        return delivered
