"""In-process publish/subscribe channel for alert and stats events."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from threading import Event as ThreadEvent
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from watcher.models import Alert, BroadcastEvent, SnapshotEvent, StatsEvent

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], Iterable[Alert]]

_subscription_ids = itertools.count(1)


class Subscription:
    """Handle for one consumer; events wait in a bounded queue."""

    def __init__(self, channel: "BroadcastChannel", maxsize: int):
        self.id = next(_subscription_ids)
        self.dropped = 0
        self._channel = channel
        self._queue: "queue.Queue[BroadcastEvent]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def get(self, timeout: Optional[float] = None) -> Optional[BroadcastEvent]:
        """Next event, or None when nothing arrived within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[BroadcastEvent]:
        events: List[BroadcastEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def events(self, stop_event: ThreadEvent | None = None, poll: float = 1.0) -> Iterator[BroadcastEvent]:
        while not self.closed:
            if stop_event and stop_event.is_set():
                return
            event = self.get(timeout=poll)
            if event is not None:
                yield event

    def close(self) -> None:
        self._channel.unsubscribe(self)

    def _offer(self, event: BroadcastEvent) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def _mark_closed(self) -> None:
        self._closed.set()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class BroadcastChannel:
    """Fans events out to every registered subscriber without blocking.

    A new subscriber immediately receives one snapshot event built from
    ``snapshot_provider``, followed by the most recent stats event if one was
    published. Events that do not fit in a subscriber's queue are
    dropped for that subscriber only.
    """

    def __init__(self, snapshot_provider: SnapshotProvider | None = None, queue_size: int = 100):
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self._snapshot_provider = snapshot_provider
        self._queue_size = queue_size
        self._subscribers: Dict[int, Subscription] = {}
        self._latest_stats: Optional[StatsEvent] = None
        self._lock = threading.Lock()

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        self._snapshot_provider = provider

    def subscribe(self, queue_size: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, maxsize=queue_size or self._queue_size)
        with self._lock:
            alerts = list(self._snapshot_provider()) if self._snapshot_provider else []
            subscription._offer(SnapshotEvent(alerts=alerts))
            if self._latest_stats is not None and not subscription._queue.full():
                subscription._offer(self._latest_stats)
            self._subscribers[subscription.id] = subscription
        logger.info(
            "Subscriber %d connected (%d total, %d active alerts in snapshot)",
            subscription.id,
            len(self._subscribers),
            len(alerts),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscription.id, None)
        subscription._mark_closed()
        if removed is not None:
            logger.info("Subscriber %d disconnected", subscription.id)

    def publish(self, event: BroadcastEvent) -> int:
        """Deliver ``event`` to every subscriber; returns how many accepted it."""
        delivered = 0
        with self._lock:
            if isinstance(event, StatsEvent):
                self._latest_stats = event
            subscribers = list(self._subscribers.values())
            for subscription in subscribers:
                if subscription._offer(event):
                    delivered += 1
                else:
                    logger.warning(
                        "Dropped %s event for subscriber %d (%d dropped so far)",
                        event.event_type.value,
                        subscription.id,
                        subscription.dropped,
                    )
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
