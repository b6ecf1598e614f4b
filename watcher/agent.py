from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

from watcher.alerts import AlertStateMachine
from watcher.ingest import PriceRecord, PriceSampleIngestor, parse_sample
from watcher.models import Alert, AlertCleared, AlertEvent, BroadcastEvent, MomentumConfig, SnapshotEvent
from watcher.window import SlidingWindowTracker

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Where the watcher sends alert transitions; ``BroadcastChannel`` is one."""

    def publish(self, event: BroadcastEvent) -> int:
        ...

    def set_snapshot_provider(self, provider: Callable[[], List[Alert]]) -> None:
        ...


class MomentumWatcher:
    """Runs each price sample through the window, the alert rules and the channel.

    Without a channel the watcher still tracks alerts but publishes nothing.
    """

    def __init__(
        self,
        config: MomentumConfig | None = None,
        channel: EventPublisher | None = None,
        tracker: SlidingWindowTracker | None = None,
        alerts: AlertStateMachine | None = None,
    ) -> None:
        self._config = config or MomentumConfig()
        self.tracker = tracker or SlidingWindowTracker(
            window_ms=self._config.window_ms,
            min_samples=self._config.min_samples_for_signal,
        )
        self.alerts = alerts or AlertStateMachine(
            threshold_min=self._config.threshold_min,
            threshold_max=self._config.threshold_max,
            hysteresis_delta=self._config.hysteresis_delta,
        )
        self.channel = channel
        if self.channel is not None:
            self.channel.set_snapshot_provider(self.alerts.active_alerts)
        self._ingestor = PriceSampleIngestor(self.tracker)

    @property
    def config(self) -> MomentumConfig:
        return self._config

    def process(self, record: PriceRecord) -> Optional[AlertEvent]:
        """Ingest one sample and publish the resulting alert transition, if any.

        Raises ``InvalidSample`` for a record that cannot be recorded; nothing
        is changed in that case.
        """
        sample = parse_sample(record)
        stats = self._ingestor.ingest(sample)
        if stats is None:
            logger.debug("Warming up %s (%d samples)", sample.symbol, len(self.tracker.history(sample.symbol)))
            return None

        logger.debug(
            "Window %s price=%.6g low=%.6g high=%.6g change=%+.3f%% n=%d",
            sample.symbol,
            stats.current_price,
            stats.min_price,
            stats.max_price,
            stats.change_percent,
            stats.sample_count,
        )
        event = self.alerts.evaluate(
            sample.symbol,
            stats,
            volume=sample.volume,
            now=sample.timestamp,
            details=sample.details(),
        )
        if event is None:
            return None

        if isinstance(event, AlertCleared) and self._config.reset_window_on_clear:
            self.tracker.reset(sample.symbol)
        if self.channel is not None:
            self.channel.publish(event)
        return event

    def snapshot(self) -> SnapshotEvent:
        return SnapshotEvent(alerts=self.alerts.active_alerts())
