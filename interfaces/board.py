"""Consumer-side view of the alert set, rebuilt from broadcast events."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from orchestrator.broadcast import BroadcastChannel
from watcher.models import (
    Alert,
    AlertCleared,
    AlertCreated,
    AlertUpdated,
    BroadcastEvent,
    ScanStats,
    SnapshotEvent,
    StatsEvent,
)

logger = logging.getLogger(__name__)


class AlertBoard:
    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}
        self.stats: Optional[ScanStats] = None

    def apply(self, event: BroadcastEvent) -> None:
        if isinstance(event, SnapshotEvent):
            self._alerts = {alert.symbol: alert for alert in event.alerts}
        elif isinstance(event, (AlertCreated, AlertUpdated)):
            self._alerts[event.alert.symbol] = event.alert
        elif isinstance(event, AlertCleared):
            self._alerts.pop(event.symbol, None)
        elif isinstance(event, StatsEvent):
            self.stats = event.stats

    def apply_all(self, events: Iterable[BroadcastEvent]) -> None:
        for event in events:
            self.apply(event)

    def alerts(self) -> List[Alert]:
        return sorted(self._alerts.values(), key=lambda alert: alert.change_percent, reverse=True)

    def rows(self) -> List[List[object]]:
        """Table rows: symbol, type, change %, day %, price, window low, window high, volume."""
        return [
            [
                alert.symbol,
                alert.asset_type or "",
                round(alert.change_percent, 2),
                None if alert.day_change_percent is None else round(alert.day_change_percent, 2),
                alert.current_price,
                alert.min_price,
                alert.max_price,
                alert.volume,
            ]
            for alert in self.alerts()
        ]

    def stats_line(self) -> str:
        if self.stats is None:
            return "Waiting for the first scan cycle..."
        return (
            f"Symbols: {self.stats.total} | Processed: {self.stats.processed} | "
            f"Failed: {self.stats.failed} | Active alerts: {self.stats.active_alerts} | "
            f"Last scan: {self.stats.scan_duration_ms:.0f} ms"
        )


class BoardFeed:
    """Keeps an ``AlertBoard`` in step with a channel for a polling dashboard.

    ``refresh`` may be called from several UI callbacks at once. Once the
    subscription has lost an event the board can no longer be trusted, so the
    feed subscribes again and rebuilds the board from the new snapshot.
    """

    def __init__(self, channel: BroadcastChannel):
        self._channel = channel
        self._lock = threading.Lock()
        self.board = AlertBoard()
        self._subscription = channel.subscribe()

    def refresh(self) -> Tuple[List[List[object]], str]:
        with self._lock:
            self.board.apply_all(self._subscription.drain())
            if self._subscription.dropped:
                logger.warning(
                    "Dashboard missed %d events; resyncing from a new snapshot",
                    self._subscription.dropped,
                )
                self._subscription.close()
                self._subscription = self._channel.subscribe()
                self.board.apply_all(self._subscription.drain())
            return self.board.rows(), self.board.stats_line()

    def close(self) -> None:
        with self._lock:
            self._subscription.close()
