from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from watcher.conditions import exceeds_hysteresis, has_signal, in_threshold_range
from watcher.models import (
    Alert,
    AlertCleared,
    AlertCreated,
    AlertEvent,
    AlertUpdated,
    WindowStats,
    now_ms,
)

logger = logging.getLogger(__name__)


class AlertStateMachine:
    """Tracks which symbols are inside the detection band.

    A symbol is either inactive (no entry) or active (an ``Alert`` keyed by
    symbol). Updates inside the band are only emitted when the change moved by
    more than ``hysteresis_delta`` since the last emitted value; smaller moves
    leave the stored alert and its baseline untouched.
    """

    def __init__(
        self,
        threshold_min: float = 9.0,
        threshold_max: float = 13.0,
        hysteresis_delta: float = 0.5,
        clock: Callable[[], int] = now_ms,
    ):
        if threshold_min > threshold_max:
            raise ValueError("threshold_min must not exceed threshold_max")
        if hysteresis_delta < 0:
            raise ValueError("hysteresis_delta must not be negative")
        self._threshold_min = threshold_min
        self._threshold_max = threshold_max
        self._hysteresis_delta = hysteresis_delta
        self._clock = clock
        self._alerts: Dict[str, Alert] = {}
        self._lock = threading.Lock()

    def evaluate(
        self,
        symbol: str,
        stats: Optional[WindowStats],
        volume: Optional[float] = None,
        now: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> Optional[AlertEvent]:
        """Apply one window reading to the symbol's alert state.

        ``details`` holds asset fields (``source``, ``asset_type``, ``name``,
        ``day_change_percent``) copied onto the alert; missing ones keep the
        values the alert already has.
        """
        if not has_signal(stats):
            return None
        timestamp = self._clock() if now is None else now
        change = stats.change_percent
        asset = {key: value for key, value in (details or {}).items() if value is not None}

        with self._lock:
            existing = self._alerts.get(symbol)

            if not in_threshold_range(change, self._threshold_min, self._threshold_max):
                if existing is None:
                    return None
                del self._alerts[symbol]
                logger.info("Alert cleared: %s at %+.2f%%", symbol, change)
                return AlertCleared(
                    symbol=symbol,
                    change_percent=change,
                    cleared_at=timestamp,
                    last_alert=existing,
                )

            if existing is None:
                alert = Alert(
                    symbol=symbol,
                    current_price=stats.current_price,
                    change_percent=change,
                    min_price=stats.min_price,
                    max_price=stats.max_price,
                    volume=volume,
                    first_detected_at=timestamp,
                    last_updated_at=timestamp,
                    **asset,
                )
                self._alerts[symbol] = alert
                logger.info(
                    "Alert created: %s +%.2f%% price=%.6g low=%.6g",
                    symbol,
                    change,
                    stats.current_price,
                    stats.min_price,
                )
                return AlertCreated(alert=alert)

            if not exceeds_hysteresis(change, existing.change_percent, self._hysteresis_delta):
                return None

            alert = replace(
                existing,
                current_price=stats.current_price,
                change_percent=change,
                min_price=stats.min_price,
                max_price=stats.max_price,
                volume=volume if volume is not None else existing.volume,
                last_updated_at=timestamp,
                **asset,
            )
            self._alerts[symbol] = alert
            logger.info(
                "Alert updated: %s %+.2f%% -> %+.2f%%",
                symbol,
                existing.change_percent,
                change,
            )
            return AlertUpdated(alert=alert, previous_change_percent=existing.change_percent)

    def active_alerts(self) -> List[Alert]:
        """Active alerts, strongest move first."""
        with self._lock:
            alerts = list(self._alerts.values())
        return sorted(alerts, key=lambda alert: alert.change_percent, reverse=True)

    def get(self, symbol: str) -> Optional[Alert]:
        with self._lock:
            return self._alerts.get(symbol)

    def is_active(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._alerts

    def clear(self) -> None:
        with self._lock:
            self._alerts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
