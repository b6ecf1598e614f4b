"""Data models used by the momentum watcher."""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from watcher.errors import InvalidSample


ASSET_TYPES = ("stock", "crypto")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class EventType(str, Enum):
    """Enumeration of broadcast event variants."""

    SNAPSHOT = "snapshot"
    ALERT_CREATED = "alert-created"
    ALERT_UPDATED = "alert-updated"
    ALERT_CLEARED = "alert-cleared"
    STATS = "stats"


@dataclass(frozen=True)
class PriceSample:
    """A single observed price for a symbol at a point in time.

    ``source``, ``asset_type`` (``"stock"`` or ``"crypto"``), ``name`` and
    ``day_change_percent`` describe the asset as the provider reported it and
    are carried onto alerts unchanged.
    """

    symbol: str
    price: float
    timestamp: int  # epoch milliseconds
    volume: Optional[float] = None
    source: Optional[str] = None
    asset_type: Optional[str] = None
    name: Optional[str] = None
    day_change_percent: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.symbol, str) or not self.symbol.strip():
            raise InvalidSample(f"symbol must be a non-empty string, got {self.symbol!r}")
        if not _is_number(self.price) or not math.isfinite(self.price):
            raise InvalidSample(f"{self.symbol}: price must be a finite number, got {self.price!r}")
        if self.price <= 0:
            raise InvalidSample(f"{self.symbol}: price must be positive, got {self.price!r}")
        if not isinstance(self.timestamp, int) or isinstance(self.timestamp, bool):
            raise InvalidSample(
                f"{self.symbol}: timestamp must be integer milliseconds, got {self.timestamp!r}"
            )
        if self.timestamp < 0:
            raise InvalidSample(f"{self.symbol}: timestamp must not be negative")
        if self.volume is not None and (
            not _is_number(self.volume) or not math.isfinite(self.volume) or self.volume < 0
        ):
            raise InvalidSample(f"{self.symbol}: volume must be a non-negative number")
        for label in ("source", "asset_type", "name"):
            value = getattr(self, label)
            if value is not None and not isinstance(value, str):
                raise InvalidSample(f"{self.symbol}: {label} must be a string, got {value!r}")
        if self.asset_type is not None and self.asset_type not in ASSET_TYPES:
            raise InvalidSample(f"{self.symbol}: unknown asset type {self.asset_type!r}")
        if self.day_change_percent is not None and (
            not _is_number(self.day_change_percent) or not math.isfinite(self.day_change_percent)
        ):
            raise InvalidSample(f"{self.symbol}: day change must be a finite number")

    def details(self) -> Dict[str, Any]:
        """Asset fields copied onto alerts, keyed by ``Alert`` attribute name."""
        return {
            "source": self.source,
            "asset_type": self.asset_type,
            "name": self.name,
            "day_change_percent": self.day_change_percent,
        }


@dataclass(frozen=True)
class WindowStats:
    """Statistics of one symbol's trailing window, measured from the window low."""

    change_percent: float
    min_price: float
    max_price: float
    sample_count: int
    current_price: float


@dataclass(frozen=True)
class Alert:
    """Snapshot of an active momentum alert."""

    symbol: str
    current_price: float
    change_percent: float
    min_price: float
    max_price: float
    volume: Optional[float]
    first_detected_at: int
    last_updated_at: int
    source: Optional[str] = None
    asset_type: Optional[str] = None
    name: Optional[str] = None
    day_change_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "assetType": self.asset_type,
            "source": self.source,
            "currentPrice": self.current_price,
            "changePercent": self.change_percent,
            "dayChangePercent": self.day_change_percent,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "volume": self.volume,
            "firstDetectedAt": self.first_detected_at,
            "lastUpdatedAt": self.last_updated_at,
        }


@dataclass(frozen=True)
class ScanStats:
    """Aggregate counters for one scan cycle."""

    total: int
    active_alerts: int
    scan_duration_ms: float
    processed: int
    failed: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "activeAlerts": self.active_alerts,
            "scanDurationMs": self.scan_duration_ms,
            "processed": self.processed,
            "failed": self.failed,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class SnapshotEvent:
    event_type: ClassVar[EventType] = EventType.SNAPSHOT

    alerts: List[Alert] = field(default_factory=list)

    def to_message(self) -> Dict[str, Any]:
        return {"type": "snapshot", "data": [alert.to_dict() for alert in self.alerts]}


@dataclass(frozen=True)
class AlertCreated:
    event_type: ClassVar[EventType] = EventType.ALERT_CREATED

    alert: Alert

    @property
    def symbol(self) -> str:
        return self.alert.symbol

    def to_message(self) -> Dict[str, Any]:
        return {"type": "alert", "data": {**self.alert.to_dict(), "status": "created"}}


@dataclass(frozen=True)
class AlertUpdated:
    event_type: ClassVar[EventType] = EventType.ALERT_UPDATED

    alert: Alert
    previous_change_percent: float

    @property
    def symbol(self) -> str:
        return self.alert.symbol

    def to_message(self) -> Dict[str, Any]:
        return {"type": "alert", "data": {**self.alert.to_dict(), "status": "updated"}}


@dataclass(frozen=True)
class AlertCleared:
    event_type: ClassVar[EventType] = EventType.ALERT_CLEARED

    symbol: str
    change_percent: float
    cleared_at: int
    last_alert: Alert

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "alert-cleared",
            "data": {
                "symbol": self.symbol,
                "changePercent": self.change_percent,
                "clearedAt": self.cleared_at,
            },
        }


@dataclass(frozen=True)
class StatsEvent:
    event_type: ClassVar[EventType] = EventType.STATS

    stats: ScanStats

    def to_message(self) -> Dict[str, Any]:
        return {"type": "stats", "data": self.stats.to_dict()}


AlertEvent = Union[AlertCreated, AlertUpdated, AlertCleared]
BroadcastEvent = Union[SnapshotEvent, AlertCreated, AlertUpdated, AlertCleared, StatsEvent]


@dataclass(frozen=True)
class MomentumConfig:
    """Tunable parameters of the detection core and scan loop."""

    threshold_min: float = 9.0
    threshold_max: float = 13.0
    window_ms: int = 120_000
    hysteresis_delta: float = 0.5
    scan_interval_ms: int = 10_000
    min_samples_for_signal: int = 3
    fetch_concurrency: int = 10
    fetch_timeout_ms: int = 10_000
    reset_window_on_clear: bool = False

    def __post_init__(self) -> None:
        if self.threshold_min > self.threshold_max:
            raise ValueError("threshold_min must not exceed threshold_max")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if self.hysteresis_delta < 0:
            raise ValueError("hysteresis_delta must not be negative")
        if self.scan_interval_ms <= 0:
            raise ValueError("scan_interval_ms must be positive")
        if self.min_samples_for_signal < 1:
            raise ValueError("min_samples_for_signal must be at least 1")
        if self.fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be at least 1")
        if self.fetch_timeout_ms <= 0:
            raise ValueError("fetch_timeout_ms must be positive")

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout_ms / 1000

    @property
    def scan_interval_seconds(self) -> float:
        return self.scan_interval_ms / 1000

    @classmethod
    def from_settings(cls) -> "MomentumConfig":
        from config import settings

        return cls(
            threshold_min=settings.THRESHOLD_MIN,
            threshold_max=settings.THRESHOLD_MAX,
            window_ms=settings.WINDOW_MS,
            hysteresis_delta=settings.HYSTERESIS_DELTA,
            scan_interval_ms=settings.SCAN_INTERVAL_MS,
            min_samples_for_signal=settings.MIN_SAMPLES_FOR_SIGNAL,
            fetch_concurrency=settings.FETCH_CONCURRENCY,
            fetch_timeout_ms=settings.FETCH_TIMEOUT_MS,
            reset_window_on_clear=settings.RESET_WINDOW_ON_CLEAR,
        )
