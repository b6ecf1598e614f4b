"""Turns raw price records from data sources into validated samples."""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Union

from watcher.errors import InvalidSample
from watcher.models import PriceSample, WindowStats
from watcher.window import SlidingWindowTracker

PriceRecord = Union[PriceSample, Mapping[str, Any]]


def parse_sample(record: PriceRecord) -> PriceSample:
    """Build a ``PriceSample`` from ``{symbol, price, timestamp, volume?}``.

    Optional asset keys: ``source``, ``assetType``, ``name``, ``dayChangePercent``.
    """
    if isinstance(record, PriceSample):
        return record
    if not isinstance(record, Mapping):
        raise InvalidSample(f"expected a mapping, got {type(record).__name__}")

    missing = [key for key in ("symbol", "price", "timestamp") if record.get(key) is None]
    if missing:
        raise InvalidSample(f"record is missing {', '.join(missing)}")

    symbol = record["symbol"]
    if not isinstance(symbol, str):
        raise InvalidSample(f"symbol must be a string, got {symbol!r}")
    symbol = symbol.strip()

    price = _to_float(record["price"], "price", symbol)
    timestamp = _to_millis(record["timestamp"], symbol)
    volume = record.get("volume")
    if volume is not None:
        volume = _to_float(volume, "volume", symbol)
    day_change = record.get("dayChangePercent")
    if day_change is not None:
        day_change = _to_float(day_change, "dayChangePercent", symbol)

    return PriceSample(
        symbol=symbol,
        price=price,
        timestamp=timestamp,
        volume=volume,
        source=record.get("source"),
        asset_type=record.get("assetType"),
        name=record.get("name"),
        day_change_percent=day_change,
    )


def _to_float(value: Any, name: str, symbol: str) -> float:
    if isinstance(value, bool):
        raise InvalidSample(f"{symbol}: {name} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidSample(f"{symbol}: {name} must be numeric, got {value!r}") from None


def _to_millis(value: Any, symbol: str) -> int:
    if isinstance(value, bool):
        raise InvalidSample(f"{symbol}: malformed timestamp {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    raise InvalidSample(f"{symbol}: malformed timestamp {value!r}")


class PriceSampleIngestor:
    """Feeds samples from any data source into the window tracker."""

    def __init__(self, tracker: SlidingWindowTracker):
        self._tracker = tracker

    @property
    def tracker(self) -> SlidingWindowTracker:
        return self._tracker

    def ingest(self, record: PriceRecord) -> Optional[WindowStats]:
        return self._tracker.record_sample(parse_sample(record))
