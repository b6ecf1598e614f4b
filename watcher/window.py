from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from watcher.errors import InvalidSample
from watcher.models import PriceSample, WindowStats

logger = logging.getLogger(__name__)


class SlidingWindowTracker:
    """Keeps each symbol's samples inside a trailing time window.

    The window end is the timestamp of the sample being recorded, so a
    retained sample always satisfies ``timestamp > now - window_ms``.
    """

    def __init__(self, window_ms: int = 120_000, min_samples: int = 3):
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if min_samples < 1:
            raise ValueError("min_samples must be at least 1")
        self._window_ms = window_ms
        self._min_samples = min_samples
        self._histories: Dict[str, Deque[PriceSample]] = {}
        self._lock = threading.Lock()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def min_samples(self) -> int:
        return self._min_samples

    def record(
        self,
        symbol: str,
        price: float,
        timestamp: int,
        volume: Optional[float] = None,
    ) -> Optional[WindowStats]:
        sample = PriceSample(symbol=symbol, price=price, timestamp=timestamp, volume=volume)
        return self.record_sample(sample)

    def record_sample(self, sample: PriceSample) -> Optional[WindowStats]:
        """Append a sample, prune the window and return stats once warm."""
        with self._lock:
            history = self._histories.get(sample.symbol)
            if history:
                newest = history[-1]
                if sample.timestamp < newest.timestamp:
                    raise InvalidSample(
                        f"{sample.symbol}: sample at {sample.timestamp} is older than "
                        f"the newest retained sample at {newest.timestamp}"
                    )
                if sample.timestamp == newest.timestamp and sample.price == newest.price:
                    logger.debug("Ignoring replayed sample for %s at %d", sample.symbol, sample.timestamp)
                    return self._stats(history, sample.price)
            if history is None:
                history = deque()
                self._histories[sample.symbol] = history

            history.append(sample)
            self._prune(history, sample.timestamp)
            return self._stats(history, sample.price)

    def history(self, symbol: str) -> List[PriceSample]:
        with self._lock:
            return list(self._histories.get(symbol, ()))

    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._histories)

    def reset(self, symbol: str) -> None:
        with self._lock:
            self._histories.pop(symbol, None)

    def prune(self, now: int) -> int:
        """Drop expired samples everywhere; returns how many symbols were forgotten."""
        removed = 0
        with self._lock:
            for symbol in list(self._histories):
                history = self._histories[symbol]
                self._prune(history, now)
                if not history:
                    del self._histories[symbol]
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)

    def _prune(self, history: Deque[PriceSample], now: int) -> None:
        cutoff = now - self._window_ms
        while history and history[0].timestamp <= cutoff:
            history.popleft()

    def _stats(self, history: Deque[PriceSample], current_price: float) -> Optional[WindowStats]:
        if len(history) < self._min_samples:
            return None
        prices = [sample.price for sample in history]
        min_price = min(prices)
        return WindowStats(
            change_percent=(current_price - min_price) / min_price * 100,
            min_price=min_price,
            max_price=max(prices),
            sample_count=len(prices),
            current_price=current_price,
        )
