from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Union

import pytest

from orchestrator.broadcast import BroadcastChannel
from watcher.agent import MomentumWatcher
from watcher.errors import FetchError
from watcher.models import MomentumConfig, PriceSample, WindowStats


def make_stats(change_percent: float, min_price: float = 100.0) -> WindowStats:
    current = min_price * (1 + change_percent / 100)
    return WindowStats(
        change_percent=change_percent,
        min_price=min_price,
        max_price=current,
        sample_count=3,
        current_price=current,
    )


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


Step = Union[float, Exception, dict]


class ScriptedFetcher:
    """Replays a per-symbol script: a price, an exception to raise, or a raw record."""

    def __init__(self, scripts: Dict[str, Iterable[Step]], name: str = "scripted", step_ms: int = 1000):
        self.name = name
        self._scripts = {symbol: list(steps) for symbol, steps in scripts.items()}
        self._calls: Dict[str, int] = {symbol: 0 for symbol in scripts}
        self._step_ms = step_ms
        self._lock = threading.Lock()

    def symbols(self) -> List[str]:
        return list(self._scripts)

    def calls(self, symbol: str) -> int:
        return self._calls[symbol]

    def fetch(self, symbol: str, timeout: float):
        with self._lock:
            index = self._calls[symbol]
            self._calls[symbol] += 1
        steps = self._scripts[symbol]
        step = steps[min(index, len(steps) - 1)]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, dict):
            return step
        return PriceSample(symbol=symbol, price=step, timestamp=(index + 1) * self._step_ms)


def fetch_failure(symbol: str) -> FetchError:
    return FetchError(symbol, "simulated outage")


@pytest.fixture
def config() -> MomentumConfig:
    return MomentumConfig(min_samples_for_signal=3)


@pytest.fixture
def channel() -> BroadcastChannel:
    return BroadcastChannel(queue_size=50)


@pytest.fixture
def watcher(config: MomentumConfig, channel: BroadcastChannel) -> MomentumWatcher:
    return MomentumWatcher(config, channel=channel)
