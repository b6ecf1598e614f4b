import threading
import time

from conftest import FakeClock, ScriptedFetcher, fetch_failure
from orchestrator.workflow import ScanOrchestrator
from watcher.agent import MomentumWatcher
from watcher.models import AlertCreated, MomentumConfig, StatsEvent


def _orchestrator(fetchers, watcher, **kwargs):
    kwargs.setdefault("wall_clock", lambda: 10_000)
    return ScanOrchestrator(fetchers, watcher, **kwargs)


def test_cycles_feed_samples_and_raise_alerts(watcher, channel):
    fetcher = ScriptedFetcher({"AAA": [100.0, 95.0, 107.0], "BBB": [50.0, 50.0, 50.0]})
    orchestrator = _orchestrator([fetcher], watcher)
    subscription = channel.subscribe()

    for _ in range(3):
        stats = orchestrator.run_cycle()

    assert stats.total == 2
    assert stats.processed == 2
    assert stats.failed == 0
    assert stats.active_alerts == 1
    assert watcher.alerts.is_active("AAA")

    received = subscription.drain()
    alerts = [e for e in received if isinstance(e, AlertCreated)]
    stats_events = [e for e in received if isinstance(e, StatsEvent)]
    assert [e.alert.symbol for e in alerts] == ["AAA"]
    assert len(stats_events) == 3
    assert stats_events[-1].stats == stats
    assert orchestrator.latest_stats() == stats


def test_symbol_failures_are_isolated(watcher):
    fetcher = ScriptedFetcher(
        {
            "OK": [10.0],
            "DOWN": [fetch_failure("DOWN")],
            "BUG": [RuntimeError("provider changed its schema")],
            "BAD": [{"symbol": "BAD", "price": -1, "timestamp": 1_000}],
        }
    )
    orchestrator = _orchestrator([fetcher], watcher)

    stats = orchestrator.run_cycle()

    assert stats.total == 4
    assert stats.processed == 1
    assert stats.failed == 3
    assert len(watcher.tracker.history("OK")) == 1
    assert watcher.tracker.history("BAD") == []


def test_hung_fetch_does_not_stall_the_cycle(watcher):
    release = threading.Event()

    class HangingFetcher(ScriptedFetcher):
        def fetch(self, symbol, timeout):
            if symbol == "HUNG":
                release.wait(3)
            return super().fetch(symbol, timeout)

    fetcher = HangingFetcher({"HUNG": [10.0], "FAST": [10.0]})
    config = MomentumConfig(min_samples_for_signal=3, fetch_concurrency=2, fetch_timeout_ms=200)
    orchestrator = _orchestrator([fetcher], watcher, config=config)

    started = time.monotonic()
    try:
        stats = orchestrator.run_cycle()
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert elapsed < 1.0
    assert stats.processed == 1
    assert stats.failed == 1
    assert watcher.tracker.history("HUNG") == []
    assert len(watcher.tracker.history("FAST")) == 1


def test_cycle_budget_covers_every_round_of_workers(watcher):
    fetcher = ScriptedFetcher({symbol: [10.0] for symbol in "ABCDE"})
    config = MomentumConfig(fetch_concurrency=2, fetch_timeout_ms=500)

    assert _orchestrator([fetcher], watcher, config=config).cycle_budget() == 1.5
    assert _orchestrator([], watcher, config=config).cycle_budget() == 0.0


def test_fetch_over_its_timeout_is_discarded(watcher):
    clock = FakeClock()

    class SlowFetcher(ScriptedFetcher):
        def fetch(self, symbol, timeout):
            if symbol == "SLOW":
                clock.advance(timeout + 1)
            return super().fetch(symbol, timeout)

    fetcher = SlowFetcher({"SLOW": [10.0], "FAST": [10.0]})
    config = MomentumConfig(min_samples_for_signal=3, fetch_concurrency=1, fetch_timeout_ms=5_000)
    orchestrator = _orchestrator([fetcher], watcher, config=config, clock=clock)

    stats = orchestrator.run_cycle()

    assert stats.failed == 1
    assert watcher.tracker.history("SLOW") == []
    assert len(watcher.tracker.history("FAST")) == 1
    assert stats.scan_duration_ms == 6_000


def test_symbol_listed_by_two_fetchers_is_scanned_once(watcher):
    first = ScriptedFetcher({"AAA": [10.0]}, name="first")
    second = ScriptedFetcher({"AAA": [20.0], "BBB": [5.0]}, name="second")
    orchestrator = _orchestrator([first, second], watcher)

    stats = orchestrator.run_cycle()

    assert orchestrator.symbols() == ["AAA", "BBB"]
    assert stats.total == 2
    assert first.calls("AAA") == 1
    assert second.calls("AAA") == 0


def test_cycle_prunes_expired_histories(watcher):
    fetcher = ScriptedFetcher({"AAA": [10.0]})
    orchestrator = _orchestrator([fetcher], watcher, wall_clock=lambda: 1_000_000)

    orchestrator.run_cycle()

    assert watcher.tracker.symbols() == []


def test_empty_universe_still_publishes_stats(watcher, channel):
    orchestrator = _orchestrator([], watcher)
    subscription = channel.subscribe()

    stats = orchestrator.run_cycle()

    assert stats.total == 0
    assert isinstance(subscription.drain()[-1], StatsEvent)


def test_background_loop_runs_until_stopped(channel):
    config = MomentumConfig(scan_interval_ms=10, fetch_timeout_ms=1_000)
    watcher = MomentumWatcher(config, channel=channel)
    fetcher = ScriptedFetcher({"AAA": [10.0]})
    orchestrator = ScanOrchestrator([fetcher], watcher)

    orchestrator.start()
    deadline = time.monotonic() + 5
    while orchestrator.latest_stats() is None and time.monotonic() < deadline:
        time.sleep(0.01)
    orchestrator.stop()

    assert orchestrator.latest_stats() is not None
    assert not orchestrator.is_running()


def test_loop_survives_a_failing_cycle(watcher):
    config = MomentumConfig(scan_interval_ms=1)
    orchestrator = _orchestrator([], watcher, config=config)
    stop_signal = threading.Event()
    calls = []

    def flaky_cycle():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        stop_signal.set()

    orchestrator.run_cycle = flaky_cycle

    orchestrator.run_forever(stop_signal)

    assert len(calls) == 2


def test_close_releases_fetchers(watcher):
    class ClosingFetcher(ScriptedFetcher):
        closed = False

        def close(self):
            self.closed = True

    fetcher = ClosingFetcher({"AAA": [10.0]})
    orchestrator = _orchestrator([fetcher], watcher)

    orchestrator.close()

    assert fetcher.closed


def test_stop_keeps_tracking_a_loop_that_is_still_finishing(watcher):
    entered = threading.Event()
    release = threading.Event()

    class BlockingFetcher(ScriptedFetcher):
        closed = False

        def fetch(self, symbol, timeout):
            entered.set()
            release.wait(5)
            return super().fetch(symbol, timeout)

        def close(self):
            self.closed = True

    fetcher = BlockingFetcher({"AAA": [10.0]})
    config = MomentumConfig(scan_interval_ms=10, fetch_timeout_ms=5_000)
    orchestrator = _orchestrator([fetcher], watcher, config=config)

    orchestrator.start()
    assert entered.wait(5)
    try:
        assert orchestrator.stop(timeout=0.05) is False
        orchestrator.start()
        orchestrator.close(timeout=0.05)

        assert orchestrator.is_running()
        assert not fetcher.closed
        assert [thread.name for thread in threading.enumerate()].count("scan-loop") == 1
    finally:
        release.set()

    orchestrator.close()

    assert not orchestrator.is_running()
    assert fetcher.closed
    assert fetcher.calls("AAA") == 1


def test_stats_are_not_published_without_a_channel():
    watcher = MomentumWatcher(MomentumConfig(min_samples_for_signal=1))
    orchestrator = _orchestrator([ScriptedFetcher({"AAA": [10.0]})], watcher)

    stats = orchestrator.run_cycle()

    assert stats.processed == 1
    assert orchestrator.latest_stats() == stats
