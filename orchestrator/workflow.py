"""Scan loop driving fetchers, the momentum watcher and the broadcast channel."""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Callable, Dict, Iterable, List, Optional

from watcher.agent import MomentumWatcher
from watcher.clients import PriceFetcher
from watcher.errors import FetchError, InvalidSample
from watcher.models import MomentumConfig, PriceSample, ScanStats, StatsEvent, now_ms

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Runs scan cycles over every symbol the fetchers provide.

    Fetches within a cycle run on a bounded thread pool; samples are handed to
    the watcher on the cycle thread as they arrive, so each symbol is mutated
    from one place only. Cycles never overlap.
    """

    def __init__(
        self,
        fetchers: Iterable[PriceFetcher],
        watcher: MomentumWatcher,
        config: MomentumConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], int] = now_ms,
    ):
        self._fetchers = list(fetchers)
        self._watcher = watcher
        self._config = config or watcher.config
        self._clock = clock
        self._wall_clock = wall_clock
        self._targets = self._build_targets(self._fetchers)
        self._latest_stats: Optional[ScanStats] = None
        self._cycle_lock = threading.Lock()
        self._watch_thread: Optional[threading.Thread] = None
        self._stop_signal: Optional[threading.Event] = None

    @staticmethod
    def _build_targets(fetchers: List[PriceFetcher]) -> Dict[str, PriceFetcher]:
        targets: Dict[str, PriceFetcher] = {}
        for fetcher in fetchers:
            for symbol in fetcher.symbols():
                if symbol in targets:
                    logger.warning(
                        "%s is already scanned via %s; ignoring %s",
                        symbol,
                        targets[symbol].name,
                        fetcher.name,
                    )
                    continue
                targets[symbol] = fetcher
        return targets

    def symbols(self) -> List[str]:
        return list(self._targets)

    def latest_stats(self) -> Optional[ScanStats]:
        return self._latest_stats

    def cycle_budget(self) -> float:
        """Seconds a cycle waits for fetches: one timeout per round of workers."""
        if not self._targets:
            return 0.0
        workers = min(self._config.fetch_concurrency, len(self._targets))
        rounds = math.ceil(len(self._targets) / workers)
        return self._config.fetch_timeout_seconds * rounds

    def run_cycle(self) -> ScanStats:
        """Fetch and evaluate every symbol once, then publish a stats event.

        Fetches still running when the cycle budget runs out count as failed;
        their threads are abandoned and whatever they return is ignored.
        """
        with self._cycle_lock:
            started = self._clock()
            processed = 0
            failed = 0

            if self._targets:
                workers = min(self._config.fetch_concurrency, len(self._targets))
                pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch")
                futures = {
                    pool.submit(self._fetch, fetcher, symbol): symbol
                    for symbol, fetcher in self._targets.items()
                }
                budget = self.cycle_budget()
                try:
                    for future in as_completed(futures, timeout=budget):
                        if self._ingest(futures[future], future):
                            processed += 1
                        else:
                            failed += 1
                except FuturesTimeout:
                    unfinished = sorted(
                        symbol for future, symbol in futures.items() if not future.done()
                    )
                    failed = len(self._targets) - processed
                    logger.warning(
                        "Fetch timed out for %d symbols after %.1fs: %s",
                        len(unfinished),
                        budget,
                        ", ".join(unfinished),
                    )
                finally:
                    pool.shutdown(wait=False, cancel_futures=True)

            self._watcher.tracker.prune(self._wall_clock())
            stats = ScanStats(
                total=len(self._targets),
                active_alerts=len(self._watcher.alerts),
                scan_duration_ms=round((self._clock() - started) * 1000, 1),
                processed=processed,
                failed=failed,
                timestamp=self._wall_clock(),
            )
            self._latest_stats = stats

        logger.info(
            "Scan complete in %.0f ms | processed %d/%d | failed %d | active alerts %d",
            stats.scan_duration_ms,
            stats.processed,
            stats.total,
            stats.failed,
            stats.active_alerts,
        )
        if self._watcher.channel is not None:
            self._watcher.channel.publish(StatsEvent(stats=stats))
        return stats

    def _fetch(self, fetcher: PriceFetcher, symbol: str) -> PriceSample:
        timeout = self._config.fetch_timeout_seconds
        started = self._clock()
        sample = fetcher.fetch(symbol, timeout=timeout)
        elapsed = self._clock() - started
        if elapsed > timeout:
            raise FetchError(symbol, f"took {elapsed:.1f}s, over the {timeout:.1f}s limit")
        return sample

    def _ingest(self, symbol: str, future: "Future[PriceSample]") -> bool:
        try:
            sample = future.result()
        except FetchError as exc:
            logger.warning("Fetch failed for %s", exc)
            return False
        except Exception:
            logger.exception("Unexpected error while fetching %s", symbol)
            return False

        try:
            self._watcher.process(sample)
        except InvalidSample as exc:
            logger.warning("Rejected sample: %s", exc)
            return False
        return True

    def start(self) -> None:
        """Start scanning in the background until stopped."""
        if self.is_running():
            if self._stop_signal is not None and self._stop_signal.is_set():
                logger.warning("Previous scan loop is still finishing; not starting another")
            return
        for fetcher in self._fetchers:
            open_stream = getattr(fetcher, "start", None)
            if callable(open_stream):
                open_stream()
        self._stop_signal = threading.Event()
        self._watch_thread = threading.Thread(
            target=self.run_forever, args=(self._stop_signal,), name="scan-loop", daemon=True
        )
        self._watch_thread.start()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop scheduling cycles and wait for the one in flight to finish.

        Without a timeout this waits as long as the cycle takes, which the
        cycle budget bounds. Returns False if the loop is still running; it
        stays tracked so ``start`` and ``close`` will not race it.
        """
        if self._stop_signal:
            self._stop_signal.set()
        if self._watch_thread:
            self._watch_thread.join(timeout=timeout)
            if self._watch_thread.is_alive():
                logger.warning("Scan loop still finishing its cycle after %.1fs", timeout)
                return False
        self._watch_thread = None
        self._stop_signal = None
        return True

    def is_running(self) -> bool:
        return self._watch_thread is not None and self._watch_thread.is_alive()

    def run_forever(self, stop_signal: threading.Event) -> None:
        interval = self._config.scan_interval_seconds
        logger.info(
            "Scanning %d symbols every %.1fs", len(self._targets), interval
        )
        while not stop_signal.is_set():
            started = self._clock()
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Scan cycle failed; continuing with the next one")
            remaining = interval - (self._clock() - started)
            if remaining > 0:
                stop_signal.wait(remaining)

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop the loop and release fetchers that hold connections."""
        if not self.stop(timeout):
            logger.warning("Leaving fetchers open until the running cycle ends")
            return
        for fetcher in self._fetchers:
            close = getattr(fetcher, "close", None)
            if callable(close):
                close()
