from __future__ import annotations

import argparse
import logging
import threading

from dotenv import load_dotenv

load_dotenv()

from config import settings
from interfaces.cli import follow_events
from orchestrator.broadcast import BroadcastChannel
from orchestrator.workflow import ScanOrchestrator
from watcher.agent import MomentumWatcher
from watcher.clients import build_default_fetchers
from watcher.models import MomentumConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Momentum scanner.")
    parser.add_argument("--gradio", action="store_true", help="Run the Gradio dashboard.")
    parser.add_argument("--once", action="store_true", help="Run a single scan cycle and exit.")
    parser.add_argument(
        "--backend",
        default=None,
        help="Comma-separated data sources (overrides MARKET_DATA_BACKEND).",
    )
    parser.add_argument("--debug", action="store_true", help="Log per-sample window detail.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    config = MomentumConfig.from_settings()
    channel = BroadcastChannel(queue_size=settings.SUBSCRIBER_QUEUE_SIZE)
    watcher = MomentumWatcher(config, channel=channel)
    fetchers = build_default_fetchers(args.backend)
    orchestrator = ScanOrchestrator(fetchers, watcher, config)

    if args.gradio:
        from interfaces.gradio_app import launch_gradio

        try:
            launch_gradio(orchestrator, channel)
        finally:
            orchestrator.close()
        return

    if args.once:
        stats = orchestrator.run_cycle()
        print(
            f"Scanned {stats.processed}/{stats.total} symbols "
            f"({stats.failed} failed), {stats.active_alerts} active alerts."
        )
        orchestrator.close()
        return

    backends = args.backend or settings.MARKET_DATA_BACKEND
    print(
        f"Scanning {len(orchestrator.symbols())} symbols via '{backends}' for "
        f"+{config.threshold_min:g}-{config.threshold_max:g}% moves... Press Ctrl+C to stop."
    )
    stop_event = threading.Event()
    orchestrator.start()
    try:
        follow_events(channel, stop_event)
    except KeyboardInterrupt:
        print("\nScanner interrupted by user.")
    finally:
        stop_event.set()
        orchestrator.close()


if __name__ == "__main__":
    main()
