"""Minimal console consumer that prints alerts and scan stats."""

from datetime import datetime, timezone
from threading import Event as ThreadEvent
from typing import Optional

from orchestrator.broadcast import BroadcastChannel
from watcher.models import (
    Alert,
    AlertCleared,
    AlertCreated,
    AlertUpdated,
    BroadcastEvent,
    SnapshotEvent,
    StatsEvent,
)


def format_price(price: float) -> str:
    return f"${price:.4f}" if price < 1 else f"${price:.2f}"


def format_alert(alert: Alert, label: str) -> str:
    detected = datetime.fromtimestamp(alert.first_detected_at / 1000, tz=timezone.utc)
    lines = [
        "┌────────────────────────────────────────────┐",
        f"│  {label} {alert.symbol:<10} +{alert.change_percent:.2f}%",
    ]
    if alert.name or alert.asset_type:
        kind = f" ({alert.asset_type})" if alert.asset_type else ""
        lines.append(f"│  {alert.name or alert.symbol}{kind}")
    lines.append(f"│  Price: {format_price(alert.current_price)}  Low: {format_price(alert.min_price)}")
    if alert.day_change_percent is not None:
        lines.append(f"│  Day: {alert.day_change_percent:+.2f}%")
    lines += [
        f"│  Since: {detected:%H:%M:%S} UTC",
        "└────────────────────────────────────────────┘",
    ]
    return "\n".join(lines)


def format_event(event: BroadcastEvent) -> Optional[str]:
    if isinstance(event, SnapshotEvent):
        if not event.alerts:
            return "No active alerts."
        return "\n".join(format_alert(alert, "ACTIVE") for alert in event.alerts)
    if isinstance(event, AlertCreated):
        return format_alert(event.alert, "NEW")
    if isinstance(event, AlertUpdated):
        return format_alert(event.alert, "UPDATE")
    if isinstance(event, AlertCleared):
        return f"[{event.symbol}] left the band at {event.change_percent:+.2f}%"
    if isinstance(event, StatsEvent):
        stats = event.stats
        return (
            f"Scan complete in {stats.scan_duration_ms / 1000:.1f}s | "
            f"Processed: {stats.processed}/{stats.total} | Alerts: {stats.active_alerts} | "
            f"Errors: {stats.failed}"
        )
    return None


def follow_events(channel: BroadcastChannel, stop_event: Optional[ThreadEvent] = None) -> None:
    """Print every event until interrupted or ``stop_event`` is set."""
    subscription = channel.subscribe()
    try:
        for event in subscription.events(stop_event=stop_event):
            line = format_event(event)
            if line:
                print(line, flush=True)
    except KeyboardInterrupt:
        print("\nStopping event stream.")
    finally:
        subscription.close()
