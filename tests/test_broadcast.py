import pytest

from orchestrator.broadcast import BroadcastChannel
from watcher.models import (
    Alert,
    AlertCreated,
    ScanStats,
    SnapshotEvent,
    StatsEvent,
)


def _alert(symbol: str, change: float = 10.0) -> Alert:
    return Alert(
        symbol=symbol,
        current_price=110.0,
        change_percent=change,
        min_price=100.0,
        max_price=110.0,
        volume=None,
        first_detected_at=0,
        last_updated_at=0,
    )


def _stats() -> StatsEvent:
    return StatsEvent(
        stats=ScanStats(total=1, active_alerts=0, scan_duration_ms=1.0, processed=1, failed=0, timestamp=0)
    )


def test_new_subscriber_gets_snapshot_of_active_alerts():
    active = [_alert("AAA", 12.0), _alert("BBB", 9.5)]
    channel = BroadcastChannel(snapshot_provider=lambda: active)

    subscription = channel.subscribe()
    event = subscription.get(timeout=0)

    assert isinstance(event, SnapshotEvent)
    assert event.alerts == active
    assert subscription.get(timeout=0) is None


def test_snapshot_is_empty_without_provider():
    subscription = BroadcastChannel().subscribe()

    assert subscription.get(timeout=0) == SnapshotEvent(alerts=[])


def test_late_subscriber_gets_latest_stats_after_snapshot():
    channel = BroadcastChannel(snapshot_provider=lambda: [_alert("AAA")])
    channel.publish(_stats())
    latest = _stats()
    channel.publish(latest)
    channel.publish(AlertCreated(alert=_alert("BBB")))

    received = channel.subscribe().drain()

    assert [type(e) for e in received] == [SnapshotEvent, StatsEvent]
    assert received[1] is latest


def test_stats_on_connect_is_skipped_when_queue_is_full():
    channel = BroadcastChannel()
    channel.publish(_stats())

    subscription = channel.subscribe(queue_size=1)

    assert [type(e) for e in subscription.drain()] == [SnapshotEvent]
    assert subscription.dropped == 0


def test_publish_fans_out_to_every_subscriber():
    channel = BroadcastChannel()
    first = channel.subscribe()
    second = channel.subscribe()
    event = AlertCreated(alert=_alert("AAA"))

    delivered = channel.publish(event)

    assert delivered == 2
    assert first.drain()[-1] is event
    assert second.drain()[-1] is event
    assert channel.subscriber_count == 2


def test_full_subscriber_loses_events_without_blocking_others():
    channel = BroadcastChannel(queue_size=10)
    slow = channel.subscribe(queue_size=1)  # snapshot fills it
    healthy = channel.subscribe()

    delivered = channel.publish(_stats())

    assert delivered == 1
    assert slow.dropped == 1
    assert [type(e) for e in slow.drain()] == [SnapshotEvent]
    assert [type(e) for e in healthy.drain()] == [SnapshotEvent, StatsEvent]


def test_unsubscribed_consumer_stops_receiving():
    channel = BroadcastChannel()
    subscription = channel.subscribe()
    subscription.drain()

    subscription.close()
    delivered = channel.publish(_stats())

    assert delivered == 0
    assert subscription.closed
    assert subscription.drain() == []
    assert channel.subscriber_count == 0


def test_unsubscribe_is_idempotent():
    channel = BroadcastChannel()
    subscription = channel.subscribe()

    channel.unsubscribe(subscription)
    channel.unsubscribe(subscription)

    assert channel.subscriber_count == 0


def test_subscription_context_manager_closes():
    channel = BroadcastChannel()
    with channel.subscribe() as subscription:
        assert channel.subscriber_count == 1
    assert subscription.closed
    assert channel.subscriber_count == 0


def test_events_iterator_stops_when_closed():
    channel = BroadcastChannel()
    subscription = channel.subscribe()
    received = []

    for event in subscription.events(poll=0.01):
        received.append(event)
        subscription.close()

    assert [type(e) for e in received] == [SnapshotEvent]


def test_rejects_empty_queue():
    with pytest.raises(ValueError):
        BroadcastChannel(queue_size=0)
