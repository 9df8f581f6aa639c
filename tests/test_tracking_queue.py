"""Tests for the in-process behavior tracking queue."""
import threading

import pytest

from app.commerce.modules.tracking.client import TrackingDeliveryError
from app.commerce.modules.tracking import queue as queue_module
from app.commerce.modules.tracking.queue import TrackingEventQueue, event_priority, shared_queue, start_shared_queue

from conftest import login


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class RecordingSender:
    def __init__(self, fail=False):
        self.batches = []
        self.fail = fail

    def __call__(self, events):
        if self.fail:
            raise TrackingDeliveryError("tracking api down")
        self.batches.append(events)
        return {"success": True}


def _queue(sender=None, **kwargs):
    kwargs.setdefault("batch_size", 10)
    kwargs.setdefault("max_cache_size", 100)
    kwargs.setdefault("clock", FakeClock())
    return TrackingEventQueue(sender or RecordingSender(), **kwargs)


def test_event_priority_defaults():
    assert event_priority("purchase") == "critical"
    assert event_priority("product_view") == "high"
    assert event_priority("scroll") == "low"
    assert event_priority("form_submit") == "normal"


def test_constructor_validation():
    with pytest.raises(ValueError):
        TrackingEventQueue(RecordingSender(), batch_size=0)
    with pytest.raises(ValueError):
        TrackingEventQueue(RecordingSender(), batch_size=50, max_cache_size=10)


def test_ignores_untracked_and_exempt_events():
    q = _queue()
    assert q.track("hover") is None
    assert q.track("page_view", url="/admin/settings") is None
    assert q.track("page_view", url="/api/products") is None
    assert q.track("page_view", url="/stores/42") is not None
    assert len(q) == 1

    disabled = _queue(enabled=False)
    assert disabled.track("page_view") is None
    assert len(disabled) == 0


def test_unknown_priority_rejected():
    q = _queue()
    with pytest.raises(ValueError):
        q.track("click", priority="urgent")


def test_flush_sends_highest_priority_first_keeping_arrival_order():
    sender = RecordingSender()
    q = _queue(sender)
    q.track("scroll", {"n": 1})
    q.track("click", {"n": 2})
    q.track("product_view", {"n": 3})
    q.track("click", {"n": 4})
    q.track("search", {"n": 5}, priority="low")

    assert q.flush() is True
    sent = [e["event_data"]["n"] for e in sender.batches[0]]
    assert sent == [3, 2, 4, 1, 5]
    assert len(q) == 0
    assert q.flush() is False


def test_critical_event_flushes_immediately():
    sender = RecordingSender()
    q = _queue(sender)
    q.track("click")
    q.track("purchase", {"order_id": "A-1"})
    assert len(sender.batches) == 1
    assert [e["event_type"] for e in sender.batches[0]] == ["purchase", "click"]


def test_full_batch_triggers_flush():
    sender = RecordingSender()
    q = _queue(sender, batch_size=3, max_cache_size=10)
    q.track("click")
    q.track("click")
    assert sender.batches == []
    q.track("click")
    assert len(sender.batches) == 1
    assert len(sender.batches[0]) == 3


def test_overflow_evicts_lowest_priority_oldest_first():
    q = _queue(batch_size=3, max_cache_size=3)
    q.set_online(False)
    q.track("scroll", {"n": 1})
    q.track("click", {"n": 2})
    q.track("scroll", {"n": 3})
    q.track("click", {"n": 4})
    assert [e.event_data["n"] for e in q.pending()] == [2, 3, 4]
    q.track("product_view", {"n": 5})
    assert [e.event_data["n"] for e in q.pending()] == [2, 4, 5]
    assert q.metrics.events_dropped == 2
    assert q.metrics.events_tracked == 5


def test_failed_batch_is_requeued_with_backoff():
    clock = FakeClock()
    sender = RecordingSender(fail=True)
    q = _queue(sender, clock=clock, retry_base=30.0, retry_max=100.0)
    q.track("click", {"n": 1})
    q.track("product_view", {"n": 2})

    assert q.flush() is False
    assert q.attempts == 1
    assert q.next_retry_at == clock.now + 30.0
    # requeued in send order
    assert [e.event_data["n"] for e in q.pending()] == [2, 1]
    assert q.metrics.failed_batches == 1

    # still cooling down
    clock.now += 10
    assert q.flush() is False
    assert q.metrics.failed_batches == 1

    clock.now += 20
    assert q.flush() is False
    assert q.attempts == 2
    assert q.next_retry_at == clock.now + 60.0

    clock.now += 60
    q.flush()
    assert q.next_retry_at == clock.now + 100.0

    sender.fail = False
    clock.now += 100
    assert q.flush() is True
    assert q.attempts == 0
    assert q.next_retry_at is None
    assert len(sender.batches[0]) == 2


def test_unexpected_sender_error_requeues_and_recovers():
    clock = FakeClock()
    calls = []

    def sender(events):
        calls.append(events)
        if len(calls) == 1:
            raise ValueError("unknown url type")
        return {"success": True}

    q = _queue(sender, clock=clock, retry_base=30.0)
    q.track("click", {"n": 1})

    assert q.flush() is False
    assert [e.event_data["n"] for e in q.pending()] == [1]
    assert q.attempts == 1
    assert q.metrics.failed_batches == 1

    clock.now += 30
    q.track("click", {"n": 2})
    assert q.flush() is True
    assert len(calls) == 2
    assert [e["event_data"]["n"] for e in calls[1]] == [1, 2]
    assert len(q) == 0


def test_timer_flushes_after_batch_interval():
    delivered = threading.Event()
    batches = []

    def sender(events):
        batches.append(events)
        delivered.set()

    q = TrackingEventQueue(sender, batch_size=10, max_cache_size=100, batch_interval=0.05)
    q.track("click")
    q.start()
    try:
        assert delivered.wait(2.0)
    finally:
        q.stop(timeout=1.0)
    assert len(batches[0]) == 1
    assert q.metrics.successful_batches == 1


def test_retry_delay_is_capped():
    q = _queue(retry_base=30.0, retry_max=600.0)
    assert q.retry_delay(0) == 0.0
    assert q.retry_delay(1) == 30.0
    assert q.retry_delay(3) == 120.0
    assert q.retry_delay(10) == 600.0


def test_coming_back_online_resets_backoff_and_flushes():
    clock = FakeClock()
    sender = RecordingSender(fail=True)
    q = _queue(sender, clock=clock)
    q.track("click")
    q.flush()
    assert q.attempts == 1

    q.set_online(False)
    assert q.online is False
    q.track("click")
    assert q.flush() is False

    sender.fail = False
    q.set_online(True)
    assert q.attempts == 0
    assert len(sender.batches) == 1
    assert len(sender.batches[0]) == 2
    assert len(q) == 0


def test_session_counts_and_summary():
    clock = FakeClock()
    sessions = []
    q = _queue(session_sender=sessions.append, clock=clock)
    session = q.start_session("/stores/1", user_id=7, tenant_id=3)
    q.track("page_view", url="/stores/1")
    q.track("click", url="/stores/1#hours")
    q.track("page_view", url="/stores/1/products")

    events = q.pending()
    assert {e.session_id for e in events} == {session.id}
    assert session.page_views == 2
    assert session.events == 3

    clock.now += 95
    ended = q.end_session()
    assert ended is session
    assert q.current_session is None
    assert ended.duration == 95
    assert ended.bounce_rate == 0.0
    assert sessions[0]["session_id"] == session.id
    assert sessions[0]["exit_page"] == "/stores/1/products"
    assert sessions[0]["entry_page"] == "/stores/1"
    assert sessions[0]["end_time"] is not None


def test_single_page_session_is_a_bounce():
    q = _queue()
    q.start_session("/")
    q.track("page_view", url="/")
    assert q.end_session().bounce_rate == 100.0
    assert q.end_session() is None


def test_starting_a_session_ends_the_previous_one():
    sessions = []
    q = _queue(session_sender=sessions.append)
    first = q.start_session("/a")
    second = q.start_session("/b")
    assert first.id != second.id
    assert [s["session_id"] for s in sessions] == [first.id]


def test_session_delivery_failure_is_not_raised():
    def failing(_session):
        raise TrackingDeliveryError("down")

    q = _queue(session_sender=failing)
    q.start_session("/")
    assert q.end_session() is not None


def test_stats_report_metrics():
    sender = RecordingSender()
    q = _queue(sender)
    q.track("click")
    q.track("click")
    q.flush()
    q.track("click")
    q.track("click")
    q.track("click")
    q.track("click")
    q.flush()

    stats = q.stats()
    assert stats["queued"] == 0
    assert stats["events_sent"] == 6
    assert stats["successful_batches"] == 2
    assert stats["average_batch_size"] == 3.0
    assert stats["online"] is True


def test_stop_flushes_pending_events():
    sender = RecordingSender()
    q = _queue(sender, batch_interval=3600)
    q.start()
    q.track("click")
    q.stop(timeout=1.0)
    assert len(sender.batches) == 1


def test_shared_queue_is_per_app(app):
    q1 = shared_queue(app)
    assert shared_queue(app) is q1
    assert q1.batch_size == app.config["TRACKING_BATCH_SIZE"]


def test_start_shared_queue_starts_once_and_stops_at_exit(app, monkeypatch):
    registered = []
    monkeypatch.setattr(queue_module.atexit, "register", registered.append)

    q = start_shared_queue(app)
    try:
        assert start_shared_queue(app) is q
        assert q._thread is not None and q._thread.is_alive()
        assert registered == [q.stop]
    finally:
        q.stop(timeout=1.0)
    assert q._thread is None


def test_start_shared_queue_skips_disabled_tracking(app, monkeypatch):
    registered = []
    monkeypatch.setattr(queue_module.atexit, "register", registered.append)
    app.config["TRACKING_ENABLED"] = False

    q = start_shared_queue(app)
    assert q.enabled is False
    assert q._thread is None
    assert registered == []


def test_queue_stats_endpoint(app, client):
    assert client.get("/api/analytics/tracking-queue").status_code == 401
    login(client)
    r = client.get("/api/analytics/tracking-queue")
    assert r.status_code == 200
    assert r.json["queue"]["queued"] == 0
    assert r.json["queue"]["tracking_enabled"] is True
