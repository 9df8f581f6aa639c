"""
In-process behavior-tracking cache.

Events are buffered in memory and shipped in batches, either when the flush
timer fires, when the buffer reaches `batch_size`, or right away for critical
events. Failed batches go back to the front of the buffer and the next attempt
waits `min(retry_base * 2**(attempts - 1), retry_max)` seconds.
"""
from __future__ import annotations

import atexit
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from app.commerce.modules.tracking.client import TrackingClient, TrackingDeliveryError

logger = logging.getLogger(__name__)

PRIORITY_WEIGHTS = {"critical": 4, "high": 3, "normal": 2, "low": 1}

PRIORITY_MAP = {
    "purchase": "critical",
    "signup": "critical",
    "login": "high",
    "product_view": "high",
    "store_view": "high",
    "conversion": "high",
    "search": "normal",
    "click": "normal",
    "page_view": "normal",
    "scroll": "low",
}

DEFAULT_TRACKED_EVENTS = (
    "page_view",
    "product_view",
    "store_view",
    "search",
    "click",
    "scroll",
    "form_submit",
    "purchase",
    "signup",
    "login",
    "conversion",
)

DEFAULT_EXEMPT_PREFIXES = ("/admin", "/api")


def event_priority(event_type: str) -> str:
    return PRIORITY_MAP.get(event_type, "normal")


def _iso_from_epoch(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None).isoformat()


@dataclass
class TrackingEvent:
    event_type: str
    session_id: str
    timestamp: str
    priority: str
    event_data: dict[str, Any] = field(default_factory=dict)
    user_id: int | None = None
    tenant_id: int | None = None
    url: str | None = None
    referrer: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrackingSession:
    id: str
    started: float
    user_id: int | None = None
    tenant_id: int | None = None
    entry_page: str | None = None
    exit_page: str | None = None
    page_views: int = 0
    events: int = 0
    ended: float | None = None
    duration: float | None = None
    bounce_rate: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "start_time": _iso_from_epoch(self.started),
            "end_time": _iso_from_epoch(self.ended) if self.ended is not None else None,
            "duration": self.duration,
            "page_views": self.page_views,
            "events": self.events,
            "bounce_rate": self.bounce_rate,
            "entry_page": self.entry_page,
            "exit_page": self.exit_page,
        }


@dataclass
class QueueMetrics:
    events_tracked: int = 0
    events_dropped: int = 0
    events_sent: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    average_batch_size: float = 0.0
    last_sent_at: float | None = None


class TrackingEventQueue:
    def __init__(
        self,
        sender: Callable[[list[dict[str, Any]]], Any],
        *,
        session_sender: Callable[[dict[str, Any]], Any] | None = None,
        batch_size: int = 50,
        batch_interval: float = 30.0,
        max_cache_size: int = 500,
        retry_base: float = 30.0,
        retry_max: float = 600.0,
        enabled: bool = True,
        tracked_events: tuple[str, ...] | list[str] = DEFAULT_TRACKED_EVENTS,
        exempt_prefixes: tuple[str, ...] | list[str] = DEFAULT_EXEMPT_PREFIXES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_cache_size < batch_size:
            raise ValueError("max_cache_size must be >= batch_size")
        self._sender = sender
        self._session_sender = session_sender
        self.batch_size = batch_size
        self.batch_interval = batch_interval
        self.max_cache_size = max_cache_size
        self.retry_base = retry_base
        self.retry_max = retry_max
        self.enabled = enabled
        self.tracked_events = set(tracked_events)
        self.exempt_prefixes = tuple(exempt_prefixes)
        self._clock = clock

        self._lock = threading.Lock()
        self._events: list[TrackingEvent] = []
        self._sending = False
        self._online = True
        self._attempts = 0
        self._next_retry_at: float | None = None
        self._session: TrackingSession | None = None
        self.metrics = QueueMetrics()

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ---------- State ----------
    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def online(self) -> bool:
        return self._online

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def next_retry_at(self) -> float | None:
        return self._next_retry_at

    @property
    def current_session(self) -> TrackingSession | None:
        return self._session

    def pending(self) -> list[TrackingEvent]:
        with self._lock:
            return list(self._events)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            queued = len(self._events)
        return {
            "tracking_enabled": self.enabled,
            "online": self._online,
            "queued": queued,
            "attempts": self._attempts,
            "next_retry_at": self._next_retry_at,
            "session_id": self._session.id if self._session else None,
            **asdict(self.metrics),
        }

    # ---------- Producing ----------
    def is_tracked(self, event_type: str, url: str | None = None) -> bool:
        if not self.enabled or event_type not in self.tracked_events:
            return False
        if url and url.startswith(self.exempt_prefixes):
            return False
        return True

    def track(
        self,
        event_type: str,
        event_data: dict[str, Any] | None = None,
        *,
        user_id: int | None = None,
        tenant_id: int | None = None,
        url: str | None = None,
        referrer: str | None = None,
        priority: str | None = None,
    ) -> TrackingEvent | None:
        """Queue one event; returns None when the event is ignored."""
        if not self.is_tracked(event_type, url):
            return None
        if priority is not None and priority not in PRIORITY_WEIGHTS:
            raise ValueError(f"Unknown priority: {priority}")

        session = self._session
        event = TrackingEvent(
            event_type=event_type,
            event_data=dict(event_data or {}),
            session_id=session.id if session else "unknown",
            user_id=user_id,
            tenant_id=tenant_id,
            url=url,
            referrer=referrer,
            timestamp=_iso_from_epoch(self._clock()),
            priority=priority or event_priority(event_type),
        )

        with self._lock:
            self._events.append(event)
            self.metrics.events_tracked += 1
            self._evict_overflow()
            if session is not None:
                session.events += 1
                if event_type == "page_view":
                    session.page_views += 1
                if url:
                    session.exit_page = url
            should_flush = event.priority == "critical" or len(self._events) >= self.batch_size

        if should_flush:
            self.flush()
        return event

    def _evict_overflow(self) -> None:
        # Caller holds the lock. Lowest priority goes first, oldest within a priority.
        while len(self._events) > self.max_cache_size:
            victim = min(range(len(self._events)), key=lambda i: (PRIORITY_WEIGHTS[self._events[i].priority], i))
            dropped = self._events.pop(victim)
            self.metrics.events_dropped += 1
            logger.debug("Tracking cache full; dropped %s event %s", dropped.priority, dropped.id)

    # ---------- Delivery ----------
    def retry_delay(self, attempts: int) -> float:
        if attempts < 1:
            return 0.0
        return min(self.retry_base * (2 ** (attempts - 1)), self.retry_max)

    def flush(self) -> bool:
        """Send everything queued. Returns True when a batch was delivered."""
        with self._lock:
            if not self._online or self._sending or not self._events:
                return False
            if self._next_retry_at is not None and self._clock() < self._next_retry_at:
                return False
            # sorted() is stable, so equal priorities keep arrival order
            batch = sorted(self._events, key=lambda e: PRIORITY_WEIGHTS[e.priority], reverse=True)
            self._events = []
            self._sending = True

        try:
            self._sender([e.to_dict() for e in batch])
        except Exception as e:
            if not isinstance(e, TrackingDeliveryError):
                logger.exception("Unexpected error from tracking sender")
            with self._lock:
                self._events[:0] = batch
                self._attempts += 1
                delay = self.retry_delay(self._attempts)
                self._next_retry_at = self._clock() + delay
                self.metrics.failed_batches += 1
                self._evict_overflow()
                self._sending = False
            logger.warning(
                "Tracking batch of %d events failed (attempt %d, retry in %.0fs): %s",
                len(batch),
                self._attempts,
                delay,
                e,
            )
            return False

        with self._lock:
            self._attempts = 0
            self._next_retry_at = None
            m = self.metrics
            m.successful_batches += 1
            m.events_sent += len(batch)
            m.average_batch_size = (
                m.average_batch_size * (m.successful_batches - 1) + len(batch)
            ) / m.successful_batches
            m.last_sent_at = self._clock()
            self._sending = False
        logger.debug("Tracking batch sent: %d events", len(batch))
        return True

    def set_online(self, online: bool) -> None:
        with self._lock:
            self._online = bool(online)
            if self._online:
                self._attempts = 0
                self._next_retry_at = None
        if online:
            self.flush()

    # ---------- Sessions ----------
    def start_session(
        self,
        entry_page: str | None = None,
        *,
        user_id: int | None = None,
        tenant_id: int | None = None,
    ) -> TrackingSession:
        if self._session is not None:
            self.end_session()
        self._session = TrackingSession(
            id=uuid.uuid4().hex,
            started=self._clock(),
            user_id=user_id,
            tenant_id=tenant_id,
            entry_page=entry_page,
        )
        return self._session

    def end_session(self) -> TrackingSession | None:
        session = self._session
        if session is None:
            return None
        self._session = None
        session.ended = self._clock()
        session.duration = max(session.ended - session.started, 0.0)
        session.bounce_rate = 100.0 if session.page_views <= 1 else 0.0

        if self._session_sender is not None and self.enabled:
            try:
                self._session_sender(session.to_dict())
            except TrackingDeliveryError as e:
                logger.warning("Tracking session %s not delivered: %s", session.id, e)
            except Exception:
                logger.exception("Unexpected error delivering tracking session %s", session.id)
        return session

    # ---------- Timer ----------
    def start(self) -> None:
        if not self.enabled or (self._thread is not None and self._thread.is_alive()):
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="tracking-flush", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.batch_interval):
            try:
                self.flush()
            except Exception:
                logger.exception("Tracking flush loop error")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.end_session()
        self.flush()


_shared_lock = threading.Lock()


def build_queue(config: dict[str, Any]) -> TrackingEventQueue:
    client = TrackingClient(base_url=config["TRACKING_API_BASE_URL"])
    return TrackingEventQueue(
        client.send_events,
        session_sender=client.send_session,
        batch_size=int(config["TRACKING_BATCH_SIZE"]),
        batch_interval=float(config["TRACKING_BATCH_INTERVAL_SECONDS"]),
        max_cache_size=int(config["TRACKING_MAX_CACHE_SIZE"]),
        retry_base=float(config["TRACKING_RETRY_BASE_SECONDS"]),
        retry_max=float(config["TRACKING_RETRY_MAX_SECONDS"]),
        enabled=bool(config["TRACKING_ENABLED"]),
    )


def shared_queue(app) -> TrackingEventQueue:
    """Per-app singleton queue (created on first use)."""
    with _shared_lock:
        q = app.extensions.get("tracking_queue")
        if q is None:
            q = build_queue(app.config)
            app.extensions["tracking_queue"] = q
        return q


def start_shared_queue(app) -> TrackingEventQueue:
    """Start this process's flush timer; whatever is still queued is flushed at interpreter exit."""
    q = shared_queue(app)
    with _shared_lock:
        if q.enabled and not app.extensions.get("tracking_queue_started"):
            q.start()
            atexit.register(q.stop)
            app.extensions["tracking_queue_started"] = True
    return q
