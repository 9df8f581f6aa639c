from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import distinct, func

from app.commerce.errors import ApiError, bad_request
from app.commerce.models import User
from app.commerce.modules.gdpr.service import revoked_users
from app.commerce.modules.tenants.models import Tenant
from app.commerce.modules.tracking.models import EVENT_PRIORITIES, BehaviorEvent, TrackingSessionRecord
from app.commerce.modules.tracking.queue import event_priority
from app.commerce.utils import clean_str, iso, parse_datetime, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MAX_BATCH_EVENTS = 500
MAX_ANALYTICS_HOURS = 24 * 90
TOP_N = 10


@dataclass
class BatchResult:
    accepted: int = 0
    rejected: int = 0
    suppressed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "suppressed": self.suppressed,
        }


def _pick(d: dict, *keys: str) -> Any:
    for k in keys:
        if d.get(k) is not None:
            return d[k]
    return None


def _trunc(value: Any, n: int) -> str | None:
    v = clean_str(value)
    return v[:n] if v else None


def _event_from_payload(payload: dict, *, ip_address: str | None, user_agent: str | None) -> BehaviorEvent:
    """Build an unsaved BehaviorEvent; raises ApiError(400) on invalid input."""
    event_type = _trunc(_pick(payload, "event_type", "eventType"), 64)
    if not event_type:
        raise bad_request("event_type_required", "event_type is required.")

    priority = clean_str(payload.get("priority")) or event_priority(event_type)
    if priority not in EVENT_PRIORITIES:
        raise bad_request("invalid_request", f"priority must be one of: {', '.join(EVENT_PRIORITIES)}")

    event_data = _pick(payload, "event_data", "eventData") or {}
    if not isinstance(event_data, dict):
        raise bad_request("invalid_request", "event_data must be an object.")

    now = datetime.utcnow()
    occurred_at = parse_datetime(payload.get("timestamp"), "timestamp") or now
    return BehaviorEvent(
        client_event_id=_trunc(payload.get("id"), 64),
        event_type=event_type,
        priority=priority,
        session_id=_trunc(_pick(payload, "session_id", "sessionId"), 128),
        user_id=parse_int(_pick(payload, "user_id", "userId"), "user_id"),
        tenant_id=parse_int(_pick(payload, "tenant_id", "tenantId"), "tenant_id"),
        entity_type=_trunc(_pick(payload, "entity_type", "entityType"), 64),
        entity_id=_trunc(_pick(payload, "entity_id", "entityId"), 128),
        url=_trunc(payload.get("url"), 2048),
        referrer=_trunc(payload.get("referrer"), 2048),
        user_agent=_trunc(_pick(payload, "user_agent", "userAgent") or user_agent, 512),
        ip_address=_trunc(ip_address, 64),
        location_lat=parse_float(_pick(payload, "location_lat", "locationLat"), "location_lat"),
        location_lng=parse_float(_pick(payload, "location_lng", "locationLng"), "location_lng"),
        event_data_json=json.dumps(event_data, sort_keys=True, default=str) if event_data else None,
        occurred_at=occurred_at,
        received_at=now,
    )


def _existing_ids(s: "Session", model: Any, ids: set[int]) -> set[int]:
    if not ids:
        return set()
    return {row[0] for row in s.query(model.id).filter(model.id.in_(ids)).all()}


def _deactivated_users(s: "Session", ids: set[int]) -> set[int]:
    # erased accounts stay as inactive rows; their events are never stored again
    if not ids:
        return set()
    return {row[0] for row in s.query(User.id).filter(User.id.in_(ids), User.is_active.is_(False)).all()}


def ingest_events(
    s: "Session",
    payloads: Any,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> BatchResult:
    """
    Validate and store a batch of tracking events.

    Invalid events (missing type, bad ids, unknown tenant/user) are rejected
    one by one; events of users who revoked analytics consent or whose
    account was erased are dropped.
    """
    if not isinstance(payloads, list) or not payloads:
        raise bad_request("events_required", "events must be a non-empty list.")
    if len(payloads) > MAX_BATCH_EVENTS:
        raise bad_request(
            "batch_too_large",
            f"A batch may contain at most {MAX_BATCH_EVENTS} events.",
            max_events=MAX_BATCH_EVENTS,
        )

    result = BatchResult()
    candidates: list[BehaviorEvent] = []
    for payload in payloads:
        if not isinstance(payload, dict):
            result.rejected += 1
            continue
        try:
            candidates.append(_event_from_payload(payload, ip_address=ip_address, user_agent=user_agent))
        except ApiError as e:
            logger.debug("Rejected tracking event: %s", e.message)
            result.rejected += 1

    known_users = _existing_ids(s, User, {e.user_id for e in candidates if e.user_id is not None})
    known_tenants = _existing_ids(s, Tenant, {e.tenant_id for e in candidates if e.tenant_id is not None})
    revoked = revoked_users(s, known_users, "analytics") | _deactivated_users(s, known_users)

    for ev in candidates:
        if (ev.user_id is not None and ev.user_id not in known_users) or (
            ev.tenant_id is not None and ev.tenant_id not in known_tenants
        ):
            result.rejected += 1
            continue
        if ev.user_id in revoked:
            result.suppressed += 1
            continue
        s.add(ev)
        result.accepted += 1

    logger.info(
        "Tracking batch ingested accepted=%s rejected=%s suppressed=%s",
        result.accepted,
        result.rejected,
        result.suppressed,
    )
    return result


def track_entity_view(
    s: "Session",
    payload: dict,
    *,
    current_user: User | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> BehaviorEvent | None:
    """
    Record a recommendation signal ("this user looked at this store/product").
    Returns None when the user revoked analytics consent or was erased.
    """
    entity_id = clean_str(_pick(payload, "entity_id", "entityId"))
    if not entity_id:
        raise bad_request("entity_id_required", "Entity ID is required for tracking")

    entity_type = clean_str(_pick(payload, "entity_type", "entityType")) or "store"
    data = dict(payload)
    if _pick(data, "event_type", "eventType") is None:
        data["event_type"] = f"{entity_type}_view"
    data["entity_type"] = entity_type
    if current_user is not None and _pick(data, "user_id", "userId") is None:
        data["user_id"] = current_user.id
    context = data.pop("context", None)
    if isinstance(context, dict) and "event_data" not in data:
        data["event_data"] = context

    ev = _event_from_payload(data, ip_address=ip_address, user_agent=user_agent)
    if ev.user_id is not None and s.get(User, ev.user_id) is None:
        raise bad_request("invalid_request", "Unknown user_id.")
    if ev.tenant_id is not None and s.get(Tenant, ev.tenant_id) is None:
        raise bad_request("invalid_request", "Unknown tenant_id.")
    if ev.user_id is not None and (
        ev.user_id in revoked_users(s, {ev.user_id}, "analytics") or _deactivated_users(s, {ev.user_id})
    ):
        return None
    s.add(ev)
    return ev


def record_session(s: "Session", payload: dict) -> TrackingSessionRecord:
    """Upsert a session summary keyed by the client session id."""
    session_id = _trunc(_pick(payload, "session_id", "sessionId", "id"), 128)
    if not session_id:
        raise bad_request("session_id_required", "session_id is required.")

    started_at = parse_datetime(_pick(payload, "start_time", "startTime"), "start_time")
    if started_at is None:
        raise bad_request("invalid_request", "start_time is required.")
    ended_at = parse_datetime(_pick(payload, "end_time", "endTime"), "end_time")
    if ended_at is not None and ended_at < started_at:
        raise bad_request("invalid_request", "end_time must not be before start_time.")

    page_views = parse_int(_pick(payload, "page_views", "pageViews"), "page_views") or 0
    events = parse_int(payload.get("events"), "events") or 0
    duration = parse_float(payload.get("duration"), "duration")
    if duration is None and ended_at is not None:
        duration = (ended_at - started_at).total_seconds()
    bounce_rate = parse_float(_pick(payload, "bounce_rate", "bounceRate"), "bounce_rate")
    if bounce_rate is None and ended_at is not None:
        bounce_rate = 100.0 if page_views <= 1 else 0.0
    if page_views < 0 or events < 0 or (duration is not None and duration < 0):
        raise bad_request("invalid_request", "Counts and duration must not be negative.")

    user_id = parse_int(_pick(payload, "user_id", "userId"), "user_id")
    if user_id is not None and (s.get(User, user_id) is None or _deactivated_users(s, {user_id})):
        user_id = None
    tenant_id = parse_int(_pick(payload, "tenant_id", "tenantId"), "tenant_id")
    if tenant_id is not None and s.get(Tenant, tenant_id) is None:
        tenant_id = None

    rec = s.query(TrackingSessionRecord).filter(TrackingSessionRecord.session_id == session_id).one_or_none()
    if rec is None:
        rec = TrackingSessionRecord(session_id=session_id, started_at=started_at)
        s.add(rec)
    rec.started_at = started_at
    rec.ended_at = ended_at
    rec.duration_seconds = duration
    rec.page_views = page_views
    rec.events = events
    rec.bounce_rate = bounce_rate
    rec.user_id = user_id
    rec.tenant_id = tenant_id
    rec.entry_page = _trunc(_pick(payload, "entry_page", "entryPage"), 2048)
    rec.exit_page = _trunc(_pick(payload, "exit_page", "exitPage"), 2048)
    rec.user_agent = _trunc(_pick(payload, "user_agent", "userAgent"), 512)
    return rec


def serialize_session(rec: TrackingSessionRecord) -> dict[str, Any]:
    return {
        "id": rec.id,
        "session_id": rec.session_id,
        "user_id": rec.user_id,
        "tenant_id": rec.tenant_id,
        "started_at": iso(rec.started_at),
        "ended_at": iso(rec.ended_at),
        "duration_seconds": rec.duration_seconds,
        "page_views": rec.page_views,
        "events": rec.events,
        "bounce_rate": rec.bounce_rate,
        "entry_page": rec.entry_page,
        "exit_page": rec.exit_page,
    }


def behavior_analytics(
    s: "Session",
    *,
    hours: int = 24,
    tenant_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if hours < 1 or hours > MAX_ANALYTICS_HOURS:
        raise bad_request("invalid_request", f"hours must be between 1 and {MAX_ANALYTICS_HOURS}.")
    until = now or datetime.utcnow()
    since = until - timedelta(hours=hours)

    ev_filters = [BehaviorEvent.occurred_at >= since, BehaviorEvent.occurred_at <= until]
    ses_filters = [TrackingSessionRecord.started_at >= since, TrackingSessionRecord.started_at <= until]
    if tenant_id is not None:
        ev_filters.append(BehaviorEvent.tenant_id == tenant_id)
        ses_filters.append(TrackingSessionRecord.tenant_id == tenant_id)

    total_events, unique_users, unique_sessions = (
        s.query(
            func.count(BehaviorEvent.id),
            func.count(distinct(BehaviorEvent.user_id)),
            func.count(distinct(BehaviorEvent.session_id)),
        )
        .filter(*ev_filters)
        .one()
    )

    avg_duration, avg_bounce = (
        s.query(func.avg(TrackingSessionRecord.duration_seconds), func.avg(TrackingSessionRecord.bounce_rate))
        .filter(*ses_filters)
        .one()
    )

    page_rows = (
        s.query(
            BehaviorEvent.url,
            func.count(BehaviorEvent.id).label("views"),
            func.count(distinct(BehaviorEvent.session_id)).label("unique_views"),
        )
        .filter(*ev_filters, BehaviorEvent.event_type == "page_view", BehaviorEvent.url.isnot(None))
        .group_by(BehaviorEvent.url)
        .order_by(func.count(BehaviorEvent.id).desc(), BehaviorEvent.url.asc())
        .limit(TOP_N)
        .all()
    )

    event_rows = (
        s.query(
            BehaviorEvent.event_type,
            func.count(BehaviorEvent.id).label("count"),
            func.count(distinct(BehaviorEvent.user_id)).label("unique_users"),
        )
        .filter(*ev_filters)
        .group_by(BehaviorEvent.event_type)
        .order_by(func.count(BehaviorEvent.id).desc(), BehaviorEvent.event_type.asc())
        .limit(TOP_N)
        .all()
    )

    return {
        "total_events": int(total_events or 0),
        "unique_users": int(unique_users or 0),
        "unique_sessions": int(unique_sessions or 0),
        "average_session_duration": round(float(avg_duration or 0.0), 2),
        "bounce_rate": round(float(avg_bounce or 0.0), 2),
        "top_pages": [
            {"url": url, "views": int(views), "unique_views": int(uniq)} for url, views, uniq in page_rows
        ],
        "top_events": [
            {"event_type": et, "count": int(cnt), "unique_users": int(uniq)} for et, cnt, uniq in event_rows
        ],
        "time_range": {"hours": hours, "since": iso(since), "until": iso(until)},
        "tenant_id": tenant_id,
    }
