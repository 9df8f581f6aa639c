from __future__ import annotations

from flask import Blueprint, current_app, g, request

from app.commerce.db import db_session
from app.commerce.errors import not_found
from app.commerce.modules.tenants.models import Tenant
from app.commerce.modules.tracking.queue import shared_queue
from app.commerce.modules.tracking.service import (
    behavior_analytics,
    ingest_events,
    record_session,
    serialize_session,
    track_entity_view,
)
from app.commerce.rbac import require_permission
from app.commerce.utils import json_body, parse_int

bp = Blueprint("tracking", __name__)


def _user_agent() -> str | None:
    return request.headers.get("User-Agent")


# Anonymous beacons: no login, no CSRF token.
@bp.post("/recommendations/track")
def track_one():
    s = db_session()
    ev = track_entity_view(
        s,
        json_body(),
        current_user=getattr(g, "current_user", None),
        ip_address=request.remote_addr,
        user_agent=_user_agent(),
    )
    s.commit()
    return {"success": True, "tracked": ev is not None}


@bp.post("/recommendations/track-batch")
def track_batch():
    payload = json_body()
    s = db_session()
    result = ingest_events(s, payload.get("events"), ip_address=request.remote_addr, user_agent=_user_agent())
    s.commit()
    return result.to_dict()


@bp.post("/analytics/sessions")
def sessions_create():
    s = db_session()
    rec = record_session(s, json_body())
    s.commit()
    return {"success": True, "session": serialize_session(rec)}


@bp.get("/analytics/behavior")
@require_permission("analytics.view")
def behavior():
    s = db_session()
    hours = parse_int(request.args.get("hours"), "hours")
    if hours is None:
        hours = 24
    tenant_id = parse_int(request.args.get("tenant_id") or request.args.get("tenantId"), "tenant_id")
    if tenant_id is not None and s.get(Tenant, tenant_id) is None:
        raise not_found("tenant_not_found", "Tenant not found")
    return {"success": True, "analytics": behavior_analytics(s, hours=hours, tenant_id=tenant_id)}


@bp.get("/analytics/tracking-queue")
@require_permission("analytics.view")
def queue_stats():
    return {"success": True, "queue": shared_queue(current_app).stats()}
