from __future__ import annotations

from flask import Blueprint, g, request

from app.commerce.db import db_session
from app.commerce.models import User
from app.commerce.modules.organizations.models import REQUEST_STATUSES
from app.commerce.modules.organizations.service import (
    cancel_request,
    create_request,
    get_request_for_user,
    list_requests,
    serialize_request,
    update_request,
)
from app.commerce.errors import bad_request
from app.commerce.rbac import require_permission
from app.commerce.utils import clean_str, json_body, parse_int

bp = Blueprint("organization_requests", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/organization-requests")
@require_permission("organizations.request")
def requests_list():
    status = clean_str(request.args.get("status"))
    if status and status not in REQUEST_STATUSES:
        raise bad_request("invalid_status", f"status must be one of: {', '.join(REQUEST_STATUSES)}")
    tenant_id = parse_int(request.args.get("tenant_id") or request.args.get("tenantId"), "tenant_id")
    reqs = list_requests(db_session(), _current_user(), tenant_id=tenant_id, status=status)
    return {"requests": [serialize_request(r) for r in reqs]}


@bp.post("/organization-requests")
@require_permission("organizations.request")
def requests_create():
    s = db_session()
    req = create_request(s, json_body(), _current_user())
    s.commit()
    return {"request": serialize_request(req)}, 201


@bp.get("/organization-requests/<int:request_id>")
@require_permission("organizations.request")
def request_detail(request_id: int):
    req = get_request_for_user(db_session(), _current_user(), request_id)
    return {"request": serialize_request(req)}


@bp.patch("/organization-requests/<int:request_id>")
@require_permission("organizations.request")
def request_update(request_id: int):
    s = db_session()
    u = _current_user()
    req = update_request(s, get_request_for_user(s, u, request_id), json_body(), u)
    s.commit()
    return {"request": serialize_request(req)}


@bp.delete("/organization-requests/<int:request_id>")
@require_permission("organizations.request")
def request_cancel(request_id: int):
    s = db_session()
    u = _current_user()
    req = cancel_request(s, get_request_for_user(s, u, request_id), u)
    s.commit()
    return {"request": serialize_request(req)}
