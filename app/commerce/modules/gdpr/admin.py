from __future__ import annotations

from flask import Blueprint, current_app, g, request, send_file, session

from app.commerce.db import db_session
from app.commerce.errors import bad_request, not_found
from app.commerce.models import User
from app.commerce.modules.gdpr.models import AccountDeletionRequest
from app.commerce.modules.gdpr.service import (
    admin_update_deletion_request,
    cancel_account_deletion,
    consent_history,
    create_export,
    delete_user_data,
    deletion_request_stats,
    get_owned_export,
    has_consent,
    list_deletion_requests,
    list_exports,
    pending_deletion_request,
    preferences,
    process_due_deletions,
    purge_export_files,
    record_consent,
    request_account_deletion,
    serialize_consent,
    serialize_deletion_request,
    serialize_export,
    update_preferences,
    validate_consent_type,
)
from app.commerce.rbac import require_login, require_permission
from app.commerce.storage import storage_from_config
from app.commerce.utils import json_body, parse_int

bp = Blueprint("gdpr", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _client_meta() -> dict[str, str | None]:
    return {"ip_address": request.remote_addr, "user_agent": request.headers.get("User-Agent")}


@bp.get("/consents")
@require_login
def consents_list():
    records = consent_history(db_session(), _current_user().id)
    return {"success": True, "consents": [serialize_consent(c) for c in records]}


@bp.post("/consents")
@require_login
def consents_create():
    payload = json_body()
    s = db_session()
    rec = record_consent(
        s,
        _current_user(),
        payload.get("type"),
        payload.get("consented"),
        source=payload.get("source"),
        **_client_meta(),
    )
    s.commit()
    return {"success": True, "consent": serialize_consent(rec)}, 201


@bp.get("/has-consent")
@require_login
def consent_check():
    consent_type = validate_consent_type(request.args.get("type"))
    return {
        "success": True,
        "type": consent_type,
        "has_consent": has_consent(db_session(), _current_user().id, consent_type),
    }


@bp.get("/preferences")
@require_login
def preferences_get():
    return {"success": True, "preferences": preferences(db_session(), _current_user().id)}


@bp.put("/preferences")
@require_login
def preferences_put():
    payload = json_body()
    prefs = payload.get("preferences", payload)
    s = db_session()
    updated = update_preferences(s, _current_user(), prefs, **_client_meta())
    s.commit()
    return {"success": True, "preferences": updated}


@bp.post("/export")
@require_login
def export_create():
    payload = json_body()
    s = db_session()
    export = create_export(s, _current_user(), storage_from_config(current_app.config), fmt=payload.get("format"))
    s.commit()
    return {"success": True, "export": serialize_export(export)}, 201


@bp.get("/exports")
@require_login
def exports_list():
    exports = list_exports(db_session(), _current_user().id)
    return {"success": True, "exports": [serialize_export(e) for e in exports]}


@bp.get("/export/<int:export_id>/download")
@require_login
def export_download(export_id: int):
    s = db_session()
    u = _current_user()
    export = get_owned_export(s, u, export_id)
    fobj = storage_from_config(current_app.config).open(export.storage_key)
    return send_file(
        fobj,
        mimetype="application/json",
        as_attachment=True,
        download_name=f"gdpr-export-{export.id}.json",
        max_age=0,
    )


@bp.delete("/data-delete")
@require_login
def data_delete():
    payload = json_body()
    if payload.get("confirm") is not True:
        raise bad_request("confirmation_required", 'Please confirm by sending {"confirm": true}.')
    s = db_session()
    erasure = delete_user_data(s, _current_user())
    s.commit()
    purge_export_files(storage_from_config(current_app.config), erasure.storage_keys)
    session.pop("user_id", None)
    g.current_user = None
    return {
        "success": True,
        "message": "Your data has been deleted. You have been logged out.",
        "deleted": erasure.counts,
    }


# ---------- Account deletion with grace period ----------
@bp.post("/delete")
@require_login
def account_delete_request():
    payload = json_body()
    s = db_session()
    req = request_account_deletion(s, _current_user(), payload, **_client_meta())
    s.commit()
    return {
        "success": True,
        "message": "Account deletion scheduled. You can cancel it until the scheduled date.",
        "request": serialize_deletion_request(req),
    }, 201


@bp.get("/delete/status")
@require_login
def account_delete_status():
    req = pending_deletion_request(db_session(), _current_user().id)
    return {
        "success": True,
        "has_pending_request": req is not None,
        "request": serialize_deletion_request(req) if req else None,
    }


@bp.delete("/delete")
@require_login
def account_delete_cancel():
    s = db_session()
    req = cancel_account_deletion(s, _current_user())
    s.commit()
    return {"success": True, "message": "Account deletion cancelled.", "request": serialize_deletion_request(req)}


@bp.get("/admin/deletion-requests")
@require_permission("gdpr.manage")
def admin_deletion_requests():
    limit = parse_int(request.args.get("limit"), "limit") or 50
    offset = parse_int(request.args.get("offset"), "offset") or 0
    rows, total = list_deletion_requests(
        db_session(), status=request.args.get("status"), limit=limit, offset=offset
    )
    return {
        "success": True,
        "requests": [serialize_deletion_request(r, include_admin=True) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@bp.get("/admin/deletion-requests/stats")
@require_permission("gdpr.manage")
def admin_deletion_stats():
    return {"success": True, "stats": deletion_request_stats(db_session())}


@bp.put("/admin/deletion-requests/<int:request_id>")
@require_permission("gdpr.manage")
def admin_deletion_update(request_id: int):
    payload = json_body()
    s = db_session()
    req = s.get(AccountDeletionRequest, request_id)
    if req is None:
        raise not_found("deletion_request_not_found", "Deletion request not found.")
    admin_update_deletion_request(s, req, payload, _current_user())
    s.commit()
    return {"success": True, "request": serialize_deletion_request(req, include_admin=True)}


@bp.post("/admin/deletion-requests/process-due")
@require_permission("gdpr.manage")
def admin_deletion_process_due():
    s = db_session()
    completed, keys = process_due_deletions(s)
    s.commit()
    purge_export_files(storage_from_config(current_app.config), keys)
    return {"success": True, "processed_count": len(completed), "user_ids": [r.user_id for r in completed]}
