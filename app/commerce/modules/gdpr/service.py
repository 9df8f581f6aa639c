from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.commerce.audit import record_event
from app.commerce.errors import ApiError, bad_request, conflict, not_found
from app.commerce.modules.gdpr.models import (
    CONSENT_TYPES,
    DELETION_STATUSES,
    AccountDeletionRequest,
    ConsentRecord,
    DataExport,
)
from app.commerce.modules.tenants.models import TenantMembership
from app.commerce.modules.tracking.models import BehaviorEvent, TrackingSessionRecord
from app.commerce.storage import Storage
from app.commerce.utils import clean_str, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.commerce.models import User

logger = logging.getLogger(__name__)

EXPORT_TTL = timedelta(days=7)
DELETION_GRACE_PERIOD = timedelta(days=30)
DELETION_CONFIRMATION = "DELETE"
EXPORT_FORMATS = ("json",)
CONSENT_SOURCES = ("web", "mobile", "api", "admin")
DELETED_EMAIL_DOMAIN = "deleted.invalid"


def validate_consent_type(value: Any) -> str:
    t = clean_str(value)
    if not t:
        raise bad_request("invalid_request", "Consent type is required.")
    if t not in CONSENT_TYPES:
        raise bad_request("invalid_request", f"Unknown consent type: {t}", allowed=list(CONSENT_TYPES))
    return t


# ---------- Consents ----------
def serialize_consent(c: ConsentRecord) -> dict[str, Any]:
    return {
        "id": c.id,
        "type": c.consent_type,
        "consented": c.consented,
        "source": c.source,
        "ip_address": c.ip_address,
        "user_agent": c.user_agent,
        "created_at": iso(c.created_at),
    }


def consent_history(s: "Session", user_id: int) -> list[ConsentRecord]:
    return (
        s.query(ConsentRecord)
        .filter(ConsentRecord.user_id == user_id)
        .order_by(ConsentRecord.created_at.desc(), ConsentRecord.id.desc())
        .all()
    )


def current_consents(s: "Session", user_id: int) -> dict[str, ConsentRecord]:
    """Latest record per consent type."""
    out: dict[str, ConsentRecord] = {}
    for rec in consent_history(s, user_id):
        out.setdefault(rec.consent_type, rec)
    return out


def has_consent(s: "Session", user_id: int, consent_type: str) -> bool:
    rec = current_consents(s, user_id).get(consent_type)
    return bool(rec and rec.consented)


def revoked_users(s: "Session", user_ids: set[int], consent_type: str) -> set[int]:
    """Users among `user_ids` whose latest `consent_type` record is a refusal."""
    if not user_ids:
        return set()
    rows = (
        s.query(ConsentRecord)
        .filter(ConsentRecord.user_id.in_(user_ids), ConsentRecord.consent_type == consent_type)
        .order_by(ConsentRecord.created_at.desc(), ConsentRecord.id.desc())
        .all()
    )
    latest: dict[int, bool] = {}
    for rec in rows:
        latest.setdefault(rec.user_id, rec.consented)
    return {uid for uid, consented in latest.items() if not consented}


def record_consent(
    s: "Session",
    user: "User",
    consent_type: str,
    consented: Any,
    *,
    source: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ConsentRecord:
    consent_type = validate_consent_type(consent_type)
    if not isinstance(consented, bool):
        raise bad_request("invalid_request", "consented must be a boolean.")
    source = clean_str(source) or "web"
    if source not in CONSENT_SOURCES:
        raise bad_request("invalid_request", f"source must be one of: {', '.join(CONSENT_SOURCES)}")

    rec = ConsentRecord(
        user_id=user.id,
        consent_type=consent_type,
        consented=consented,
        source=source,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        created_at=datetime.utcnow(),
    )
    s.add(rec)
    s.flush()
    record_event(
        s,
        actor=user,
        action="gdpr.consent",
        entity_type="ConsentRecord",
        entity_id=str(rec.id),
        metadata={"type": consent_type, "consented": consented, "source": source},
    )
    return rec


def preferences(s: "Session", user_id: int) -> dict[str, bool | None]:
    current = current_consents(s, user_id)
    return {t: (current[t].consented if t in current else None) for t in CONSENT_TYPES}


def update_preferences(
    s: "Session",
    user: "User",
    prefs: Any,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict[str, bool | None]:
    """Bulk update; only values that differ from the current preference are recorded."""
    if not isinstance(prefs, dict) or not prefs:
        raise bad_request("invalid_request", "preferences must be a non-empty object of type -> boolean.")
    for t, v in prefs.items():
        validate_consent_type(t)
        if not isinstance(v, bool):
            raise bad_request("invalid_request", f"Preference {t} must be a boolean.")

    current = preferences(s, user.id)
    for t, v in prefs.items():
        if current.get(t) is v:
            continue
        record_consent(s, user, t, v, source="web", ip_address=ip_address, user_agent=user_agent)
    return preferences(s, user.id)


# ---------- Exports ----------
def serialize_export(e: DataExport) -> dict[str, Any]:
    return {
        "id": e.id,
        "status": e.status,
        "format": e.format,
        "size_bytes": e.size_bytes,
        "requested_at": iso(e.requested_at),
        "completed_at": iso(e.completed_at),
        "expires_at": iso(e.expires_at),
        "download_url": f"/api/gdpr/export/{e.id}/download" if e.status == "completed" else None,
    }


def build_export_document(s: "Session", user: "User", export_id: int | None = None) -> dict[str, Any]:
    memberships = s.query(TenantMembership).filter(TenantMembership.user_id == user.id).all()
    events = (
        s.query(BehaviorEvent)
        .filter(BehaviorEvent.user_id == user.id)
        .order_by(BehaviorEvent.occurred_at.asc(), BehaviorEvent.id.asc())
        .all()
    )
    sessions = (
        s.query(TrackingSessionRecord)
        .filter(TrackingSessionRecord.user_id == user.id)
        .order_by(TrackingSessionRecord.started_at.asc())
        .all()
    )
    return {
        "user_id": user.id,
        "export_id": export_id,
        "exported_at": iso(datetime.utcnow()),
        "data": {
            "profile": {
                "id": user.id,
                "email": user.email,
                "is_active": user.is_active,
                "created_at": iso(user.created_at),
                "roles": [r.key for r in user.roles],
            },
            "tenants": [
                {
                    "tenant_id": m.tenant_id,
                    "tenant_name": m.tenant.name if m.tenant else None,
                    "role": m.role,
                    "joined_at": iso(m.created_at),
                }
                for m in memberships
            ],
            "consents": [serialize_consent(c) for c in consent_history(s, user.id)],
            "tracking_events": [
                {
                    "event_type": ev.event_type,
                    "session_id": ev.session_id,
                    "tenant_id": ev.tenant_id,
                    "entity_type": ev.entity_type,
                    "entity_id": ev.entity_id,
                    "url": ev.url,
                    "occurred_at": iso(ev.occurred_at),
                    "event_data": json.loads(ev.event_data_json) if ev.event_data_json else {},
                }
                for ev in events
            ],
            "tracking_sessions": [
                {
                    "session_id": ts.session_id,
                    "started_at": iso(ts.started_at),
                    "ended_at": iso(ts.ended_at),
                    "page_views": ts.page_views,
                    "duration_seconds": ts.duration_seconds,
                }
                for ts in sessions
            ],
            "deletion_requests": [
                serialize_deletion_request(r)
                for r in s.query(AccountDeletionRequest).filter(AccountDeletionRequest.user_id == user.id)
            ],
        },
    }


def create_export(s: "Session", user: "User", storage: Storage, *, fmt: str | None = None) -> DataExport:
    fmt = (clean_str(fmt) or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise bad_request("invalid_format", f"format must be one of: {', '.join(EXPORT_FORMATS)}")

    now = datetime.utcnow()
    export = DataExport(user_id=user.id, status="pending", format=fmt, requested_at=now)
    s.add(export)
    s.flush()

    doc = build_export_document(s, user, export.id)
    data = json.dumps(doc, indent=2, default=str).encode("utf-8")
    key = f"gdpr-exports/user-{user.id}/export-{export.id}.json"
    storage.put_bytes(key, data, content_type="application/json")

    export.storage_key = key
    export.size_bytes = len(data)
    export.status = "completed"
    export.completed_at = datetime.utcnow()
    export.expires_at = export.completed_at + EXPORT_TTL

    record_event(
        s,
        actor=user,
        action="gdpr.export",
        entity_type="DataExport",
        entity_id=str(export.id),
        metadata={"format": fmt, "size_bytes": len(data)},
    )
    logger.info("GDPR export created user_id=%s export_id=%s bytes=%s", user.id, export.id, len(data))
    return export


def list_exports(s: "Session", user_id: int) -> list[DataExport]:
    return (
        s.query(DataExport)
        .filter(DataExport.user_id == user_id)
        .order_by(DataExport.requested_at.desc(), DataExport.id.desc())
        .all()
    )


def get_owned_export(s: "Session", user: "User", export_id: int) -> DataExport:
    export = s.get(DataExport, export_id)
    # Someone else's export looks the same as a missing one.
    if export is None or export.user_id != user.id:
        raise not_found("export_not_found", "Export not found")
    if export.status != "completed" or not export.storage_key:
        raise ApiError(409, "export_not_ready", "This export is not ready yet.")
    if export.expires_at and export.expires_at < datetime.utcnow():
        raise ApiError(410, "export_expired", "This export has expired. Please request a new one.")
    return export


# ---------- Erasure ----------
@dataclass
class Erasure:
    counts: dict[str, int] = field(default_factory=dict)
    # export files to remove once the erasure is committed
    storage_keys: list[str] = field(default_factory=list)


def delete_user_data(s: "Session", user: "User", *, reason: str = "GDPR erasure request") -> Erasure:
    """Erase consents, exports and tracking data, then anonymise and deactivate the account."""
    result = Erasure()
    counts = result.counts

    exports = s.query(DataExport).filter(DataExport.user_id == user.id).all()
    for e in exports:
        if e.storage_key:
            result.storage_keys.append(e.storage_key)
        s.delete(e)
    counts["exports"] = len(exports)

    counts["consents"] = (
        s.query(ConsentRecord).filter(ConsentRecord.user_id == user.id).delete(synchronize_session=False)
    )
    counts["tracking_events"] = (
        s.query(BehaviorEvent).filter(BehaviorEvent.user_id == user.id).delete(synchronize_session=False)
    )
    counts["tracking_sessions"] = (
        s.query(TrackingSessionRecord)
        .filter(TrackingSessionRecord.user_id == user.id)
        .delete(synchronize_session=False)
    )
    counts["memberships"] = (
        s.query(TenantMembership).filter(TenantMembership.user_id == user.id).delete(synchronize_session=False)
    )

    now = datetime.utcnow()
    for req in s.query(AccountDeletionRequest).filter(
        AccountDeletionRequest.user_id == user.id, AccountDeletionRequest.status == "pending"
    ):
        req.status = "completed"
        req.completed_at = now
        req.updated_at = now
        req.ip_address = None
        req.user_agent = None

    user.email = f"deleted-user-{user.id}@{DELETED_EMAIL_DOMAIN}"
    user.password_hash = generate_password_hash(secrets.token_urlsafe(32))
    user.is_active = False
    user.roles = []

    record_event(
        s,
        actor=None,
        action="gdpr.data_delete",
        entity_type="User",
        entity_id=str(user.id),
        reason=reason,
        metadata={"counts": counts},
    )
    logger.warning("GDPR erasure completed user_id=%s counts=%s", user.id, counts)
    return result


def purge_export_files(storage: Storage, keys: list[str]) -> int:
    """Delete erased users' export files. Call after commit; returns the number that failed."""
    failed = 0
    for key in keys:
        try:
            storage.delete(key)
        except Exception:
            failed += 1
            logger.exception("Could not delete GDPR export file %s", key)
    return failed


# ---------- Account deletion requests (grace period) ----------
def serialize_deletion_request(r: AccountDeletionRequest, *, include_admin: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": r.id,
        "user_id": r.user_id,
        "reason": r.reason,
        "status": r.status,
        "requested_at": iso(r.requested_at),
        "scheduled_deletion_at": iso(r.scheduled_deletion_at),
        "cancelled_at": iso(r.cancelled_at),
        "completed_at": iso(r.completed_at),
    }
    if include_admin:
        data.update(
            {
                "user_email": r.user.email if r.user else None,
                "cancelled_by_admin": r.cancelled_by_admin,
                "admin_notes": r.admin_notes,
                "ip_address": r.ip_address,
            }
        )
    return data


def pending_deletion_request(s: "Session", user_id: int) -> AccountDeletionRequest | None:
    return (
        s.query(AccountDeletionRequest)
        .filter(AccountDeletionRequest.user_id == user_id, AccountDeletionRequest.status == "pending")
        .order_by(AccountDeletionRequest.requested_at.desc())
        .first()
    )


def request_account_deletion(
    s: "Session",
    user: "User",
    payload: dict,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AccountDeletionRequest:
    if payload.get("confirmation") != DELETION_CONFIRMATION:
        raise bad_request("confirmation_required", f"Please type {DELETION_CONFIRMATION} to confirm.")
    password = payload.get("password")
    if not isinstance(password, str) or not check_password_hash(user.password_hash, password):
        raise ApiError(401, "invalid_password", "Password verification failed.")
    if pending_deletion_request(s, user.id) is not None:
        raise conflict("deletion_pending", "You already have a pending deletion request.")

    now = datetime.utcnow()
    req = AccountDeletionRequest(
        user_id=user.id,
        reason=clean_str(payload.get("reason")),
        status="pending",
        requested_at=now,
        scheduled_deletion_at=now + DELETION_GRACE_PERIOD,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        updated_at=now,
    )
    s.add(req)
    s.flush()
    record_event(
        s,
        actor=user,
        action="gdpr.deletion_request",
        entity_type="AccountDeletionRequest",
        entity_id=str(req.id),
        reason=req.reason,
        metadata={"scheduled_deletion_at": iso(req.scheduled_deletion_at)},
    )
    return req


def cancel_account_deletion(s: "Session", user: "User") -> AccountDeletionRequest:
    req = pending_deletion_request(s, user.id)
    if req is None:
        raise not_found("no_pending_request", "No pending deletion request found.")
    now = datetime.utcnow()
    req.status = "cancelled"
    req.cancelled_at = now
    req.updated_at = now
    record_event(
        s,
        actor=user,
        action="gdpr.deletion_cancel",
        entity_type="AccountDeletionRequest",
        entity_id=str(req.id),
    )
    return req


def list_deletion_requests(
    s: "Session", *, status: str | None = None, limit: int = 50, offset: int = 0
) -> tuple[list[AccountDeletionRequest], int]:
    q = s.query(AccountDeletionRequest)
    if status and status != "all":
        if status not in DELETION_STATUSES:
            raise bad_request("invalid_status", f"status must be one of: all, {', '.join(DELETION_STATUSES)}")
        q = q.filter(AccountDeletionRequest.status == status)
    total = q.count()
    rows = (
        q.order_by(AccountDeletionRequest.requested_at.desc(), AccountDeletionRequest.id.desc())
        .offset(max(offset, 0))
        .limit(max(1, min(limit, 200)))
        .all()
    )
    return rows, total


def deletion_request_stats(s: "Session", now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    by_status = dict(
        s.query(AccountDeletionRequest.status, func.count(AccountDeletionRequest.id))
        .group_by(AccountDeletionRequest.status)
        .all()
    )

    def _since(cutoff: datetime) -> int:
        return s.query(AccountDeletionRequest).filter(AccountDeletionRequest.requested_at > cutoff).count()

    expiring = (
        s.query(AccountDeletionRequest)
        .filter(
            AccountDeletionRequest.status == "pending",
            AccountDeletionRequest.scheduled_deletion_at <= now + timedelta(days=7),
        )
        .count()
    )
    reason_count = func.count(AccountDeletionRequest.id)
    top_reasons = (
        s.query(AccountDeletionRequest.reason, reason_count)
        .filter(AccountDeletionRequest.reason.is_not(None), AccountDeletionRequest.reason != "")
        .group_by(AccountDeletionRequest.reason)
        .order_by(reason_count.desc())
        .limit(10)
        .all()
    )
    return {
        "pending_count": by_status.get("pending", 0),
        "cancelled_count": by_status.get("cancelled", 0),
        "completed_count": by_status.get("completed", 0),
        "last_7_days": _since(now - timedelta(days=7)),
        "last_30_days": _since(now - timedelta(days=30)),
        "expiring_in_7_days": expiring,
        "top_reasons": [{"reason": reason, "count": count} for reason, count in top_reasons],
    }


def admin_update_deletion_request(
    s: "Session", req: AccountDeletionRequest, payload: dict, admin: "User"
) -> AccountDeletionRequest:
    action = clean_str(payload.get("action"))
    if action not in (None, "cancel"):
        raise bad_request("invalid_action", "action must be 'cancel' or omitted.")
    now = datetime.utcnow()
    if "admin_notes" in payload:
        req.admin_notes = clean_str(payload.get("admin_notes"))
    if action == "cancel":
        if req.status != "pending":
            raise conflict("request_closed", "Only pending deletion requests can be cancelled.")
        req.status = "cancelled"
        req.cancelled_at = now
        req.cancelled_by_admin = True
    req.admin_user_id = admin.id
    req.updated_at = now
    record_event(
        s,
        actor=admin,
        action="gdpr.deletion_review",
        entity_type="AccountDeletionRequest",
        entity_id=str(req.id),
        metadata={"action": action or "notes", "status": req.status},
    )
    return req


def process_due_deletions(s: "Session", now: datetime | None = None) -> tuple[list[AccountDeletionRequest], list[str]]:
    """
    Erase every account whose grace period has ended.
    Returns the completed requests and the export files to purge after commit.
    """
    now = now or datetime.utcnow()
    due = (
        s.query(AccountDeletionRequest)
        .filter(AccountDeletionRequest.status == "pending", AccountDeletionRequest.scheduled_deletion_at <= now)
        .order_by(AccountDeletionRequest.scheduled_deletion_at.asc())
        .all()
    )
    keys: list[str] = []
    for req in due:
        if req.user is None:
            continue
        erasure = delete_user_data(s, req.user, reason=f"Scheduled deletion request {req.id}")
        keys.extend(erasure.storage_keys)
    logger.info("Processed %d due account deletion requests", len(due))
    return due, keys
