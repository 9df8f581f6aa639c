from __future__ import annotations

from flask import Blueprint, g, request

from app.commerce.db import db_session
from app.commerce.errors import bad_request, not_found
from app.commerce.models import User
from app.commerce.modules.tenants.models import Organization, Tenant
from app.commerce.modules.tenants.service import (
    TENANTS_MANAGE,
    add_member,
    create_organization,
    create_tenant,
    get_accessible_tenant,
    serialize_organization,
    serialize_tenant,
    tenants_for_user,
    tier_info,
    update_subscription,
    update_tenant_profile,
)
from app.commerce.modules.tiers import catalog
from app.commerce.modules.tiers.access import (
    require_any_tier_feature,
    require_tier_feature,
    require_writable_subscription,
)
from app.commerce.modules.tiers.service import (
    check_tenant_feature_access,
    effective_tier,
    resolve_tier_features,
    tenant_feature_summary,
)
from app.commerce.modules.tracking.models import TrackingSessionRecord
from app.commerce.modules.tracking.service import behavior_analytics, serialize_session
from app.commerce.rbac import require_login, require_permission, user_has_permission
from app.commerce.utils import clean_str, json_body, parse_int

bp = Blueprint("tenants", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- Tenants ----------
@bp.get("/tenants")
@require_login
def tenants_list():
    s = db_session()
    u = _current_user()
    if user_has_permission(u, TENANTS_MANAGE):
        tenants = s.query(Tenant).order_by(Tenant.name.asc()).all()
    else:
        tenants = tenants_for_user(s, u)
    return {"tenants": [serialize_tenant(t) for t in tenants]}


@bp.post("/tenants")
@require_permission(TENANTS_MANAGE)
def tenants_create():
    s = db_session()
    tenant = create_tenant(s, json_body(), _current_user())
    s.commit()
    return {"tenant": serialize_tenant(tenant)}, 201


@bp.post("/tenants/<int:tenant_id>/members")
@require_permission(TENANTS_MANAGE)
def tenant_member_add(tenant_id: int):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    payload = json_body()
    member_id = parse_int(payload.get("user_id"), "user_id")
    if member_id is None:
        raise bad_request("user_id_required", "user_id is required.")
    m = add_member(s, tenant, member_id, clean_str(payload.get("role")) or "member")
    s.commit()
    return {"membership": {"tenant_id": m.tenant_id, "user_id": m.user_id, "role": m.role}}, 201


@bp.get("/tenants/<int:tenant_id>/tier")
@require_login
def tenant_tier(tenant_id: int):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    return tier_info(s, tenant)


@bp.get("/tenants/<int:tenant_id>/tier/public")
def tenant_tier_public(tenant_id: int):
    s = db_session()
    tenant = s.get(Tenant, tenant_id)
    if not tenant:
        raise not_found("tenant_not_found", "Tenant not found")
    tier_key = effective_tier(tenant)
    return {
        "tenant_id": tenant.id,
        "tier": tier_key,
        "tier_display": catalog.get_tier_display_name(tier_key),
        "features": sorted(resolve_tier_features(s, tier_key)),
    }


@bp.patch("/tenants/<int:tenant_id>/tier")
@require_permission(TENANTS_MANAGE)
def tenant_tier_update(tenant_id: int):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    payload = json_body()
    update_subscription(s, tenant, payload, _current_user(), reason=clean_str(payload.get("reason")))
    s.commit()
    return tier_info(s, tenant)


@bp.get("/tenants/<int:tenant_id>/features")
@require_login
def tenant_features(tenant_id: int):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    return tenant_feature_summary(s, tenant)


@bp.get("/tenants/<int:tenant_id>/features/<feature>")
@require_login
def tenant_feature_check(tenant_id: int, feature: str):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    access = check_tenant_feature_access(s, tenant, feature)
    tier_key = effective_tier(tenant)
    upgrade = {"required": False} if access.has_access else catalog.upgrade_details(tier_key, feature)
    return {
        "feature": feature,
        "feature_name": catalog.get_feature_display_name(feature),
        "tier": tier_key,
        "limits": catalog.get_feature_limits(tier_key, feature) if access.has_access else None,
        "upgrade": upgrade,
        **access.to_dict(),
    }


@bp.patch("/tenants/<int:tenant_id>")
@require_login
@require_writable_subscription
def tenant_profile_update(tenant_id: int):
    s = db_session()
    u = _current_user()
    tenant = update_tenant_profile(s, get_accessible_tenant(s, u, tenant_id), json_body(), u)
    s.commit()
    return {"tenant": serialize_tenant(tenant)}


# ---------- Tenant analytics (tier-gated) ----------
@bp.get("/tenants/<int:tenant_id>/analytics/behavior")
@require_login
@require_any_tier_feature(("performance_analytics", "advanced_analytics"))
def tenant_behavior(tenant_id: int):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    hours = parse_int(request.args.get("hours"), "hours")
    if hours is None:
        hours = 24
    return {"success": True, "analytics": behavior_analytics(s, hours=hours, tenant_id=tenant.id)}


@bp.get("/tenants/<int:tenant_id>/analytics/sessions")
@require_login
@require_tier_feature("advanced_analytics")
def tenant_sessions(tenant_id: int):
    s = db_session()
    tenant = get_accessible_tenant(s, _current_user(), tenant_id)
    limit = max(1, min(parse_int(request.args.get("limit"), "limit") or 50, 500))
    rows = (
        s.query(TrackingSessionRecord)
        .filter(TrackingSessionRecord.tenant_id == tenant.id)
        .order_by(TrackingSessionRecord.started_at.desc())
        .limit(limit)
        .all()
    )
    return {"sessions": [serialize_session(r) for r in rows]}


# ---------- Organizations ----------
@bp.get("/organizations")
@require_login
def organizations_list():
    s = db_session()
    q = s.query(Organization)
    search = (request.args.get("q") or "").strip()
    if search:
        q = q.filter(Organization.name.ilike(f"%{search}%"))
    orgs = q.order_by(Organization.name.asc()).all()
    return {"organizations": [serialize_organization(o) for o in orgs]}


@bp.post("/organizations")
@require_permission(TENANTS_MANAGE)
def organizations_create():
    s = db_session()
    org = create_organization(s, json_body(), _current_user())
    s.commit()
    return {"organization": serialize_organization(org)}, 201
