from __future__ import annotations

from flask import Blueprint, g, request

from app.commerce.db import db_session
from app.commerce.errors import not_found
from app.commerce.models import User
from app.commerce.modules.tenants.models import Tenant
from app.commerce.modules.tiers import catalog
from app.commerce.modules.tiers.models import SubscriptionTier
from app.commerce.modules.tiers.service import (
    add_tier_feature,
    cleanup_expired_overrides,
    create_override,
    create_tier,
    delete_override,
    delete_tier,
    get_override,
    get_tier_feature,
    inherit_features,
    list_change_logs,
    list_overrides,
    remove_tier_feature,
    serialize_change_log,
    serialize_feature,
    serialize_override,
    serialize_tier,
    tier_usage,
    update_override,
    update_tier,
    update_tier_feature,
)
from app.commerce.rbac import require_permission
from app.commerce.utils import clean_str, json_body, parse_int

bp = Blueprint("tier_system", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_tier(tier_id: int) -> SubscriptionTier:
    tier = db_session().get(SubscriptionTier, tier_id)
    if not tier:
        raise not_found("tier_not_found", "Tier not found")
    return tier


# ---------- Tiers ----------
@bp.get("/tiers")
@require_permission("tiers.view")
def tiers_list():
    s = db_session()
    q = s.query(SubscriptionTier)
    if (request.args.get("include_inactive") or "").lower() not in ("1", "true"):
        q = q.filter(SubscriptionTier.is_active.is_(True))
    tier_type = (request.args.get("tier_type") or "").strip()
    if tier_type:
        q = q.filter(SubscriptionTier.tier_type == tier_type)
    tiers = q.order_by(SubscriptionTier.sort_order.asc(), SubscriptionTier.tier_key.asc()).all()
    return {"tiers": [serialize_tier(t) for t in tiers], "count": len(tiers)}


@bp.get("/tiers/<int:tier_id>")
@require_permission("tiers.view")
def tier_detail(tier_id: int):
    tier = _get_tier(tier_id)
    data = serialize_tier(tier)
    data["usage"] = tier_usage(db_session(), tier.tier_key)
    return {"tier": data}


@bp.post("/tiers")
@require_permission("tiers.manage")
def tier_create():
    s = db_session()
    tier = create_tier(s, json_body(), _current_user())
    s.commit()
    return {"tier": serialize_tier(tier)}, 201


@bp.patch("/tiers/<int:tier_id>")
@require_permission("tiers.manage")
def tier_update(tier_id: int):
    s = db_session()
    payload = json_body()
    tier = update_tier(s, _get_tier(tier_id), payload, _current_user(), reason=clean_str(payload.get("reason")))
    s.commit()
    return {"tier": serialize_tier(tier)}


@bp.delete("/tiers/<int:tier_id>")
@require_permission("tiers.manage")
def tier_delete(tier_id: int):
    s = db_session()
    delete_tier(s, _get_tier(tier_id), _current_user(), reason=clean_str(request.args.get("reason")))
    s.commit()
    return {"success": True}


# ---------- Features ----------
@bp.get("/features")
@require_permission("tiers.view")
def features_catalog():
    features = [
        {
            "feature_key": key,
            "feature_name": catalog.get_feature_display_name(key),
            "required_tier": catalog.get_required_tier(key),
        }
        for key in catalog.all_feature_keys()
    ]
    return {"features": features, "count": len(features)}


@bp.post("/tiers/<int:tier_id>/features")
@require_permission("tiers.manage")
def tier_feature_add(tier_id: int):
    s = db_session()
    feature = add_tier_feature(s, _get_tier(tier_id), json_body(), _current_user())
    s.commit()
    return {"feature": serialize_feature(feature)}, 201


@bp.patch("/tiers/<int:tier_id>/features/<int:feature_id>")
@require_permission("tiers.manage")
def tier_feature_update(tier_id: int, feature_id: int):
    s = db_session()
    feature = get_tier_feature(_get_tier(tier_id), feature_id)
    update_tier_feature(s, feature, json_body(), _current_user())
    s.commit()
    return {"feature": serialize_feature(feature)}


@bp.delete("/tiers/<int:tier_id>/features/<int:feature_id>")
@require_permission("tiers.manage")
def tier_feature_delete(tier_id: int, feature_id: int):
    s = db_session()
    tier = _get_tier(tier_id)
    remove_tier_feature(s, tier, get_tier_feature(tier, feature_id), _current_user())
    s.commit()
    return {"success": True}


@bp.post("/tiers/<int:tier_id>/inherit-features")
@require_permission("tiers.manage")
def tier_inherit_features(tier_id: int):
    s = db_session()
    tier = _get_tier(tier_id)
    copied = inherit_features(s, tier, json_body().get("source_tier_key") or "", _current_user())
    s.commit()
    return {"copied": copied, "tier": serialize_tier(tier)}


# ---------- Change log ----------
@bp.get("/change-logs")
@require_permission("tiers.audit")
def change_logs():
    limit = parse_int(request.args.get("limit"), "limit") or 100
    entries = list_change_logs(db_session(), entity_type=clean_str(request.args.get("entity_type")), limit=limit)
    return {"change_logs": [serialize_change_log(c) for c in entries]}


# ---------- Tenant feature overrides ----------
def _flag(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true")


@bp.get("/overrides")
@require_permission("tiers.audit")
def overrides_list():
    granted_raw = (request.args.get("granted") or "").lower()
    overrides = list_overrides(
        db_session(),
        tenant_id=parse_int(request.args.get("tenant_id"), "tenant_id"),
        feature=clean_str(request.args.get("feature")),
        granted={"true": True, "false": False}.get(granted_raw),
        include_expired=_flag("include_expired"),
    )
    return {"overrides": [serialize_override(o) for o in overrides], "count": len(overrides)}


@bp.get("/overrides/tenant/<int:tenant_id>")
@require_permission("tiers.audit")
def overrides_for_tenant(tenant_id: int):
    s = db_session()
    if s.get(Tenant, tenant_id) is None:
        raise not_found("tenant_not_found", "Tenant not found")
    # expired ones are kept in the tenant's history unless ?active=true
    overrides = list_overrides(s, tenant_id=tenant_id, include_expired=not _flag("active"))
    return {"overrides": [serialize_override(o) for o in overrides], "count": len(overrides)}


@bp.get("/overrides/<int:override_id>")
@require_permission("tiers.audit")
def override_detail(override_id: int):
    return {"override": serialize_override(get_override(db_session(), override_id))}


@bp.post("/overrides")
@require_permission("tiers.manage")
def override_create():
    s = db_session()
    override = create_override(s, json_body(), _current_user())
    s.commit()
    return {"override": serialize_override(override)}, 201


@bp.put("/overrides/<int:override_id>")
@require_permission("tiers.manage")
def override_update(override_id: int):
    s = db_session()
    override = update_override(s, get_override(s, override_id), json_body(), _current_user())
    s.commit()
    return {"override": serialize_override(override)}


@bp.delete("/overrides/<int:override_id>")
@require_permission("tiers.manage")
def override_delete(override_id: int):
    s = db_session()
    delete_override(s, get_override(s, override_id), _current_user())
    s.commit()
    return {"success": True}


@bp.post("/overrides/cleanup-expired")
@require_permission("tiers.manage")
def overrides_cleanup_expired():
    s = db_session()
    removed = cleanup_expired_overrides(s, _current_user())
    s.commit()
    return {"success": True, "removed_count": removed}
