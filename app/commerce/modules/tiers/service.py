from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from app.commerce.audit import record_event
from app.commerce.errors import ApiError, bad_request, conflict, not_found
from app.commerce.modules.tiers import catalog
from app.commerce.modules.tiers.models import (
    TIER_TYPES,
    SubscriptionTier,
    TenantFeatureOverride,
    TierChangeLog,
    TierFeature,
)
from app.commerce.utils import clean_str, iso, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.commerce.models import User
    from app.commerce.modules.tenants.models import Tenant

logger = logging.getLogger(__name__)

_TIER_KEY_RE = re.compile(r"^[a-z][a-z0-9_]{1,63}$")
_FEATURE_KEY_RE = re.compile(r"^[a-z][a-z0-9_]{1,127}$")

INACTIVE_STATUSES = ("canceled", "expired")


@dataclass(frozen=True)
class FeatureAccess:
    has_access: bool
    source: str  # "tier" | "override" | "none"
    override: TenantFeatureOverride | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_access": self.has_access,
            "source": self.source,
            "override": serialize_override(self.override) if self.override else None,
        }


# ---------- Serialization ----------
def serialize_feature(f: TierFeature) -> dict[str, Any]:
    return {
        "id": f.id,
        "feature_key": f.feature_key,
        "feature_name": f.feature_name,
        "is_enabled": f.is_enabled,
        "is_inherited": f.is_inherited,
    }


def serialize_tier(tier: SubscriptionTier, *, include_features: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": tier.id,
        "tier_key": tier.tier_key,
        "name": tier.name,
        "display_name": tier.display_name,
        "description": tier.description,
        "price_monthly": tier.price_monthly,
        "max_skus": tier.max_skus,
        "max_locations": tier.max_locations,
        "tier_type": tier.tier_type,
        "is_active": tier.is_active,
        "sort_order": tier.sort_order,
        "updated_at": iso(tier.updated_at),
    }
    if include_features:
        data["features"] = [serialize_feature(f) for f in tier.features]
    return data


def fallback_tier_data(tier_key: str) -> dict[str, Any]:
    """Tier payload built from the static catalog when no DB row exists."""
    return {
        "id": None,
        "tier_key": tier_key,
        "name": tier_key,
        "display_name": catalog.get_tier_display_name(tier_key),
        "description": None,
        "price_monthly": catalog.get_tier_pricing(tier_key),
        "max_skus": catalog.TIER_SKU_LIMITS.get(tier_key, 250),
        "max_locations": None,
        "tier_type": catalog.TIER_TYPES.get(tier_key, "individual"),
        "is_active": True,
        "sort_order": 0,
        "features": [
            {"feature_key": k, "feature_name": catalog.get_feature_display_name(k), "is_enabled": True}
            for k in catalog.get_tier_features(tier_key)
        ],
    }


def serialize_override(o: TenantFeatureOverride, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    is_expired = o.expires_at is not None and o.expires_at <= now
    return {
        "id": o.id,
        "tenant_id": o.tenant_id,
        "feature": o.feature,
        "granted": o.granted,
        "reason": o.reason,
        "expires_at": iso(o.expires_at),
        "is_expired": is_expired,
        "is_active": bool(o.granted) and not is_expired,
        "granted_by_user_id": o.granted_by_user_id,
        "created_at": iso(o.created_at),
        "updated_at": iso(o.updated_at),
    }


def serialize_change_log(c: TierChangeLog) -> dict[str, Any]:
    return {
        "id": c.id,
        "entity_type": c.entity_type,
        "entity_id": c.entity_id,
        "action": c.action,
        "before_state": c.before_state,
        "after_state": c.after_state,
        "reason": c.reason,
        "changed_by_user_id": c.changed_by_user_id,
        "changed_by_email": c.changed_by_email,
        "created_at": iso(c.created_at),
    }


# ---------- Resolution ----------
def get_tier_by_key(s: "Session", tier_key: str) -> SubscriptionTier | None:
    return s.query(SubscriptionTier).filter(SubscriptionTier.tier_key == tier_key).one_or_none()


def is_known_tier(s: "Session", tier_key: str) -> bool:
    return tier_key in catalog.TIER_FEATURES or get_tier_by_key(s, tier_key) is not None


def resolve_tier_features(s: "Session", tier_key: str) -> set[str]:
    """
    Enabled features of a tier.

    An active DB row wins (inherited features are materialized as rows with
    is_inherited=True); otherwise the static catalog is used.
    """
    try:
        tier = get_tier_by_key(s, tier_key)
    except SQLAlchemyError as e:
        logger.warning("Tier lookup failed for %s, using catalog fallback: %s", tier_key, e)
        s.rollback()
        return set(catalog.get_tier_features(tier_key))
    if tier is None or not tier.is_active:
        return set(catalog.get_tier_features(tier_key))
    return {f.feature_key for f in tier.features if f.is_enabled}


def effective_tier(tenant: "Tenant") -> str:
    """Organization tier overrides the tenant tier for chain members."""
    org = tenant.organization
    if org is not None and org.subscription_tier:
        return org.subscription_tier
    return tenant.subscription_tier or catalog.DEFAULT_TIER


def active_override(s: "Session", tenant_id: int, feature: str, now: datetime | None = None) -> TenantFeatureOverride | None:
    now = now or datetime.utcnow()
    return (
        s.query(TenantFeatureOverride)
        .filter(
            TenantFeatureOverride.tenant_id == tenant_id,
            TenantFeatureOverride.feature == feature,
            or_(TenantFeatureOverride.expires_at.is_(None), TenantFeatureOverride.expires_at > now),
        )
        .order_by(TenantFeatureOverride.created_at.desc(), TenantFeatureOverride.id.desc())
        .first()
    )


def check_tenant_feature_access(
    s: "Session", tenant: "Tenant", feature: str, now: datetime | None = None
) -> FeatureAccess:
    override = active_override(s, tenant.id, feature, now)
    if override is not None:
        return FeatureAccess(has_access=override.granted, source="override", override=override)
    if feature in resolve_tier_features(s, effective_tier(tenant)):
        return FeatureAccess(has_access=True, source="tier")
    return FeatureAccess(has_access=False, source="none")


def tenant_feature_summary(s: "Session", tenant: "Tenant", now: datetime | None = None) -> dict[str, Any]:
    """Effective feature set after applying active overrides on top of the tier."""
    now = now or datetime.utcnow()
    tier_key = effective_tier(tenant)
    tier_features = resolve_tier_features(s, tier_key)
    overrides = (
        s.query(TenantFeatureOverride)
        .filter(
            TenantFeatureOverride.tenant_id == tenant.id,
            or_(TenantFeatureOverride.expires_at.is_(None), TenantFeatureOverride.expires_at > now),
        )
        .order_by(TenantFeatureOverride.created_at.asc(), TenantFeatureOverride.id.asc())
        .all()
    )
    # Latest override per feature wins.
    latest: dict[str, TenantFeatureOverride] = {}
    for o in overrides:
        latest[o.feature] = o

    features = set(tier_features)
    for key, o in latest.items():
        if o.granted:
            features.add(key)
        else:
            features.discard(key)

    return {
        "tier": tier_key,
        "tier_display": catalog.get_tier_display_name(tier_key),
        "features": sorted(features),
        "granted_overrides": sorted(k for k, o in latest.items() if o.granted),
        "revoked_overrides": sorted(k for k, o in latest.items() if not o.granted),
    }


def is_subscription_inactive(status: str | None) -> bool:
    return (status or "").lower() in INACTIVE_STATUSES


def maintenance_state(tier: str, status: str | None, trial_ends_at: datetime | None, now: datetime | None = None) -> str:
    """
    active | maintenance | freeze.

    freeze is read-only: canceled/expired subscriptions and elapsed trials.
    google_only tenants stay in maintenance mode (existing listings kept in sync).
    """
    now = now or datetime.utcnow()
    status = (status or "active").lower()
    if status in INACTIVE_STATUSES:
        return "freeze"
    if status == "trial" and trial_ends_at is not None and trial_ends_at <= now:
        return "freeze"
    if tier == "google_only":
        return "maintenance"
    return "active"


def feature_denied_error(tenant: "Tenant", feature: str) -> ApiError:
    current = effective_tier(tenant)
    details = catalog.upgrade_details(current, feature)
    return ApiError(
        403,
        "feature_not_available",
        f"This feature requires {details['target_tier_display']} tier or higher",
        feature=feature,
        current_tier=current,
        current_tier_display=catalog.get_tier_display_name(current),
        current_tier_price=details["current_price"],
        required_tier=details["target_tier"],
        required_tier_display=details["target_tier_display"],
        required_tier_price=details["target_price"],
        upgrade_cost=details["upgrade_cost"],
        upgrade_url=catalog.UPGRADE_URL,
    )


# ---------- Change log ----------
def _log_change(
    s: "Session",
    user: "User",
    *,
    entity_type: str,
    entity_id: Any,
    action: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    reason: str | None = None,
) -> None:
    s.add(
        TierChangeLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            before_state=before,
            after_state=after,
            reason=reason,
            changed_by_user_id=user.id,
            changed_by_email=user.email,
        )
    )
    record_event(
        s,
        actor=user,
        action=f"{entity_type}.{action}",
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
        metadata={"before": before, "after": after} if (before or after) else None,
    )


def list_change_logs(s: "Session", *, entity_type: str | None = None, limit: int = 100) -> list[TierChangeLog]:
    q = s.query(TierChangeLog)
    if entity_type:
        q = q.filter(TierChangeLog.entity_type == entity_type)
    return q.order_by(TierChangeLog.created_at.desc(), TierChangeLog.id.desc()).limit(max(1, min(limit, 500))).all()


# ---------- Tier CRUD ----------
def validate_tier_payload(payload: dict, *, creating: bool) -> list[str]:
    """Validate tier creation/update payload. Returns list of errors."""
    errors = []
    if creating:
        key = (payload.get("tier_key") or "").strip()
        if not key:
            errors.append("tier_key is required.")
        elif not _TIER_KEY_RE.match(key):
            errors.append("tier_key must be lowercase letters, digits and underscores.")
        if not clean_str(payload.get("name")):
            errors.append("name is required.")
        if not clean_str(payload.get("display_name")):
            errors.append("display_name is required.")
    tier_type = clean_str(payload.get("tier_type"))
    if tier_type and tier_type not in TIER_TYPES:
        errors.append(f"Invalid tier_type. Must be one of: {', '.join(TIER_TYPES)}")
    for field in ("price_monthly", "max_skus", "max_locations", "sort_order"):
        value = payload.get(field)
        if value is None or value == "":
            continue
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            errors.append(f"{field} must be an integer.")
            continue
        try:
            if int(value) < 0:
                errors.append(f"{field} must not be negative.")
        except ValueError:
            errors.append(f"{field} must be an integer.")
    if "is_active" in payload and not isinstance(payload.get("is_active"), bool):
        errors.append("is_active must be a boolean.")
    features = payload.get("features")
    if features is not None and (not isinstance(features, list) or not all(isinstance(f, str) for f in features)):
        errors.append("features must be a list of feature keys.")
    return errors


def _raise_validation(errors: list[str]) -> None:
    if errors:
        raise bad_request("validation_failed", " ".join(errors), errors=errors)


def create_tier(s: "Session", payload: dict, user: "User") -> SubscriptionTier:
    _raise_validation(validate_tier_payload(payload, creating=True))
    tier_key = payload["tier_key"].strip()
    if get_tier_by_key(s, tier_key) is not None:
        raise conflict("tier_exists", f"Tier '{tier_key}' already exists.")

    now = datetime.utcnow()
    tier = SubscriptionTier(
        tier_key=tier_key,
        name=clean_str(payload.get("name")),
        display_name=clean_str(payload.get("display_name")),
        description=clean_str(payload.get("description")),
        price_monthly=parse_int(payload.get("price_monthly"), "price_monthly") or 0,
        max_skus=parse_int(payload.get("max_skus"), "max_skus"),
        max_locations=parse_int(payload.get("max_locations"), "max_locations"),
        tier_type=clean_str(payload.get("tier_type")) or "individual",
        is_active=payload.get("is_active", True),
        sort_order=parse_int(payload.get("sort_order"), "sort_order") or 0,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    for key in dict.fromkeys(payload.get("features") or []):
        tier.features.append(TierFeature(feature_key=key, feature_name=catalog.get_feature_display_name(key)))
    s.add(tier)
    s.flush()

    _log_change(s, user, entity_type="tier", entity_id=tier.id, action="create", after=serialize_tier(tier))
    return tier


_TIER_UPDATABLE = ("name", "display_name", "description", "price_monthly", "max_skus", "max_locations", "tier_type", "is_active", "sort_order")
_TIER_INT_FIELDS = ("price_monthly", "max_skus", "max_locations", "sort_order")


def update_tier(s: "Session", tier: SubscriptionTier, payload: dict, user: "User", reason: str | None = None) -> SubscriptionTier:
    _raise_validation(validate_tier_payload(payload, creating=False))
    before = serialize_tier(tier, include_features=False)
    changes = {}
    for field in _TIER_UPDATABLE:
        if field not in payload:
            continue
        raw = payload[field]
        if field in _TIER_INT_FIELDS:
            new = parse_int(raw, field)
            if new is None and field in ("price_monthly", "sort_order"):
                new = 0
        elif field == "is_active":
            new = raw
        else:
            new = clean_str(raw)
            if new is None and field in ("name", "display_name", "tier_type"):
                raise bad_request("validation_failed", f"{field} cannot be empty.")
        if new != getattr(tier, field):
            changes[field] = {"old": getattr(tier, field), "new": new}
            setattr(tier, field, new)

    if not changes:
        return tier
    tier.updated_at = datetime.utcnow()
    tier.updated_by_user_id = user.id
    _log_change(
        s,
        user,
        entity_type="tier",
        entity_id=tier.id,
        action="update",
        before=before,
        after=serialize_tier(tier, include_features=False),
        reason=reason,
    )
    return tier


def tier_usage(s: "Session", tier_key: str) -> dict[str, int]:
    from app.commerce.modules.tenants.models import Organization, Tenant

    tenants = s.query(func.count(Tenant.id)).filter(Tenant.subscription_tier == tier_key).scalar() or 0
    orgs = s.query(func.count(Organization.id)).filter(Organization.subscription_tier == tier_key).scalar() or 0
    return {"tenants": int(tenants), "organizations": int(orgs)}


def delete_tier(s: "Session", tier: SubscriptionTier, user: "User", reason: str | None = None) -> None:
    usage = tier_usage(s, tier.tier_key)
    if usage["tenants"] or usage["organizations"]:
        raise conflict(
            "tier_in_use",
            f"Tier '{tier.tier_key}' is assigned to {usage['tenants']} tenant(s) and {usage['organizations']} organization(s).",
            usage=usage,
        )
    before = serialize_tier(tier)
    tier_id = tier.id
    s.delete(tier)
    s.flush()
    _log_change(s, user, entity_type="tier", entity_id=tier_id, action="delete", before=before, reason=reason)


# ---------- Tier features ----------
def add_tier_feature(s: "Session", tier: SubscriptionTier, payload: dict, user: "User") -> TierFeature:
    key = (payload.get("feature_key") or "").strip()
    if not key or not _FEATURE_KEY_RE.match(key):
        raise bad_request("validation_failed", "feature_key is required (lowercase letters, digits, underscores).")
    if any(f.feature_key == key for f in tier.features):
        raise conflict("feature_exists", f"Tier '{tier.tier_key}' already has feature '{key}'.")
    is_enabled = payload.get("is_enabled", True)
    if not isinstance(is_enabled, bool):
        raise bad_request("validation_failed", "is_enabled must be a boolean.")

    feature = TierFeature(
        feature_key=key,
        feature_name=clean_str(payload.get("feature_name")) or catalog.get_feature_display_name(key),
        is_enabled=is_enabled,
        is_inherited=False,
    )
    tier.features.append(feature)
    tier.updated_at = datetime.utcnow()
    s.flush()
    _log_change(s, user, entity_type="tier_feature", entity_id=feature.id, action="create", after={"tier": tier.tier_key, **serialize_feature(feature)})
    return feature


def get_tier_feature(tier: SubscriptionTier, feature_id: int) -> TierFeature:
    for f in tier.features:
        if f.id == feature_id:
            return f
    raise not_found("feature_not_found", "Feature not found on this tier.")


def update_tier_feature(s: "Session", feature: TierFeature, payload: dict, user: "User") -> TierFeature:
    before = serialize_feature(feature)
    if "is_enabled" in payload:
        if not isinstance(payload["is_enabled"], bool):
            raise bad_request("validation_failed", "is_enabled must be a boolean.")
        feature.is_enabled = payload["is_enabled"]
    if "feature_name" in payload:
        name = clean_str(payload.get("feature_name"))
        if not name:
            raise bad_request("validation_failed", "feature_name cannot be empty.")
        feature.feature_name = name
    feature.updated_at = datetime.utcnow()
    _log_change(s, user, entity_type="tier_feature", entity_id=feature.id, action="update", before=before, after=serialize_feature(feature))
    return feature


def remove_tier_feature(s: "Session", tier: SubscriptionTier, feature: TierFeature, user: "User") -> None:
    before = {"tier": tier.tier_key, **serialize_feature(feature)}
    feature_id = feature.id
    tier.features.remove(feature)
    tier.updated_at = datetime.utcnow()
    s.flush()
    _log_change(s, user, entity_type="tier_feature", entity_id=feature_id, action="delete", before=before)


def inherit_features(s: "Session", target: SubscriptionTier, source_key: str, user: "User") -> int:
    """Copy enabled features of another tier that the target lacks. Returns the number copied."""
    source_key = (source_key or "").strip()
    if not source_key:
        raise bad_request("validation_failed", "source_tier_key is required.")
    if source_key == target.tier_key:
        raise bad_request("validation_failed", "A tier cannot inherit from itself.")
    source = get_tier_by_key(s, source_key)
    if source is None:
        raise not_found("tier_not_found", f"Tier '{source_key}' not found.")

    existing = {f.feature_key for f in target.features}
    copied = []
    for f in source.features:
        if not f.is_enabled or f.feature_key in existing:
            continue
        target.features.append(TierFeature(feature_key=f.feature_key, feature_name=f.feature_name, is_enabled=True, is_inherited=True))
        copied.append(f.feature_key)
    if copied:
        target.updated_at = datetime.utcnow()
        s.flush()
        _log_change(
            s,
            user,
            entity_type="tier",
            entity_id=target.id,
            action="inherit",
            after={"source_tier": source_key, "features": copied},
        )
    return len(copied)


# ---------- Overrides ----------
def list_overrides(
    s: "Session",
    *,
    tenant_id: int | None = None,
    feature: str | None = None,
    granted: bool | None = None,
    include_expired: bool = False,
) -> list[TenantFeatureOverride]:
    q = s.query(TenantFeatureOverride)
    if tenant_id is not None:
        q = q.filter(TenantFeatureOverride.tenant_id == tenant_id)
    if feature:
        q = q.filter(TenantFeatureOverride.feature == feature)
    if granted is not None:
        q = q.filter(TenantFeatureOverride.granted.is_(granted))
    if not include_expired:
        now = datetime.utcnow()
        q = q.filter(or_(TenantFeatureOverride.expires_at.is_(None), TenantFeatureOverride.expires_at > now))
    return q.order_by(TenantFeatureOverride.created_at.desc(), TenantFeatureOverride.id.desc()).all()


def create_override(s: "Session", payload: dict, user: "User") -> TenantFeatureOverride:
    from app.commerce.modules.tenants.models import Tenant

    tenant_id = parse_int(payload.get("tenant_id"), "tenant_id")
    if tenant_id is None:
        raise bad_request("tenantId_required", "tenant_id is required.")
    tenant = s.get(Tenant, tenant_id)
    if tenant is None:
        raise not_found("tenant_not_found", "Tenant not found")
    feature = (payload.get("feature") or "").strip()
    if not feature or not _FEATURE_KEY_RE.match(feature):
        raise bad_request("validation_failed", "feature is required (lowercase letters, digits, underscores).")
    granted = payload.get("granted", True)
    if not isinstance(granted, bool):
        raise bad_request("validation_failed", "granted must be a boolean.")
    expires_at = parse_datetime(payload.get("expires_at"), "expires_at")
    now = datetime.utcnow()
    if expires_at is not None and expires_at <= now:
        raise bad_request("validation_failed", "expires_at must be in the future.")

    override = TenantFeatureOverride(
        tenant_id=tenant.id,
        feature=feature,
        granted=granted,
        reason=clean_str(payload.get("reason")),
        expires_at=expires_at,
        granted_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(override)
    s.flush()
    _log_change(s, user, entity_type="override", entity_id=override.id, action="create", after=serialize_override(override), reason=override.reason)
    return override


def get_override(s: "Session", override_id: int) -> TenantFeatureOverride:
    override = s.get(TenantFeatureOverride, override_id)
    if override is None:
        raise not_found("override_not_found", "Override not found")
    return override


def update_override(s: "Session", override: TenantFeatureOverride, payload: dict, user: "User") -> TenantFeatureOverride:
    """Change grant, reason or expiry; `expires_at: null` makes the override permanent."""
    before = serialize_override(override)
    now = datetime.utcnow()
    if "granted" in payload:
        granted = payload.get("granted")
        if not isinstance(granted, bool):
            raise bad_request("validation_failed", "granted must be a boolean.")
        override.granted = granted
    if "reason" in payload:
        override.reason = clean_str(payload.get("reason"))
    if "expires_at" in payload:
        expires_at = parse_datetime(payload.get("expires_at"), "expires_at")
        if expires_at is not None and expires_at <= now:
            raise bad_request("validation_failed", "expires_at must be in the future.")
        override.expires_at = expires_at

    override.granted_by_user_id = user.id
    override.updated_at = now
    s.flush()
    _log_change(
        s,
        user,
        entity_type="override",
        entity_id=override.id,
        action="update",
        before=before,
        after=serialize_override(override),
        reason=override.reason,
    )
    return override


def cleanup_expired_overrides(s: "Session", user: "User", now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    expired = (
        s.query(TenantFeatureOverride)
        .filter(TenantFeatureOverride.expires_at.is_not(None), TenantFeatureOverride.expires_at <= now)
        .all()
    )
    if not expired:
        return 0
    removed = [serialize_override(o, now) for o in expired]
    for o in expired:
        s.delete(o)
    s.flush()
    _log_change(s, user, entity_type="override", entity_id="expired", action="cleanup", before={"overrides": removed})
    logger.info("Removed %d expired feature overrides", len(removed))
    return len(removed)


def delete_override(s: "Session", override: TenantFeatureOverride, user: "User") -> None:
    before = serialize_override(override)
    override_id = override.id
    s.delete(override)
    s.flush()
    _log_change(s, user, entity_type="override", entity_id=override_id, action="delete", before=before)


# ---------- Seeding ----------
def seed_tiers_from_catalog(s: "Session") -> int:
    """
    Create missing tier rows from the static catalog (idempotent).
    Inherited features are materialized with is_inherited=True.
    Returns the number of tiers created.
    """
    created = 0
    for order, tier_key in enumerate(catalog.known_tiers()):
        if get_tier_by_key(s, tier_key) is not None:
            continue
        now = datetime.utcnow()
        tier = SubscriptionTier(
            tier_key=tier_key,
            name=tier_key,
            display_name=catalog.get_tier_display_name(tier_key),
            price_monthly=catalog.get_tier_pricing(tier_key),
            max_skus=catalog.TIER_SKU_LIMITS.get(tier_key),
            tier_type=catalog.TIER_TYPES.get(tier_key, "individual"),
            is_active=True,
            sort_order=order,
            created_at=now,
            updated_at=now,
        )
        own = set(catalog.TIER_FEATURES[tier_key])
        for key in catalog.get_tier_features(tier_key):
            tier.features.append(
                TierFeature(
                    feature_key=key,
                    feature_name=catalog.get_feature_display_name(key),
                    is_enabled=True,
                    is_inherited=key not in own,
                )
            )
        s.add(tier)
        created += 1
    s.flush()
    return created
