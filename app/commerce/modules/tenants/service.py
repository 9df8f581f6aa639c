from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.commerce.audit import record_event
from app.commerce.errors import ApiError, bad_request, conflict, not_found
from app.commerce.modules.tenants.models import (
    MEMBERSHIP_ROLES,
    SUBSCRIPTION_STATUSES,
    Organization,
    Tenant,
    TenantMembership,
)
from app.commerce.modules.tiers import catalog
from app.commerce.modules.tiers.service import (
    effective_tier,
    fallback_tier_data,
    get_tier_by_key,
    is_known_tier,
    maintenance_state,
    serialize_tier,
)
from app.commerce.rbac import user_has_permission
from app.commerce.utils import clean_str, iso, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.commerce.models import User

TENANTS_MANAGE = "tenants.manage"


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:120] or "tenant"


# ---------- Access ----------
def tenants_for_user(s: "Session", user: "User") -> list[Tenant]:
    return (
        s.query(Tenant)
        .join(TenantMembership, TenantMembership.tenant_id == Tenant.id)
        .filter(TenantMembership.user_id == user.id)
        .order_by(Tenant.name.asc())
        .all()
    )


def membership_for(s: "Session", user: "User", tenant_id: int) -> TenantMembership | None:
    return (
        s.query(TenantMembership)
        .filter(TenantMembership.user_id == user.id, TenantMembership.tenant_id == tenant_id)
        .one_or_none()
    )


def can_access_tenant(s: "Session", user: "User | None", tenant_id: int) -> bool:
    if not user or not user.is_active:
        return False
    if user_has_permission(user, TENANTS_MANAGE):
        return True
    return membership_for(s, user, tenant_id) is not None


def get_accessible_tenant(s: "Session", user: "User | None", tenant_id: int) -> Tenant:
    """Load a tenant the user may act on; 404 when missing, 403 without membership."""
    if not user or not user.is_active:
        raise ApiError(401, "authentication_required", "Please sign in to continue.")
    tenant = s.get(Tenant, tenant_id)
    if tenant is None:
        raise not_found("tenant_not_found", "Tenant not found")
    if not can_access_tenant(s, user, tenant_id):
        raise ApiError(403, "tenant_access_denied", "You do not have access to this tenant.")
    return tenant


# ---------- Serialization ----------
def serialize_organization(org: Organization) -> dict[str, Any]:
    return {
        "id": org.id,
        "name": org.name,
        "subscription_tier": org.subscription_tier,
        "max_locations": org.max_locations,
        "tenant_count": len(org.tenants),
    }


def serialize_tenant(tenant: Tenant) -> dict[str, Any]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "slug": tenant.slug,
        "subscription_tier": tenant.subscription_tier,
        "subscription_status": tenant.subscription_status,
        "trial_ends_at": iso(tenant.trial_ends_at),
        "subscription_ends_at": iso(tenant.subscription_ends_at),
        "organization_id": tenant.organization_id,
    }


def _tier_data(s: "Session", tier_key: str | None) -> dict[str, Any] | None:
    if not tier_key:
        return None
    tier = get_tier_by_key(s, tier_key)
    if tier is None:
        return fallback_tier_data(tier_key)
    return serialize_tier(tier)


def tier_info(s: "Session", tenant: Tenant) -> dict[str, Any]:
    org = tenant.organization
    tier_key = effective_tier(tenant)
    return {
        "tenant_id": tenant.id,
        "tenant_name": tenant.name,
        "tier": tier_key,
        "tier_display": catalog.get_tier_display_name(tier_key),
        "subscription_status": tenant.subscription_status,
        "trial_ends_at": iso(tenant.trial_ends_at),
        "subscription_ends_at": iso(tenant.subscription_ends_at),
        "maintenance_state": maintenance_state(tier_key, tenant.subscription_status, tenant.trial_ends_at),
        "is_chain": bool(org and len(org.tenants) > 1),
        "organization_id": org.id if org else None,
        "organization_name": org.name if org else None,
        "organization_tier": _tier_data(s, org.subscription_tier) if org else None,
        "tenant_tier": _tier_data(s, tenant.subscription_tier),
    }


# ---------- Tenants ----------
def validate_tenant_payload(s: "Session", payload: dict) -> list[str]:
    errors = []
    if not clean_str(payload.get("name")):
        errors.append("name is required.")
    tier = clean_str(payload.get("subscription_tier"))
    if tier and not is_known_tier(s, tier):
        errors.append(f"Unknown subscription_tier '{tier}'.")
    status = clean_str(payload.get("subscription_status"))
    if status and status not in SUBSCRIPTION_STATUSES:
        errors.append(f"Invalid subscription_status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
    return errors


def create_tenant(s: "Session", payload: dict, user: "User") -> Tenant:
    errors = validate_tenant_payload(s, payload)
    if errors:
        raise bad_request("validation_failed", " ".join(errors), errors=errors)

    name = clean_str(payload.get("name"))
    slug = slugify(clean_str(payload.get("slug")) or name)
    if s.query(Tenant).filter(Tenant.slug == slug).one_or_none() is not None:
        raise conflict("slug_taken", f"Tenant slug '{slug}' is already in use.")

    organization_id = parse_int(payload.get("organization_id"), "organization_id")
    if organization_id is not None and s.get(Organization, organization_id) is None:
        raise not_found("organization_not_found", "Organization not found")

    now = datetime.utcnow()
    tenant = Tenant(
        name=name,
        slug=slug,
        subscription_tier=clean_str(payload.get("subscription_tier")) or catalog.DEFAULT_TIER,
        subscription_status=clean_str(payload.get("subscription_status")) or "trial",
        trial_ends_at=parse_datetime(payload.get("trial_ends_at"), "trial_ends_at"),
        organization_id=organization_id,
        created_at=now,
        updated_at=now,
    )
    s.add(tenant)
    s.flush()

    owner_id = parse_int(payload.get("owner_user_id"), "owner_user_id") or user.id
    add_member(s, tenant, owner_id, "owner")

    record_event(
        s,
        actor=user,
        action="tenant.create",
        entity_type="Tenant",
        entity_id=str(tenant.id),
        metadata={"name": tenant.name, "tier": tenant.subscription_tier},
    )
    return tenant


def add_member(s: "Session", tenant: Tenant, user_id: int, role: str = "member") -> TenantMembership:
    from app.commerce.models import User

    if role not in MEMBERSHIP_ROLES:
        raise bad_request("validation_failed", f"Invalid role. Must be one of: {', '.join(MEMBERSHIP_ROLES)}")
    if s.get(User, user_id) is None:
        raise not_found("user_not_found", "User not found")
    existing = s.query(TenantMembership).filter_by(tenant_id=tenant.id, user_id=user_id).one_or_none()
    if existing:
        existing.role = role
        return existing
    m = TenantMembership(tenant_id=tenant.id, user_id=user_id, role=role)
    s.add(m)
    s.flush()
    return m


def update_tenant_profile(s: "Session", tenant: Tenant, payload: dict, user: "User") -> Tenant:
    """Rename a tenant; owners/admins of the tenant or tenants.manage only."""
    if not user_has_permission(user, TENANTS_MANAGE):
        m = membership_for(s, user, tenant.id)
        if m is None or m.role not in ("owner", "admin"):
            raise ApiError(403, "tenant_role_required", "Only tenant owners or admins can update the tenant.")
    name = clean_str(payload.get("name"))
    if not name:
        raise bad_request("validation_failed", "name is required.")
    if name != tenant.name:
        old = tenant.name
        tenant.name = name
        tenant.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="tenant.update",
            entity_type="Tenant",
            entity_id=str(tenant.id),
            metadata={"name": {"old": old, "new": name}},
        )
    return tenant


def update_subscription(s: "Session", tenant: Tenant, payload: dict, user: "User", reason: str | None = None) -> Tenant:
    changes = {}

    if "subscription_tier" in payload:
        tier = clean_str(payload.get("subscription_tier"))
        if not tier or not is_known_tier(s, tier):
            raise bad_request("invalid_tier", f"Unknown subscription_tier '{tier}'.")
        if tier != tenant.subscription_tier:
            changes["subscription_tier"] = {"old": tenant.subscription_tier, "new": tier}
            tenant.subscription_tier = tier

    if "subscription_status" in payload:
        status = clean_str(payload.get("subscription_status"))
        if status not in SUBSCRIPTION_STATUSES:
            raise bad_request(
                "invalid_status",
                f"Invalid subscription_status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}",
            )
        if status != tenant.subscription_status:
            changes["subscription_status"] = {"old": tenant.subscription_status, "new": status}
            tenant.subscription_status = status

    for field in ("trial_ends_at", "subscription_ends_at"):
        if field in payload:
            value = parse_datetime(payload.get(field), field)
            if value != getattr(tenant, field):
                changes[field] = {"old": iso(getattr(tenant, field)), "new": iso(value)}
                setattr(tenant, field, value)

    if changes:
        tenant.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="tenant.subscription_change",
            entity_type="Tenant",
            entity_id=str(tenant.id),
            reason=reason,
            metadata={"changes": changes},
        )
    return tenant


# ---------- Organizations ----------
def create_organization(s: "Session", payload: dict, user: "User") -> Organization:
    name = clean_str(payload.get("name"))
    if not name:
        raise bad_request("validation_failed", "name is required.")
    if s.query(Organization).filter(Organization.name == name).one_or_none() is not None:
        raise conflict("organization_exists", f"Organization '{name}' already exists.")
    tier = clean_str(payload.get("subscription_tier"))
    if tier and not is_known_tier(s, tier):
        raise bad_request("invalid_tier", f"Unknown subscription_tier '{tier}'.")

    org = Organization(
        name=name,
        subscription_tier=tier,
        max_locations=parse_int(payload.get("max_locations"), "max_locations"),
    )
    s.add(org)
    s.flush()
    record_event(
        s,
        actor=user,
        action="organization.create",
        entity_type="Organization",
        entity_id=str(org.id),
        metadata={"name": org.name, "tier": org.subscription_tier},
    )
    return org
