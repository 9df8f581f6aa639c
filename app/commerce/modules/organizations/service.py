from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.commerce.audit import record_event
from app.commerce.errors import ApiError, bad_request, conflict, not_found
from app.commerce.modules.organizations.models import REQUEST_TYPES, OrganizationRequest
from app.commerce.modules.tenants.models import Organization, Tenant, TenantMembership
from app.commerce.modules.tenants.service import get_accessible_tenant
from app.commerce.rbac import user_has_permission
from app.commerce.utils import clean_str, iso, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.commerce.models import User

ORGANIZATIONS_MANAGE = "organizations.manage"

_ADMIN_FIELDS = ("estimated_cost", "cost_currency", "admin_notes", "status")
_TENANT_FIELDS = ("cost_agreed", "notes")
_ADMIN_DECISIONS = ("approved", "rejected")


def is_org_admin(user: "User | None") -> bool:
    return user_has_permission(user, ORGANIZATIONS_MANAGE)


def serialize_request(r: OrganizationRequest) -> dict[str, Any]:
    return {
        "id": r.id,
        "tenant_id": r.tenant_id,
        "tenant_name": r.tenant.name if r.tenant else None,
        "organization_id": r.organization_id,
        "organization": {"id": r.organization.id, "name": r.organization.name} if r.organization else None,
        "requested_by_user_id": r.requested_by_user_id,
        "status": r.status,
        "request_type": r.request_type,
        "estimated_cost": r.estimated_cost,
        "cost_currency": r.cost_currency,
        "cost_agreed": r.cost_agreed,
        "cost_agreed_at": iso(r.cost_agreed_at),
        "notes": r.notes,
        "admin_notes": r.admin_notes,
        "processed_by_user_id": r.processed_by_user_id,
        "processed_at": iso(r.processed_at),
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }


def pending_request_for_tenant(s: "Session", tenant_id: int) -> OrganizationRequest | None:
    return (
        s.query(OrganizationRequest)
        .filter(OrganizationRequest.tenant_id == tenant_id, OrganizationRequest.status == "pending")
        .first()
    )


def create_request(s: "Session", payload: dict, user: "User") -> OrganizationRequest:
    tenant_id = parse_int(payload.get("tenant_id"), "tenant_id")
    organization_id = parse_int(payload.get("organization_id"), "organization_id")
    if tenant_id is None:
        raise bad_request("tenantId_required", "tenant_id is required.")
    if organization_id is None:
        raise bad_request("organizationId_required", "organization_id is required.")

    tenant = get_accessible_tenant(s, user, tenant_id)
    org = s.get(Organization, organization_id)
    if org is None:
        raise not_found("organization_not_found", "Organization not found")

    request_type = clean_str(payload.get("request_type")) or "join"
    if request_type not in REQUEST_TYPES:
        raise bad_request("invalid_request_type", f"request_type must be one of: {', '.join(REQUEST_TYPES)}")
    if request_type == "join" and tenant.organization_id == org.id:
        raise bad_request("already_member", "This location already belongs to that organization.")
    if request_type == "leave" and tenant.organization_id != org.id:
        raise bad_request("not_member", "This location does not belong to that organization.")

    if pending_request_for_tenant(s, tenant.id) is not None:
        raise conflict("request_pending", "This location already has a pending organization request.")

    now = datetime.utcnow()
    req = OrganizationRequest(
        tenant_id=tenant.id,
        organization_id=org.id,
        requested_by_user_id=user.id,
        status="pending",
        request_type=request_type,
        notes=clean_str(payload.get("notes")),
        created_at=now,
        updated_at=now,
    )
    s.add(req)
    s.flush()

    record_event(
        s,
        actor=user,
        action="organization_request.create",
        entity_type="OrganizationRequest",
        entity_id=str(req.id),
        metadata={"tenant_id": tenant.id, "organization_id": org.id, "request_type": request_type},
    )
    return req


def list_requests(
    s: "Session", user: "User", *, tenant_id: int | None = None, status: str | None = None
) -> list[OrganizationRequest]:
    q = s.query(OrganizationRequest)
    if not is_org_admin(user):
        member_tenants = s.query(TenantMembership.tenant_id).filter(TenantMembership.user_id == user.id)
        q = q.filter(OrganizationRequest.tenant_id.in_(member_tenants))
    if tenant_id is not None:
        q = q.filter(OrganizationRequest.tenant_id == tenant_id)
    if status:
        q = q.filter(OrganizationRequest.status == status)
    return q.order_by(OrganizationRequest.created_at.desc(), OrganizationRequest.id.desc()).all()


def get_request_for_user(s: "Session", user: "User", request_id: int) -> OrganizationRequest:
    req = s.get(OrganizationRequest, request_id)
    if req is None:
        raise not_found("request_not_found", "Organization request not found")
    if not is_org_admin(user):
        get_accessible_tenant(s, user, req.tenant_id)
    return req


def _apply_decision(s: "Session", req: OrganizationRequest) -> None:
    tenant = s.get(Tenant, req.tenant_id)
    if tenant is None:
        raise not_found("tenant_not_found", "Tenant not found")
    if req.request_type == "join":
        tenant.organization_id = req.organization_id
    elif tenant.organization_id == req.organization_id:
        tenant.organization_id = None
    tenant.updated_at = datetime.utcnow()


def update_request(s: "Session", req: OrganizationRequest, payload: dict, user: "User") -> OrganizationRequest:
    if req.status != "pending":
        raise conflict("request_closed", f"This request is already {req.status}.")

    admin = is_org_admin(user)
    if not admin and any(f in payload for f in _ADMIN_FIELDS):
        raise ApiError(403, "forbidden", "Only platform admins can change cost, notes or status.")
    if not any(f in payload for f in _ADMIN_FIELDS + _TENANT_FIELDS):
        raise bad_request("invalid_request", "Nothing to update.")

    now = datetime.utcnow()
    changes: dict[str, Any] = {}

    if "estimated_cost" in payload:
        cost = parse_float(payload.get("estimated_cost"), "estimated_cost")
        if cost is not None and cost < 0:
            raise bad_request("invalid_request", "estimated_cost must not be negative.")
        if cost != req.estimated_cost:
            changes["estimated_cost"] = {"old": req.estimated_cost, "new": cost}
            req.estimated_cost = cost
            # A new quote needs a fresh agreement.
            req.cost_agreed = False
            req.cost_agreed_at = None

    if "cost_currency" in payload:
        currency = (clean_str(payload.get("cost_currency")) or "USD").upper()
        if len(currency) != 3:
            raise bad_request("invalid_request", "cost_currency must be a 3-letter code.")
        req.cost_currency = currency

    if "admin_notes" in payload:
        req.admin_notes = clean_str(payload.get("admin_notes"))

    if "notes" in payload:
        req.notes = clean_str(payload.get("notes"))

    if "cost_agreed" in payload:
        agreed = payload.get("cost_agreed")
        if not isinstance(agreed, bool):
            raise bad_request("invalid_request", "cost_agreed must be a boolean.")
        if agreed and req.estimated_cost is None:
            raise conflict("no_cost_quoted", "There is no estimated cost to agree to yet.")
        if agreed != req.cost_agreed:
            changes["cost_agreed"] = {"old": req.cost_agreed, "new": agreed}
            req.cost_agreed = agreed
            req.cost_agreed_at = now if agreed else None

    if "status" in payload:
        status = clean_str(payload.get("status"))
        if status not in _ADMIN_DECISIONS:
            raise bad_request("invalid_status", f"status must be one of: {', '.join(_ADMIN_DECISIONS)}")
        if status == "approved":
            if req.estimated_cost is not None and not req.cost_agreed:
                raise conflict("cost_not_agreed", "The tenant has not agreed to the estimated cost yet.")
            _apply_decision(s, req)
        changes["status"] = {"old": req.status, "new": status}
        req.status = status
        req.processed_by_user_id = user.id
        req.processed_at = now

    req.updated_at = now
    record_event(
        s,
        actor=user,
        action="organization_request.update",
        entity_type="OrganizationRequest",
        entity_id=str(req.id),
        metadata={"changes": changes} if changes else None,
    )
    return req


def cancel_request(s: "Session", req: OrganizationRequest, user: "User") -> OrganizationRequest:
    if req.status != "pending":
        raise conflict("request_closed", f"This request is already {req.status}.")
    req.status = "cancelled"
    req.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="organization_request.cancel",
        entity_type="OrganizationRequest",
        entity_id=str(req.id),
    )
    return req
