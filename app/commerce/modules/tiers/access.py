"""
Tier-based feature gates for route handlers.

Usage:
    @bp.post("/tenants/<int:tenant_id>/quick-start")
    @require_permission(...)
    @require_tier_feature("quick_start_wizard")
    def quick_start(tenant_id): ...
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import g, request

from app.commerce.db import db_session
from app.commerce.errors import ApiError, bad_request, not_found
from app.commerce.modules.tenants.models import Tenant
from app.commerce.modules.tenants.service import get_accessible_tenant
from app.commerce.modules.tiers import catalog
from app.commerce.modules.tiers.service import (
    check_tenant_feature_access,
    effective_tier,
    feature_denied_error,
    is_subscription_inactive,
    maintenance_state,
)
from app.commerce.rbac import PLATFORM_SUPPORT, user_has_permission

logger = logging.getLogger(__name__)


def _tenant_id_from_request(view_kwargs: dict[str, Any]) -> Any:
    for key in ("tenant_id", "id"):
        if view_kwargs.get(key) is not None:
            return view_kwargs[key]
    body = request.get_json(silent=True) if request.is_json else None
    if isinstance(body, dict):
        for key in ("tenant_id", "tenantId"):
            if body.get(key) is not None:
                return body[key]
    return request.args.get("tenant_id") or request.args.get("tenantId")


def _load_tenant(view_kwargs: dict[str, Any]) -> Tenant:
    raw = _tenant_id_from_request(view_kwargs)
    if raw is None or raw == "":
        raise bad_request("tenantId_required", "Tenant ID is required for feature access check")
    try:
        tenant_id = int(raw)
    except (TypeError, ValueError):
        raise bad_request("tenantId_required", "Tenant ID must be an integer")
    user = getattr(g, "current_user", None)
    if user is not None:
        # membership first, so tier details never reach non-members
        return get_accessible_tenant(db_session(), user, tenant_id)
    tenant = db_session().get(Tenant, tenant_id)
    if tenant is None:
        raise not_found("tenant_not_found", "Tenant not found")
    return tenant


def _bypasses_tiers() -> bool:
    return user_has_permission(getattr(g, "current_user", None), PLATFORM_SUPPORT)


def _ensure_subscription_active(tenant: Tenant) -> None:
    if is_subscription_inactive(tenant.subscription_status):
        raise ApiError(
            403,
            "subscription_inactive",
            "Your subscription is inactive. Please renew to access features.",
            subscription_status=tenant.subscription_status,
        )


def require_tier_feature(feature: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            if _bypasses_tiers():
                return fn(*args, **kwargs)
            tenant = _load_tenant(kwargs)
            _ensure_subscription_active(tenant)

            access = check_tenant_feature_access(db_session(), tenant, feature)
            if not access.has_access:
                raise feature_denied_error(tenant, feature)

            g.feature_access = {"feature": feature, "source": access.source}
            if access.source == "override":
                logger.info(
                    "Feature override used: %s for tenant %s (reason: %s)",
                    feature,
                    tenant.id,
                    (access.override.reason if access.override else None) or "none",
                )
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_any_tier_feature(features: Iterable[str]) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    features = tuple(features)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            if _bypasses_tiers():
                return fn(*args, **kwargs)
            tenant = _load_tenant(kwargs)
            _ensure_subscription_active(tenant)

            s = db_session()
            if not any(check_tenant_feature_access(s, tenant, f).has_access for f in features):
                current = effective_tier(tenant)
                raise ApiError(
                    403,
                    "feature_not_available",
                    "This feature requires a higher tier",
                    features=list(features),
                    current_tier=current,
                    current_tier_display=catalog.get_tier_display_name(current),
                    upgrade_url=catalog.UPGRADE_URL,
                )
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_writable_subscription(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        tenant = _load_tenant(kwargs)
        tier = effective_tier(tenant)
        status = tenant.subscription_status or "active"
        state = maintenance_state(tier, status, tenant.trial_ends_at)
        if state == "freeze":
            raise ApiError(
                403,
                "subscription_read_only",
                "Your account is in read-only visibility mode. Upgrade to add or update products or sync new changes.",
                subscription_tier=tier,
                subscription_status=status,
                maintenance_state=state,
                upgrade_url=catalog.UPGRADE_URL,
            )
        return fn(*args, **kwargs)

    return wrapped
