"""Tests for tier resolution, overrides and seeding."""
from datetime import datetime, timedelta

from app.commerce.db import session_scope
from app.commerce.models import User
from app.commerce.modules.tenants.models import Tenant
from app.commerce.modules.tiers.models import SubscriptionTier, TenantFeatureOverride, TierFeature
from app.commerce.modules.tiers.service import (
    check_tenant_feature_access,
    effective_tier,
    maintenance_state,
    resolve_tier_features,
    seed_tiers_from_catalog,
    tenant_feature_summary,
)

from conftest import make_organization, make_tenant


def test_seed_is_idempotent(app):
    with session_scope(app) as s:
        assert seed_tiers_from_catalog(s) == 8
    with session_scope(app) as s:
        assert seed_tiers_from_catalog(s) == 0
        starter = s.query(SubscriptionTier).filter_by(tier_key="starter").one()
        inherited = {f.feature_key for f in starter.features if f.is_inherited}
        own = {f.feature_key for f in starter.features if not f.is_inherited}
        assert "google_shopping" in inherited
        assert "storefront" in own
        assert starter.price_monthly == 49


def test_resolve_falls_back_to_catalog_without_rows(app):
    with session_scope(app) as s:
        features = resolve_tier_features(s, "professional")
    assert "quick_start_wizard" in features
    assert "storefront" in features


def test_db_row_wins_over_catalog(app):
    with session_scope(app) as s:
        seed_tiers_from_catalog(s)
    with session_scope(app) as s:
        starter = s.query(SubscriptionTier).filter_by(tier_key="starter").one()
        for f in starter.features:
            if f.feature_key == "storefront":
                f.is_enabled = False
        starter.features.append(TierFeature(feature_key="loyalty_points", feature_name="Loyalty Points"))
    with session_scope(app) as s:
        features = resolve_tier_features(s, "starter")
    assert "storefront" not in features
    assert "loyalty_points" in features


def test_organization_tier_wins(app):
    org_id = make_organization(app, tier="chain_professional")
    tenant_id = make_tenant(app, tier="starter", organization_id=org_id)
    with session_scope(app) as s:
        tenant = s.get(Tenant, tenant_id)
        assert effective_tier(tenant) == "chain_professional"
        assert check_tenant_feature_access(s, tenant, "quick_start_wizard").has_access is True


def test_tenant_without_tier_uses_default(app):
    tenant_id = make_tenant(app, tier=None)
    with session_scope(app) as s:
        assert effective_tier(s.get(Tenant, tenant_id)) == "starter"


def test_override_grants_and_revokes(app):
    tenant_id = make_tenant(app, tier="starter")
    with session_scope(app) as s:
        admin_id = s.query(User).filter_by(email="admin@example.com").one().id
        s.add(TenantFeatureOverride(tenant_id=tenant_id, feature="quick_start_wizard", granted=True, granted_by_user_id=admin_id))
        s.add(TenantFeatureOverride(tenant_id=tenant_id, feature="storefront", granted=False, granted_by_user_id=admin_id))

    with session_scope(app) as s:
        tenant = s.get(Tenant, tenant_id)
        granted = check_tenant_feature_access(s, tenant, "quick_start_wizard")
        assert granted.has_access is True
        assert granted.source == "override"
        revoked = check_tenant_feature_access(s, tenant, "storefront")
        assert revoked.has_access is False
        assert revoked.source == "override"
        plain = check_tenant_feature_access(s, tenant, "product_search")
        assert (plain.has_access, plain.source) == (True, "tier")
        missing = check_tenant_feature_access(s, tenant, "api_access")
        assert (missing.has_access, missing.source) == (False, "none")

        summary = tenant_feature_summary(s, tenant)
        assert "quick_start_wizard" in summary["features"]
        assert "storefront" not in summary["features"]
        assert summary["granted_overrides"] == ["quick_start_wizard"]
        assert summary["revoked_overrides"] == ["storefront"]


def test_expired_override_is_ignored(app):
    tenant_id = make_tenant(app, tier="starter")
    with session_scope(app) as s:
        s.add(
            TenantFeatureOverride(
                tenant_id=tenant_id,
                feature="api_access",
                granted=True,
                expires_at=datetime.utcnow() - timedelta(days=1),
            )
        )
    with session_scope(app) as s:
        access = check_tenant_feature_access(s, s.get(Tenant, tenant_id), "api_access")
    assert access.has_access is False
    assert access.source == "none"


def test_latest_override_wins(app):
    tenant_id = make_tenant(app, tier="starter")
    earlier = datetime.utcnow() - timedelta(hours=1)
    with session_scope(app) as s:
        s.add(TenantFeatureOverride(tenant_id=tenant_id, feature="api_access", granted=True, created_at=earlier))
        s.add(TenantFeatureOverride(tenant_id=tenant_id, feature="api_access", granted=False))
    with session_scope(app) as s:
        access = check_tenant_feature_access(s, s.get(Tenant, tenant_id), "api_access")
    assert access.has_access is False


def test_maintenance_state():
    now = datetime(2024, 6, 1)
    assert maintenance_state("starter", "active", None, now) == "active"
    assert maintenance_state("google_only", "active", None, now) == "maintenance"
    assert maintenance_state("starter", "canceled", None, now) == "freeze"
    assert maintenance_state("professional", "expired", None, now) == "freeze"
    assert maintenance_state("starter", "trial", now - timedelta(days=1), now) == "freeze"
    assert maintenance_state("starter", "trial", now + timedelta(days=1), now) == "active"
    assert maintenance_state("starter", None, None, now) == "active"


def test_inactive_tier_row_falls_back_to_catalog(app):
    with session_scope(app) as s:
        s.add(SubscriptionTier(tier_key="starter", name="starter", display_name="Starter", is_active=False))
    with session_scope(app) as s:
        features = resolve_tier_features(s, "starter")
    assert "storefront" in features
