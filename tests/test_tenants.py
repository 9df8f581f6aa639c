"""Tests for tenant, membership and organization endpoints."""
from conftest import login, make_organization, make_tenant, user_id


def test_tenant_list_is_scoped_to_memberships(app, client):
    make_tenant(app, "Corner Store")
    make_tenant(app, "Other Store", owner_email="other@example.com")

    login(client, "owner@example.com")
    assert [t["name"] for t in client.get("/api/tenants").json["tenants"]] == ["Corner Store"]

    login(client)
    assert len(client.get("/api/tenants").json["tenants"]) == 2


def test_create_tenant(app, client):
    token = login(client, "owner@example.com")
    r = client.post("/api/tenants", json={"name": "New Shop"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 403

    token = login(client)
    h = {"X-CSRF-Token": token}
    r = client.post("/api/tenants", json={"name": "New Shop", "subscription_tier": "professional"}, headers=h)
    assert r.status_code == 201
    tenant = r.json["tenant"]
    assert tenant["slug"] == "new-shop"
    assert tenant["subscription_status"] == "trial"
    assert tenant["subscription_tier"] == "professional"

    r = client.post("/api/tenants", json={"name": "New Shop"}, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "slug_taken"

    r = client.post("/api/tenants", json={"name": "Odd Shop", "subscription_tier": "platinum"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "validation_failed"

    # creator becomes owner
    assert tenant["id"] in client.get("/auth/me").json["user"]["tenant_ids"]


def test_add_member_grants_access(app, client):
    tenant_id = make_tenant(app)
    other_id = user_id(app, "other@example.com")

    login(client, "other@example.com")
    r = client.get(f"/api/tenants/{tenant_id}/tier")
    assert r.status_code == 403
    assert r.json["error"] == "tenant_access_denied"

    token = login(client)
    r = client.post(
        f"/api/tenants/{tenant_id}/members",
        json={"user_id": other_id, "role": "member"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201
    assert r.json["membership"]["role"] == "member"

    r = client.post(
        f"/api/tenants/{tenant_id}/members",
        json={"user_id": other_id, "role": "boss"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 400

    r = client.post(f"/api/tenants/{tenant_id}/members", json={"role": "member"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 400
    assert r.json["error"] == "user_id_required"

    login(client, "other@example.com")
    assert client.get(f"/api/tenants/{tenant_id}/tier").status_code == 200


def test_tier_info(app, client):
    org_id = make_organization(app, tier="chain_starter")
    tenant_id = make_tenant(app, "Store One", organization_id=org_id)
    make_tenant(app, "Store Two", organization_id=org_id)

    login(client, "owner@example.com")
    r = client.get(f"/api/tenants/{tenant_id}/tier")
    assert r.status_code == 200
    info = r.json
    assert info["tier"] == "chain_starter"
    assert info["tier_display"] == "Chain Starter"
    assert info["is_chain"] is True
    assert info["organization_name"] == "Main Street Group"
    assert info["organization_tier"]["tier_key"] == "chain_starter"
    assert info["tenant_tier"]["tier_key"] == "starter"
    assert info["maintenance_state"] == "active"

    assert client.get("/api/tenants/9999/tier").status_code == 404


def test_public_tier_needs_no_login(app, client):
    tenant_id = make_tenant(app, tier="google_only")
    r = client.get(f"/api/tenants/{tenant_id}/tier/public")
    assert r.status_code == 200
    assert r.json["tier"] == "google_only"
    assert "google_shopping" in r.json["features"]
    assert "storefront" not in r.json["features"]


def test_update_subscription(app, client):
    tenant_id = make_tenant(app)
    token = login(client)
    h = {"X-CSRF-Token": token}

    r = client.patch(
        f"/api/tenants/{tenant_id}/tier",
        json={"subscription_tier": "professional", "subscription_status": "past_due", "reason": "upgrade"},
        headers=h,
    )
    assert r.status_code == 200
    assert r.json["tier"] == "professional"
    assert r.json["subscription_status"] == "past_due"

    r = client.patch(f"/api/tenants/{tenant_id}/tier", json={"subscription_tier": "platinum"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "invalid_tier"

    r = client.patch(f"/api/tenants/{tenant_id}/tier", json={"subscription_status": "paused"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "invalid_status"

    r = client.patch(
        f"/api/tenants/{tenant_id}/tier",
        json={"subscription_status": "canceled"},
        headers=h,
    )
    assert r.json["maintenance_state"] == "freeze"


def test_feature_summary_and_check(app, client):
    tenant_id = make_tenant(app)
    login(client, "owner@example.com")

    r = client.get(f"/api/tenants/{tenant_id}/features")
    assert r.status_code == 200
    assert r.json["tier"] == "starter"
    assert "storefront" in r.json["features"]
    assert r.json["granted_overrides"] == []

    r = client.get(f"/api/tenants/{tenant_id}/features/category_quick_start")
    assert r.json["has_access"] is True
    assert r.json["source"] == "tier"
    assert r.json["limits"]["max_categories"] == 15
    assert r.json["upgrade"] == {"required": False}

    r = client.get(f"/api/tenants/{tenant_id}/features/api_access")
    assert r.json["has_access"] is False
    assert r.json["limits"] is None
    assert r.json["upgrade"]["target_tier"] == "enterprise"


def test_organizations(app, client):
    assert client.get("/api/organizations").status_code == 401

    token = login(client)
    h = {"X-CSRF-Token": token}
    r = client.post("/api/organizations", json={"name": "Harbor Group", "subscription_tier": "organization"}, headers=h)
    assert r.status_code == 201
    assert r.json["organization"]["tenant_count"] == 0

    r = client.post("/api/organizations", json={"name": "Harbor Group"}, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "organization_exists"

    r = client.post("/api/organizations", json={"name": "Bad Tier", "subscription_tier": "platinum"}, headers=h)
    assert r.status_code == 400

    login(client, "owner@example.com")
    r = client.get("/api/organizations?q=harbor")
    assert [o["name"] for o in r.json["organizations"]] == ["Harbor Group"]
