import pytest
from werkzeug.security import generate_password_hash

from app.commerce import create_app
from app.commerce import auth as auth_module
from app.commerce.db import session_scope
from app.commerce.models import Base, Permission, Role, User
from app.commerce.modules.tenants.models import Organization, Tenant, TenantMembership

ALL_PERMISSIONS = (
    ("tiers.view", "Tiers: view"),
    ("tiers.manage", "Tiers: manage catalog and overrides"),
    ("tiers.audit", "Tiers: view tenant overrides and change logs"),
    ("tenants.view", "Tenants: view"),
    ("tenants.manage", "Tenants: manage all tenants"),
    ("organizations.request", "Organizations: submit join/leave requests"),
    ("organizations.manage", "Organizations: process requests"),
    ("analytics.view", "Analytics: view behavior analytics"),
    ("gdpr.manage", "GDPR: review account deletion requests"),
    ("platform.support", "Platform: support access (bypasses tier gates)"),
)

TENANT_USER_PERMISSIONS = ("tiers.view", "tenants.view", "organizations.request")


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("TRACKING_API_BASE_URL", "http://tracking.invalid")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = {}
        for key, name in ALL_PERMISSIONS:
            p = Permission(key=key, name=name)
            s.add(p)
            perms[key] = p
        admin_role = Role(key="platform_admin", name="Platform Administrator")
        admin_role.permissions.extend(perms.values())
        tenant_role = Role(key="tenant_user", name="Tenant User")
        tenant_role.permissions.extend(perms[k] for k in TENANT_USER_PERMISSIONS)

        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(admin_role)
        owner = User(email="owner@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        owner.roles.append(tenant_role)
        other = User(email="other@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        other.roles.append(tenant_role)
        s.add_all([admin_role, tenant_role, admin, owner, other])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email="admin@example.com", password="pw") -> str:
    """Log in and return the session CSRF token."""
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return r.json["csrf_token"]


def user_id(app, email: str) -> int:
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one().id


def make_tenant(
    app,
    name="Corner Store",
    *,
    tier="starter",
    status="active",
    owner_email="owner@example.com",
    role="owner",
    trial_ends_at=None,
    organization_id=None,
) -> int:
    with session_scope(app) as s:
        slug = name.lower().replace(" ", "-")
        t = Tenant(
            name=name,
            slug=slug,
            subscription_tier=tier,
            subscription_status=status,
            trial_ends_at=trial_ends_at,
            organization_id=organization_id,
        )
        s.add(t)
        s.flush()
        if owner_email:
            u = s.query(User).filter(User.email == owner_email).one()
            s.add(TenantMembership(tenant_id=t.id, user_id=u.id, role=role))
        return t.id


def make_organization(app, name="Main Street Group", *, tier=None) -> int:
    with session_scope(app) as s:
        org = Organization(name=name, subscription_tier=tier)
        s.add(org)
        s.flush()
        return org.id
