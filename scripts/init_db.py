import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.commerce.models import Permission, Role, User
from app.commerce.modules.tiers.service import seed_tiers_from_catalog
from scripts._db_utils import script_session

PERMISSIONS = (
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

ROLES = {
    "platform_admin": ("Platform Administrator", [key for key, _ in PERMISSIONS]),
    "platform_support": (
        "Platform Support",
        ["tiers.view", "tiers.audit", "tenants.view", "analytics.view", "platform.support"],
    ),
    "tenant_user": ("Tenant User", ["tiers.view", "tenants.view", "organizations.request"]),
}


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user and the default tier catalog in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///commerce.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for role_key, (role_name, perm_keys) in ROLES.items():
            role = s.query(Role).filter(Role.key == role_key).one_or_none()
            if not role:
                role = Role(key=role_key, name=role_name)
                s.add(role)
            for k in perm_keys:
                if perms[k] not in role.permissions:
                    role.permissions.append(perms[k])
            roles[role_key] = role

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if roles["platform_admin"] not in user.roles:
            user.roles.append(roles["platform_admin"])

        created = seed_tiers_from_catalog(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"Tiers created from catalog: {created}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
