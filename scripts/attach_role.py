#!/usr/bin/env python3
"""Attach a role to a user (idempotent).

Usage:
  python scripts/attach_role.py --email owner@example.com --role tenant_user
"""

import sys
import os
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.commerce.models import User, Role
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", default="platform_admin", help="Role key (default: platform_admin)")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///commerce.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print(f"Role not found: {args.role}. Run python scripts/init_db.py first.")
            return
        if role in (user.roles or []):
            print(f"User already has role {args.role}: {args.email}")
            return
        user.roles.append(role)
        print(f"Role {args.role} attached to {args.email}")


if __name__ == "__main__":
    main()
