"""
Tier system module.

- Static tier catalog (fallback + seed data)
- DB-driven tiers and features, with per-tenant overrides
- Route decorators that gate features by the tenant's effective tier
- Admin JSON API under /api/admin/tier-system
"""
