"""
Tenants module.

- Tenants (stores), organizations (chains) and user memberships
- Effective tier lookup for dashboards (/api/tenants/<id>/tier)
- Platform-side subscription changes
"""
