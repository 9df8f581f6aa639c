"""
GDPR data-subject rights.

- Append-only consent log (latest record per type wins)
- Bulk preferences view/update
- JSON data exports written through app storage
- Right to erasure (/api/gdpr/data-delete)
"""
