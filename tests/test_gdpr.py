"""Tests for consent management, data export and erasure."""
import json
import logging
from datetime import datetime, timedelta

from app.commerce.db import session_scope
from app.commerce.models import AuditEvent, User
from app.commerce.modules.gdpr.models import AccountDeletionRequest, ConsentRecord, DataExport
from app.commerce.modules.tenants.models import TenantMembership
from app.commerce.modules.tracking.models import BehaviorEvent, TrackingSessionRecord
from app.commerce.storage import LocalStorage

from conftest import login, make_tenant, user_id

BASE = "/api/gdpr"


def test_gdpr_requires_login(client):
    assert client.get(f"{BASE}/consents").status_code == 401
    assert client.get(f"{BASE}/preferences").status_code == 401


def test_record_and_list_consents(app, client):
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token, "User-Agent": "pytest-agent"}

    r = client.post(f"{BASE}/consents", json={"type": "marketing", "consented": True}, headers=h)
    assert r.status_code == 201
    consent = r.json["consent"]
    assert consent["type"] == "marketing"
    assert consent["consented"] is True
    assert consent["source"] == "web"
    assert consent["user_agent"] == "pytest-agent"

    client.post(f"{BASE}/consents", json={"type": "marketing", "consented": False, "source": "mobile"}, headers=h)

    r = client.get(f"{BASE}/consents")
    history = r.json["consents"]
    assert [c["consented"] for c in history] == [False, True]

    r = client.get(f"{BASE}/has-consent?type=marketing")
    assert r.json == {"success": True, "type": "marketing", "has_consent": False}


def test_consent_validation(client):
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}
    r = client.post(f"{BASE}/consents", json={"type": "telepathy", "consented": True}, headers=h)
    assert r.status_code == 400
    assert "analytics" in r.json["allowed"]

    r = client.post(f"{BASE}/consents", json={"type": "marketing", "consented": "yes"}, headers=h)
    assert r.status_code == 400

    r = client.post(f"{BASE}/consents", json={"type": "marketing", "consented": True, "source": "fax"}, headers=h)
    assert r.status_code == 400

    assert client.get(f"{BASE}/has-consent").status_code == 400


def test_preferences_only_record_changes(app, client):
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}

    r = client.get(f"{BASE}/preferences")
    prefs = r.json["preferences"]
    assert prefs["analytics"] is None
    assert set(prefs) >= {"marketing", "analytics", "cookies"}

    r = client.put(f"{BASE}/preferences", json={"preferences": {"analytics": True, "marketing": False}}, headers=h)
    assert r.status_code == 200
    assert r.json["preferences"]["analytics"] is True
    assert r.json["preferences"]["marketing"] is False

    # flat body, analytics unchanged
    r = client.put(f"{BASE}/preferences", json={"analytics": True, "cookies": True}, headers=h)
    assert r.json["preferences"]["cookies"] is True

    with session_scope(app) as s:
        assert s.query(ConsentRecord).count() == 3

    r = client.put(f"{BASE}/preferences", json={"preferences": {}}, headers=h)
    assert r.status_code == 400
    r = client.put(f"{BASE}/preferences", json={"preferences": {"analytics": "on"}}, headers=h)
    assert r.status_code == 400


def test_export_and_download(app, client, tmp_path):
    make_tenant(app)
    owner_id = user_id(app, "owner@example.com")
    with session_scope(app) as s:
        s.add(BehaviorEvent(event_type="page_view", priority="normal", user_id=owner_id, url="/stores/1"))

    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}
    client.post(f"{BASE}/consents", json={"type": "analytics", "consented": True}, headers=h)

    r = client.post(f"{BASE}/export", json={}, headers=h)
    assert r.status_code == 201
    export = r.json["export"]
    assert export["status"] == "completed"
    assert export["format"] == "json"
    assert export["size_bytes"] > 0
    assert export["download_url"] == f"/api/gdpr/export/{export['id']}/download"

    stored = tmp_path / "storage" / "gdpr-exports" / f"user-{owner_id}" / f"export-{export['id']}.json"
    assert stored.exists()

    r = client.get(export["download_url"])
    assert r.status_code == 200
    doc = json.loads(r.data)
    assert doc["user_id"] == owner_id
    assert doc["data"]["profile"]["email"] == "owner@example.com"
    assert doc["data"]["tenants"][0]["role"] == "owner"
    assert doc["data"]["consents"][0]["type"] == "analytics"
    assert doc["data"]["tracking_events"][0]["url"] == "/stores/1"
    r.close()

    r = client.get(f"{BASE}/exports")
    assert [e["id"] for e in r.json["exports"]] == [export["id"]]

    r = client.post(f"{BASE}/export", json={"format": "csv"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "invalid_format"


def test_export_download_is_owner_only(app, client):
    token = login(client, "owner@example.com")
    export_id = client.post(f"{BASE}/export", json={}, headers={"X-CSRF-Token": token}).json["export"]["id"]

    login(client, "other@example.com")
    r = client.get(f"{BASE}/export/{export_id}/download")
    assert r.status_code == 404
    assert r.json["error"] == "export_not_found"


def test_expired_and_pending_exports(app, client):
    owner_id = user_id(app, "owner@example.com")
    with session_scope(app) as s:
        expired = DataExport(
            user_id=owner_id,
            status="completed",
            format="json",
            storage_key="gdpr-exports/old.json",
            requested_at=datetime.utcnow() - timedelta(days=10),
            completed_at=datetime.utcnow() - timedelta(days=10),
            expires_at=datetime.utcnow() - timedelta(days=3),
        )
        pending = DataExport(user_id=owner_id, status="pending", format="json", requested_at=datetime.utcnow())
        s.add_all([expired, pending])
        s.flush()
        expired_id, pending_id = expired.id, pending.id

    login(client, "owner@example.com")
    r = client.get(f"{BASE}/export/{expired_id}/download")
    assert r.status_code == 410
    assert r.json["error"] == "export_expired"
    r = client.get(f"{BASE}/export/{pending_id}/download")
    assert r.status_code == 409
    assert r.json["error"] == "export_not_ready"


def test_data_delete(app, client, tmp_path):
    tenant_id = make_tenant(app)
    owner_id = user_id(app, "owner@example.com")
    with session_scope(app) as s:
        s.add(BehaviorEvent(event_type="click", priority="normal", user_id=owner_id))
        s.add(TrackingSessionRecord(session_id="sess-owner", user_id=owner_id, started_at=datetime.utcnow()))

    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}
    client.post(f"{BASE}/consents", json={"type": "analytics", "consented": True}, headers=h)
    export_id = client.post(f"{BASE}/export", json={}, headers=h).json["export"]["id"]
    stored = tmp_path / "storage" / "gdpr-exports" / f"user-{owner_id}" / f"export-{export_id}.json"
    assert stored.exists()

    r = client.delete(f"{BASE}/data-delete", json={}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "confirmation_required"

    r = client.delete(f"{BASE}/data-delete", json={"confirm": True}, headers=h)
    assert r.status_code == 200
    assert r.json["deleted"] == {
        "exports": 1,
        "consents": 1,
        "tracking_events": 1,
        "tracking_sessions": 1,
        "memberships": 1,
    }
    assert not stored.exists()

    # logged out, and cannot log back in
    assert client.get("/auth/me").status_code == 401
    r = client.post("/auth/login", json={"email": "owner@example.com", "password": "pw"})
    assert r.status_code == 401

    with session_scope(app) as s:
        u = s.get(User, owner_id)
        assert u.email == f"deleted-user-{owner_id}@deleted.invalid"
        assert u.is_active is False
        assert u.roles == []
        assert s.query(TenantMembership).filter_by(tenant_id=tenant_id).count() == 0
        assert s.query(BehaviorEvent).filter_by(user_id=owner_id).count() == 0
        ev = s.query(AuditEvent).filter(AuditEvent.action == "gdpr.data_delete").one()
        assert ev.actor_user_id is None
        assert ev.entity_id == str(owner_id)


def test_export_files_are_purged_after_erasure_commits(app, client, monkeypatch, caplog):
    owner_id = user_id(app, "owner@example.com")
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}
    export_id = client.post(f"{BASE}/export", json={}, headers=h).json["export"]["id"]

    seen = []

    def failing_delete(self, key):
        with session_scope(app) as s:
            seen.append((key, s.get(User, owner_id).is_active))
        raise OSError("disk unavailable")

    monkeypatch.setattr(LocalStorage, "delete", failing_delete)
    with caplog.at_level(logging.ERROR):
        r = client.delete(f"{BASE}/data-delete", json={"confirm": True}, headers=h)

    # the erasure is already committed when the file goes, and a storage error does not undo it
    assert r.status_code == 200
    assert seen == [(f"gdpr-exports/user-{owner_id}/export-{export_id}.json", False)]
    assert "Could not delete GDPR export file" in caplog.text
    with session_scope(app) as s:
        assert s.query(DataExport).filter_by(user_id=owner_id).count() == 0


def test_account_deletion_request_and_cancel(app, client):
    owner_id = user_id(app, "owner@example.com")
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token, "User-Agent": "pytest-agent"}

    r = client.get(f"{BASE}/delete/status")
    assert r.json == {"success": True, "has_pending_request": False, "request": None}

    r = client.post(f"{BASE}/delete", json={"password": "pw"}, headers=h)
    assert r.status_code == 400
    assert r.json["error"] == "confirmation_required"

    r = client.post(f"{BASE}/delete", json={"confirmation": "DELETE", "password": "nope"}, headers=h)
    assert r.status_code == 401
    assert r.json["error"] == "invalid_password"

    r = client.post(
        f"{BASE}/delete",
        json={"confirmation": "DELETE", "password": "pw", "reason": "Closing the store"},
        headers=h,
    )
    assert r.status_code == 201
    req = r.json["request"]
    assert req["status"] == "pending"
    assert req["reason"] == "Closing the store"
    requested = datetime.fromisoformat(req["requested_at"])
    scheduled = datetime.fromisoformat(req["scheduled_deletion_at"])
    assert scheduled - requested == timedelta(days=30)

    r = client.post(f"{BASE}/delete", json={"confirmation": "DELETE", "password": "pw"}, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "deletion_pending"

    r = client.get(f"{BASE}/delete/status")
    assert r.json["has_pending_request"] is True
    assert r.json["request"]["id"] == req["id"]

    r = client.delete(f"{BASE}/delete", headers=h)
    assert r.status_code == 200
    assert r.json["request"]["status"] == "cancelled"
    assert r.json["request"]["cancelled_at"] is not None

    assert client.get(f"{BASE}/delete/status").json["has_pending_request"] is False
    r = client.delete(f"{BASE}/delete", headers=h)
    assert r.status_code == 404
    assert r.json["error"] == "no_pending_request"

    with session_scope(app) as s:
        row = s.get(AccountDeletionRequest, req["id"])
        assert row.user_agent == "pytest-agent"
        assert row.cancelled_by_admin is False
        assert s.get(User, owner_id).is_active is True
        actions = {e.action for e in s.query(AuditEvent).all()}
        assert {"gdpr.deletion_request", "gdpr.deletion_cancel"} <= actions


def test_deletion_request_admin_review(app, client):
    token = login(client, "owner@example.com")
    body = {"confirmation": "DELETE", "password": "pw", "reason": "Too expensive"}
    req_id = client.post(f"{BASE}/delete", json=body, headers={"X-CSRF-Token": token}).json["request"]["id"]

    r = client.get(f"{BASE}/admin/deletion-requests")
    assert r.status_code == 403

    token = login(client, "admin@example.com")
    h = {"X-CSRF-Token": token}
    r = client.get(f"{BASE}/admin/deletion-requests?status=pending")
    assert r.status_code == 200
    assert r.json["total"] == 1
    row = r.json["requests"][0]
    assert row["id"] == req_id
    assert row["user_email"] == "owner@example.com"

    assert client.get(f"{BASE}/admin/deletion-requests?status=bogus").status_code == 400

    stats = client.get(f"{BASE}/admin/deletion-requests/stats").json["stats"]
    assert stats["pending_count"] == 1
    assert stats["last_7_days"] == 1
    assert stats["expiring_in_7_days"] == 0
    assert stats["top_reasons"] == [{"reason": "Too expensive", "count": 1}]

    r = client.put(
        f"{BASE}/admin/deletion-requests/{req_id}",
        json={"action": "cancel", "admin_notes": "Offered a downgrade"},
        headers=h,
    )
    assert r.status_code == 200
    row = r.json["request"]
    assert row["status"] == "cancelled"
    assert row["cancelled_by_admin"] is True
    assert row["admin_notes"] == "Offered a downgrade"

    r = client.put(f"{BASE}/admin/deletion-requests/{req_id}", json={"action": "cancel"}, headers=h)
    assert r.status_code == 409
    assert r.json["error"] == "request_closed"

    r = client.put(f"{BASE}/admin/deletion-requests/{req_id}", json={"action": "approve"}, headers=h)
    assert r.status_code == 400
    assert client.put(f"{BASE}/admin/deletion-requests/9999", json={}, headers=h).status_code == 404


def test_due_deletion_requests_are_erased(app, client, tmp_path):
    owner_id = user_id(app, "owner@example.com")
    other_id = user_id(app, "other@example.com")
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}
    export_id = client.post(f"{BASE}/export", json={}, headers=h).json["export"]["id"]
    stored = tmp_path / "storage" / "gdpr-exports" / f"user-{owner_id}" / f"export-{export_id}.json"
    due_id = client.post(f"{BASE}/delete", json={"confirmation": "DELETE", "password": "pw"}, headers=h).json[
        "request"
    ]["id"]

    token = login(client, "other@example.com")
    client.post(f"{BASE}/delete", json={"confirmation": "DELETE", "password": "pw"}, headers={"X-CSRF-Token": token})

    with session_scope(app) as s:
        s.get(AccountDeletionRequest, due_id).scheduled_deletion_at = datetime.utcnow() - timedelta(minutes=1)

    token = login(client, "admin@example.com")
    r = client.post(f"{BASE}/admin/deletion-requests/process-due", headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json == {"success": True, "processed_count": 1, "user_ids": [owner_id]}
    assert not stored.exists()

    with session_scope(app) as s:
        assert s.get(AccountDeletionRequest, due_id).status == "completed"
        assert s.get(User, owner_id).is_active is False
        assert s.get(User, other_id).is_active is True
        assert s.query(AccountDeletionRequest).filter_by(user_id=other_id).one().status == "pending"
