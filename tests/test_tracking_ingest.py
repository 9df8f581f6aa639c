"""Tests for tracking ingestion and behavior analytics."""
from datetime import datetime, timedelta

from app.commerce.db import session_scope
from app.commerce.models import User
from app.commerce.modules.gdpr.service import record_consent
from app.commerce.modules.tracking.models import BehaviorEvent, TrackingSessionRecord
from app.commerce.modules.tracking.service import behavior_analytics

from conftest import login, make_tenant, user_id


def _revoke_analytics(app, email):
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == email).one()
        record_consent(s, u, "analytics", False, source="api")


def test_track_batch_is_anonymous_and_csrf_exempt(app, client):
    tenant_id = make_tenant(app)
    r = client.post(
        "/api/recommendations/track-batch",
        json={
            "events": [
                {"eventType": "page_view", "sessionId": "s1", "tenantId": tenant_id, "url": "/stores/1"},
                {"event_type": "click", "session_id": "s1", "event_data": {"target": "hours"}},
            ]
        },
        headers={"User-Agent": "pytest-agent"},
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "accepted": 2, "rejected": 0, "suppressed": 0}

    with session_scope(app) as s:
        events = s.query(BehaviorEvent).order_by(BehaviorEvent.id.asc()).all()
        assert [e.event_type for e in events] == ["page_view", "click"]
        assert events[0].tenant_id == tenant_id
        assert events[0].priority == "normal"
        assert events[1].event_data_json == '{"target": "hours"}'
        assert events[1].user_agent == "pytest-agent"


def test_track_batch_rejects_invalid_events_individually(app, client):
    r = client.post(
        "/api/recommendations/track-batch",
        json={
            "events": [
                {"event_type": "click"},
                {"session_id": "no-type"},
                "not-an-object",
                {"event_type": "click", "tenant_id": 9999},
                {"event_type": "click", "user_id": "abc"},
                {"event_type": "click", "priority": "urgent"},
            ]
        },
    )
    assert r.status_code == 200
    assert r.json["accepted"] == 1
    assert r.json["rejected"] == 5


def test_track_batch_validates_envelope(client):
    r = client.post("/api/recommendations/track-batch", json={"events": []})
    assert r.status_code == 400
    assert r.json["error"] == "events_required"

    r = client.post("/api/recommendations/track-batch", json={"events": [{"event_type": "click"}] * 501})
    assert r.status_code == 400
    assert r.json["error"] == "batch_too_large"
    assert r.json["max_events"] == 500


def test_track_batch_suppresses_revoked_consent(app, client):
    owner_id = user_id(app, "owner@example.com")
    other_id = user_id(app, "other@example.com")
    _revoke_analytics(app, "owner@example.com")

    r = client.post(
        "/api/recommendations/track-batch",
        json={"events": [{"event_type": "click", "user_id": owner_id}, {"event_type": "click", "user_id": other_id}]},
    )
    assert r.json["accepted"] == 1
    assert r.json["suppressed"] == 1


def test_track_entity_view(app, client):
    tenant_id = make_tenant(app)
    r = client.post(
        "/api/recommendations/track",
        json={"entityId": "42", "tenantId": tenant_id, "context": {"source": "map"}},
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "tracked": True}

    with session_scope(app) as s:
        ev = s.query(BehaviorEvent).one()
        assert ev.event_type == "store_view"
        assert ev.entity_type == "store"
        assert ev.entity_id == "42"
        assert ev.priority == "high"
        assert ev.event_data_json == '{"source": "map"}'


def test_track_entity_view_attaches_current_user(app, client):
    owner_id = user_id(app, "owner@example.com")
    login(client, "owner@example.com")
    r = client.post("/api/recommendations/track", json={"entity_id": "7", "entity_type": "product"})
    assert r.json["tracked"] is True
    with session_scope(app) as s:
        ev = s.query(BehaviorEvent).one()
        assert ev.event_type == "product_view"
        assert ev.user_id == owner_id


def test_track_entity_view_validation(app, client):
    r = client.post("/api/recommendations/track", json={"entity_type": "store"})
    assert r.status_code == 400
    assert r.json["error"] == "entity_id_required"

    r = client.post("/api/recommendations/track", json={"entity_id": "1", "tenant_id": 9999})
    assert r.status_code == 400


def test_track_entity_view_respects_consent(app, client):
    _revoke_analytics(app, "owner@example.com")
    login(client, "owner@example.com")
    r = client.post("/api/recommendations/track", json={"entity_id": "7"})
    assert r.json == {"success": True, "tracked": False}
    with session_scope(app) as s:
        assert s.query(BehaviorEvent).count() == 0


def test_session_upsert(app, client):
    r = client.post(
        "/api/analytics/sessions",
        json={
            "session_id": "sess-1",
            "start_time": "2024-05-01T10:00:00Z",
            "page_views": 1,
            "events": 2,
            "entry_page": "/",
            "user_id": 9999,
        },
    )
    assert r.status_code == 200
    session = r.json["session"]
    assert session["ended_at"] is None
    assert session["bounce_rate"] is None
    assert session["user_id"] is None

    r = client.post(
        "/api/analytics/sessions",
        json={
            "sessionId": "sess-1",
            "startTime": "2024-05-01T10:00:00Z",
            "endTime": "2024-05-01T10:02:30Z",
            "pageViews": 3,
            "events": 9,
            "exitPage": "/stores/1",
        },
    )
    assert r.status_code == 200
    session = r.json["session"]
    assert session["duration_seconds"] == 150.0
    assert session["bounce_rate"] == 0.0
    assert session["page_views"] == 3

    with session_scope(app) as s:
        assert s.query(TrackingSessionRecord).count() == 1


def test_session_validation(client):
    r = client.post("/api/analytics/sessions", json={"start_time": "2024-05-01T10:00:00Z"})
    assert r.status_code == 400
    assert r.json["error"] == "session_id_required"

    r = client.post("/api/analytics/sessions", json={"session_id": "x"})
    assert r.status_code == 400

    r = client.post(
        "/api/analytics/sessions",
        json={"session_id": "x", "start_time": "2024-05-01T10:00:00", "end_time": "2024-05-01T09:00:00"},
    )
    assert r.status_code == 400


def test_behavior_analytics_aggregates(app):
    tenant_id = make_tenant(app)
    owner_id = user_id(app, "owner@example.com")
    now = datetime(2024, 5, 2, 12, 0, 0)
    with session_scope(app) as s:
        rows = [
            ("page_view", "s1", owner_id, "/stores/1"),
            ("page_view", "s1", owner_id, "/stores/1"),
            ("page_view", "s2", None, "/stores/1"),
            ("page_view", "s2", None, "/stores/2"),
            ("click", "s2", None, "/stores/2"),
        ]
        for event_type, session_id, uid, url in rows:
            s.add(
                BehaviorEvent(
                    event_type=event_type,
                    priority="normal",
                    session_id=session_id,
                    user_id=uid,
                    tenant_id=tenant_id,
                    url=url,
                    occurred_at=now - timedelta(hours=1),
                )
            )
        # outside the window
        s.add(BehaviorEvent(event_type="click", priority="normal", occurred_at=now - timedelta(days=3)))
        s.add(TrackingSessionRecord(session_id="s1", started_at=now - timedelta(hours=2), duration_seconds=60, bounce_rate=0.0))
        s.add(TrackingSessionRecord(session_id="s2", started_at=now - timedelta(hours=2), duration_seconds=120, bounce_rate=100.0))

    with session_scope(app) as s:
        data = behavior_analytics(s, hours=24, now=now)

    assert data["total_events"] == 5
    assert data["unique_users"] == 1
    assert data["unique_sessions"] == 2
    assert data["average_session_duration"] == 90.0
    assert data["bounce_rate"] == 50.0
    assert data["top_pages"][0] == {"url": "/stores/1", "views": 3, "unique_views": 2}
    assert data["top_events"][0]["event_type"] == "page_view"
    assert data["top_events"][0]["count"] == 4
    assert data["time_range"]["hours"] == 24


def test_behavior_endpoint(app, client):
    assert client.get("/api/analytics/behavior").status_code == 401

    login(client, "owner@example.com")
    assert client.get("/api/analytics/behavior").status_code == 403

    login(client)
    r = client.get("/api/analytics/behavior?hours=48")
    assert r.status_code == 200
    assert r.json["analytics"]["time_range"]["hours"] == 48

    assert client.get("/api/analytics/behavior?hours=0").status_code == 400
    assert client.get("/api/analytics/behavior?tenant_id=9999").status_code == 404


def test_erased_user_events_are_suppressed(app, client):
    owner_id = user_id(app, "owner@example.com")
    token = login(client, "owner@example.com")
    h = {"X-CSRF-Token": token}
    client.post("/api/gdpr/consents", json={"type": "analytics", "consented": False}, headers=h)
    assert client.delete("/api/gdpr/data-delete", json={"confirm": True}, headers=h).status_code == 200

    r = client.post("/api/recommendations/track-batch", json={"events": [{"event_type": "click", "user_id": owner_id}]})
    assert r.json == {"success": True, "accepted": 0, "rejected": 0, "suppressed": 1}

    r = client.post("/api/recommendations/track", json={"entity_id": "7", "user_id": owner_id})
    assert r.json == {"success": True, "tracked": False}

    r = client.post(
        "/api/analytics/sessions",
        json={"session_id": "sess-erased", "start_time": "2024-05-01T10:00:00Z", "user_id": owner_id},
    )
    assert r.json["session"]["user_id"] is None

    with session_scope(app) as s:
        assert s.query(BehaviorEvent).filter(BehaviorEvent.user_id == owner_id).count() == 0
