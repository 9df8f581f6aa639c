import logging

from app.commerce import create_app
from app.commerce.db import session_scope
from app.commerce.models import AuditEvent, User

from conftest import login


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_health_reports_schema(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert "schema_missing" in r.json


def test_login_and_me(client):
    # Anonymous should be rejected
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json["error"] == "authentication_required"

    token = login(client)
    assert token

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"
    assert "tiers.manage" in r.json["user"]["permissions"]


def test_login_rejects_bad_password(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["error"] == "invalid_credentials"

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_rate_limited(client):
    for _ in range(5):
        client.post("/auth/login", json={"email": "admin@example.com", "password": "nope"})
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 429


def test_mutations_require_csrf_token(client):
    login(client)
    r = client.post("/api/organizations", json={"name": "No Token Group"})
    assert r.status_code == 400
    assert r.json["error"] == "csrf_failed"


def test_csrf_endpoint_matches_login_token(client):
    token = login(client)
    r = client.get("/auth/csrf")
    assert r.json["csrf_token"] == token


def test_logout_clears_session(client):
    login(client)
    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_unknown_route_is_json_404(client):
    r = client.get("/no-such-route")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_slow_queries_are_logged(app, monkeypatch, caplog):
    monkeypatch.setenv("DB_SLOW_QUERY_MS", "0.000001")
    slow_app = create_app()
    with caplog.at_level(logging.WARNING, logger="app.commerce.db"):
        with session_scope(slow_app) as s:
            assert s.query(User).count() == 3
    assert "Slow query" in caplog.text
    assert "FROM users" in caplog.text


def test_slow_query_logging_off_when_threshold_is_zero(app, monkeypatch, caplog):
    monkeypatch.setenv("DB_SLOW_QUERY_MS", "0")
    quiet_app = create_app()
    with caplog.at_level(logging.WARNING, logger="app.commerce.db"):
        with session_scope(quiet_app) as s:
            s.query(User).count()
    assert "Slow query" not in caplog.text
