import logging
from datetime import timedelta

from flask import Flask, g, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.commerce.config import load_config
from app.commerce.db import dispose_engine_after_fork, init_db, teardown_db_session
from app.commerce.errors import ApiError
from app.commerce.routes import bp as routes_bp
from app.commerce.auth import bp as auth_bp, load_current_user
from app.commerce.modules.tiers.admin import bp as tier_system_bp
from app.commerce.modules.tenants.admin import bp as tenants_bp
from app.commerce.modules.organizations.admin import bp as organization_requests_bp
from app.commerce.modules.tracking.admin import bp as tracking_bp
from app.commerce.modules.gdpr.admin import bp as gdpr_bp

# Tables the running code expects; anything missing means `alembic upgrade head` was skipped.
EXPECTED_TABLES = (
    "users",
    "tenants",
    "organizations",
    "subscription_tiers",
    "tier_features",
    "tenant_feature_overrides",
    "tier_change_logs",
    "organization_requests",
    "behavior_events",
    "tracking_sessions",
    "consent_records",
    "data_exports",
    "account_deletion_requests",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.commerce.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # login/logout and anonymous tracking beacons carry no token
            if is_csrf_exempt(request.path):
                return None
            if not validate_csrf(request):
                return {"error": "csrf_failed", "message": "CSRF token missing or invalid."}, 400
        else:
            ensure_csrf_token()
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    dispose_engine_after_fork(app)

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(tier_system_bp, url_prefix="/api/admin/tier-system")
    app.register_blueprint(tenants_bp, url_prefix="/api")
    app.register_blueprint(organization_requests_bp, url_prefix="/api")
    app.register_blueprint(tracking_bp, url_prefix="/api")
    app.register_blueprint(gdpr_bp, url_prefix="/api/gdpr")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): report tables the code needs but the DB lacks.
    def _run_schema_health_check() -> None:
        engine = app.extensions["sqlalchemy_engine"]
        try:
            existing = set(sa_inspect(engine).get_table_names())
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return
        missing = [t for t in EXPECTED_TABLES if t not in existing]
        app.config["_schema_health_missing"] = missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status == 403 and getattr(g, "missing_permission", None):
            app.logger.warning(
                "Forbidden: missing_permission=%s request_id=%s", g.missing_permission, getattr(g, "request_id", None)
            )
        return e.to_dict(), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        code = e.code or 500
        error = (e.name or "error").lower().replace(" ", "_")
        return {"error": error, "message": e.description or e.name}, code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in platform logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": "internal_error", "message": "Something went wrong. Please try again."}, 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
