from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"service": "commerce-platform-api", "ok": True}


@bp.get("/health")
def health():
    """Health check endpoint. Reports tables missing from the DB schema, if any."""
    missing = current_app.config.get("_schema_health_missing") or []
    return {"ok": not missing, "schema_missing": missing}


@bp.get("/healthz")
def healthz():
    """
    Liveness check for the load balancer. No DB access.
    """
    return "ok", 200
