import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    db_slow_query_ms: float

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    storage_local_root: str

    tracking_enabled: bool
    tracking_api_base_url: str
    tracking_batch_size: int
    tracking_batch_interval_seconds: float
    tracking_max_cache_size: int
    tracking_retry_base_seconds: float
    tracking_retry_max_seconds: float


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number (got {raw!r}).")


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///commerce.db"),
        db_slow_query_ms=_getenv_float("DB_SLOW_QUERY_MS", 500.0),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", ""),
        tracking_enabled=_getenv_bool("TRACKING_ENABLED", True),
        tracking_api_base_url=_getenv("TRACKING_API_BASE_URL", "http://localhost:4000"),
        tracking_batch_size=_getenv_int("TRACKING_BATCH_SIZE", 50),
        tracking_batch_interval_seconds=_getenv_float("TRACKING_BATCH_INTERVAL_SECONDS", 30.0),
        tracking_max_cache_size=_getenv_int("TRACKING_MAX_CACHE_SIZE", 500),
        tracking_retry_base_seconds=_getenv_float("TRACKING_RETRY_BASE_SECONDS", 30.0),
        tracking_retry_max_seconds=_getenv_float("TRACKING_RETRY_MAX_SECONDS", 600.0),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        # 0 disables slow query logging
        "DB_SLOW_QUERY_MS": s.db_slow_query_ms,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        # behavior tracking queue
        "TRACKING_ENABLED": s.tracking_enabled,
        "TRACKING_API_BASE_URL": s.tracking_api_base_url,
        "TRACKING_BATCH_SIZE": s.tracking_batch_size,
        "TRACKING_BATCH_INTERVAL_SECONDS": s.tracking_batch_interval_seconds,
        "TRACKING_MAX_CACHE_SIZE": s.tracking_max_cache_size,
        "TRACKING_RETRY_BASE_SECONDS": s.tracking_retry_base_seconds,
        "TRACKING_RETRY_MAX_SECONDS": s.tracking_retry_max_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON bodies only; tracking batches are the largest payloads
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
