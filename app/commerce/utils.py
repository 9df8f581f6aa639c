from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from flask import request

from app.commerce.errors import bad_request


def json_body() -> dict[str, Any]:
    """Return the request JSON object, or {} when the body is empty."""
    if not request.data:
        return {}
    payload = request.get_json(silent=True)
    if payload is None:
        raise bad_request("invalid_json", "Request body must be valid JSON.")
    if not isinstance(payload, dict):
        raise bad_request("invalid_json", "Request body must be a JSON object.")
    return payload


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise bad_request("invalid_request", f"{field} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise bad_request("invalid_request", f"{field} must be an integer.")


def parse_float(value: Any, field: str) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise bad_request("invalid_request", f"{field} must be a number.")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise bad_request("invalid_request", f"{field} must be a number.")


def parse_datetime(value: Any, field: str) -> datetime | None:
    """Parse an ISO-8601 timestamp into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        raise bad_request("invalid_request", f"{field} must be an ISO-8601 timestamp.")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None
