from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """
    Error surfaced to API clients as `{"error": <code>, "message": <text>, ...}`.

    Services raise it; the app-level handler turns it into a JSON response.
    """

    def __init__(self, status: int, error: str, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.status = status
        self.error = error
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        body.update(self.extra)
        return body


def bad_request(error: str, message: str, **extra: Any) -> ApiError:
    return ApiError(400, error, message, **extra)


def not_found(error: str, message: str) -> ApiError:
    return ApiError(404, error, message)


def conflict(error: str, message: str, **extra: Any) -> ApiError:
    return ApiError(409, error, message, **extra)
