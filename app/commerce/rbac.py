from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.commerce.errors import ApiError
from app.commerce.models import User

PLATFORM_SUPPORT = "platform.support"


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_permission_keys(user: User | None) -> list[str]:
    if not user or not user.is_active:
        return []
    return sorted({perm.key for role in user.roles for perm in role.permissions})


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            raise ApiError(401, "authentication_required", "Please sign in to continue.")
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401; authenticated but unauthorized -> 403
            if not user or not user.is_active:
                raise ApiError(401, "authentication_required", "Please sign in to continue.")
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise ApiError(
                    403,
                    "forbidden",
                    "You do not have permission to perform this action.",
                    missing_permission=permission_key,
                )
            return fn(*args, **kwargs)

        return wrapped

    return decorator
