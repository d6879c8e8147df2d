from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g, jsonify

from app.qms.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def _error(kind: str, message: str, status: int):
    return jsonify({"error": {"kind": kind, "message": message}}), status


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _error("unauthorized", "Login required.", 401)
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 (API clients re-login).
            if not user or not user.is_active:
                return _error("unauthorized", "Login required.", 401)
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                return _error("forbidden", f"Missing permission: {permission_key}", 403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
