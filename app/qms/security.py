"""
Session-bound CSRF tokens for the JSON API.

The token lives in the signed session cookie and must be echoed back on every
mutating request, normally in the ``X-CSRF-Token`` header. Login issues a fresh
token so one obtained before authentication cannot be replayed after it.
"""

import hmac
import secrets

from flask import Request, session

CSRF_HEADER = "X-CSRF-Token"
_SESSION_KEY = "csrf_token"


def ensure_csrf_token() -> str:
    token = session.get(_SESSION_KEY)
    if not token:
        token = rotate_csrf_token()
    return token


def rotate_csrf_token() -> str:
    token = secrets.token_urlsafe(32)
    session[_SESSION_KEY] = token
    return token


def submitted_csrf_token(req: Request) -> str | None:
    """Header first, then a ``csrf_token`` form field or JSON member."""
    token = req.headers.get(CSRF_HEADER) or req.form.get(_SESSION_KEY)
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict) and isinstance(body.get(_SESSION_KEY), str):
            token = body[_SESSION_KEY]
    return token or None


def validate_csrf(req: Request) -> bool:
    expected = session.get(_SESSION_KEY)
    token = submitted_csrf_token(req)
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode(), expected.encode())
