"""
Error taxonomy shared by the workflow core and the HTTP layer.

Every error carries a machine-readable ``kind`` and the HTTP status the API
answers with. ``NotificationFailure`` is raised by transports only; the
fan-out catches it per recipient and it never reaches a caller.
"""

from __future__ import annotations

from typing import Any


class QmsError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class NotFound(QmsError):
    kind = "not_found"
    status_code = 404


class ValidationError(QmsError):
    kind = "validation"
    status_code = 400


class Conflict(QmsError):
    kind = "conflict"
    status_code = 409


class StorageError(QmsError):
    kind = "storage_error"
    status_code = 503


class NotificationFailure(QmsError):
    kind = "notification_failure"
    status_code = 500


def text_field_errors(payload: dict, fields) -> list[str]:
    """Messages for JSON fields that are present but not strings (null counts as absent)."""
    return [f"{f} must be a string." for f in fields if payload.get(f) is not None and not isinstance(payload[f], str)]
