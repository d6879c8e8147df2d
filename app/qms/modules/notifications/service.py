"""
Notification transports.

Delivery is advisory: the document mutation is the source of truth.
Transports raise ``NotificationFailure`` and ``fan_out`` isolates each
recipient so one failure never blocks the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from sqlalchemy.exc import SQLAlchemyError

from app.qms.errors import NotificationFailure
from app.qms.modules.notifications.models import Notification

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

KIND_ASSIGNMENT = "assignment"
KIND_APPROVED = "approved"
KIND_REJECTED = "rejected"
KIND_TASK = "task"


@dataclass(frozen=True)
class NotificationMessage:
    kind: str
    title: str
    body: str = ""
    document_id: str | None = None
    sender_user_id: int | None = None
    sender_name: str | None = None


class Notifier:
    def notify(self, user_id: int, message: NotificationMessage) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes notifications to the application log only."""

    def notify(self, user_id: int, message: NotificationMessage) -> None:
        logger.info(
            "notify user=%s kind=%s document=%s title=%s",
            user_id,
            message.kind,
            message.document_id,
            message.title,
        )


class DatabaseNotifier(Notifier):
    """Inbox rows in ``notifications``; each insert runs in its own savepoint."""

    def __init__(self, s: "Session") -> None:
        self.s = s

    def notify(self, user_id: int, message: NotificationMessage) -> None:
        try:
            with self.s.begin_nested():
                self.s.add(
                    Notification(
                        user_id=user_id,
                        kind=message.kind,
                        title=message.title,
                        message=message.body or None,
                        document_id=message.document_id,
                        sender_user_id=message.sender_user_id,
                        sender_name=message.sender_name,
                        created_at=datetime.utcnow(),
                    )
                )
        except SQLAlchemyError as e:
            raise NotificationFailure(f"Could not store notification for user {user_id}: {e.__class__.__name__}") from e


def fan_out(notifier: Notifier, user_ids: Iterable[int], message: NotificationMessage) -> tuple[list[int], list[int]]:
    """Deliver to each recipient; returns (notified, failed) user ids."""
    notified: list[int] = []
    failed: list[int] = []
    for uid in user_ids:
        try:
            notifier.notify(uid, message)
        except Exception as e:
            logger.warning("Notification to user %s failed (document=%s): %s", uid, message.document_id, e)
            failed.append(uid)
        else:
            notified.append(uid)
    return notified, failed


def notifier_from_config(config: dict, s: "Session | None" = None) -> Notifier:
    backend = (config.get("NOTIFICATION_BACKEND") or "database").strip().lower()
    if backend == "log":
        return LogNotifier()
    if backend == "database":
        if s is None:
            raise ValueError("DatabaseNotifier requires a session")
        return DatabaseNotifier(s)
    raise ValueError(f"Unknown NOTIFICATION_BACKEND: {backend!r}")


def notification_payload(n: Notification) -> dict:
    return {
        "id": n.id,
        "kind": n.kind,
        "title": n.title,
        "message": n.message,
        "documentId": n.document_id,
        "senderName": n.sender_name,
        "read": n.is_read,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }
