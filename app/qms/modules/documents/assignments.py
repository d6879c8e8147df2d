from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from app.qms.modules.documents.models import Document
from app.qms.modules.documents.store import DocumentStore
from app.qms.modules.notifications.service import (
    KIND_ASSIGNMENT,
    NotificationMessage,
    Notifier,
    fan_out,
)

if TYPE_CHECKING:
    from app.qms.modules.documents.workflow import Actor

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass
class AssignmentResult:
    document: Document
    notified: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def dedupe_ids(ids) -> list[int]:
    """Order-preserving de-duplication."""
    seen: set[int] = set()
    out: list[int] = []
    for raw in ids or []:
        uid = int(raw)
        if uid not in seen:
            seen.add(uid)
            out.append(uid)
    return out


class AssignmentService:
    """
    Applies reviewer/product/supplier assignment to a document, then notifies
    each reviewer. The mutation always lands first; delivery failures are
    counted on the result and never roll it back.
    """

    def __init__(self, store: DocumentStore, notifier: Notifier) -> None:
        self.store = store
        self.notifier = notifier

    def assign(
        self,
        document_id: str,
        reviewer_ids: list[int],
        actor: "Actor",
        *,
        product_id=UNSET,
        supplier_id=UNSET,
        patch: dict | None = None,
    ) -> AssignmentResult:
        reviewers = dedupe_ids(reviewer_ids)
        changes = dict(patch or {})
        if product_id is not UNSET:
            changes["product_id"] = product_id
        if supplier_id is not UNSET:
            changes["supplier_id"] = supplier_id

        doc = self.store.replace_assignments(document_id, reviewers, assigned_by=actor.user_id)
        if changes:
            doc = self.store.update(document_id, changes)

        if not reviewers:
            return AssignmentResult(document=doc)

        message = NotificationMessage(
            kind=KIND_ASSIGNMENT,
            title=f"Review requested: {doc.title}",
            body=f"{actor.name} assigned you to review \"{doc.title}\".",
            document_id=doc.id,
            sender_user_id=actor.user_id,
            sender_name=actor.name,
        )
        notified, failed = fan_out(self.notifier, reviewers, message)
        if failed:
            logger.warning("Assignment of %s: %d of %d notifications failed", doc.id, len(failed), len(reviewers))
        return AssignmentResult(document=doc, notified=notified, failed=failed)

    def notify_owner(self, doc: Document, message: NotificationMessage) -> bool:
        """Best-effort single notification to the document owner."""
        if doc.owner_user_id is None:
            return False
        notified, _failed = fan_out(self.notifier, [doc.owner_user_id], message)
        return bool(notified)
