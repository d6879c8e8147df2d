"""
Document lifecycle state machine.

Two composite states drive every transition:

- editable: ``status=EDIT_MODE`` and workflow ``DRAFT`` or ``REJECTED``
- locked:   ``status=SIGNED`` and workflow ``APPROVED`` or ``COMPLETED``

A single approval is final. ``complete`` is a separate step that moves an
APPROVED document to COMPLETED; neither state accepts another decision.

The engine never commits. It works through an injected ``DocumentStore`` and
trusts the ``Actor`` handed in by the session layer.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.qms.errors import Conflict, NotFound, ValidationError
from app.qms.modules.documents.assignments import UNSET, AssignmentResult, AssignmentService, dedupe_ids
from app.qms.modules.documents.models import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    APPROVED,
    COMPLETED,
    DRAFT,
    EDIT_MODE,
    IN_REVIEW,
    REJECTED,
    SIGNED,
    Approval,
    Document,
    DocumentVersion,
)
from app.qms.modules.documents.store import DocumentFilter, DocumentStore
from app.qms.modules.notifications.service import (
    KIND_APPROVED,
    KIND_REJECTED,
    LogNotifier,
    NotificationMessage,
    Notifier,
)
from app.qms.modules.templates.schemas import validate_content
from app.qms.modules.templates.service import TemplateRegistry

logger = logging.getLogger(__name__)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_EDIT = "edit"
DECISION_ACTIONS = (ACTION_APPROVE, ACTION_REJECT, ACTION_EDIT)


@dataclass(frozen=True)
class Actor:
    user_id: int | None
    name: str


@dataclass(frozen=True)
class DecisionResult:
    document: Document
    action: str
    reopen_editor: bool = False
    owner_notified: bool = False


def new_document_id() -> str:
    return f"doc_{uuid.uuid4().hex}"


def is_editable(doc: Document) -> bool:
    return doc.status == EDIT_MODE and doc.workflow_status in (DRAFT, REJECTED)


def is_locked(doc: Document) -> bool:
    return doc.status == SIGNED and doc.workflow_status in (APPROVED, COMPLETED)


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def pending_settled(approvals: list[Approval]) -> list[bool]:
    """
    Per approval row, whether it is settled. Approval rows are never rewritten,
    so a PENDING request counts as settled once any later decision closes the
    review round it belongs to.
    """
    settled = []
    decided_after = False
    for a in reversed(approvals):
        if a.status != APPROVAL_PENDING:
            decided_after = True
            settled.append(True)
        else:
            settled.append(decided_after)
    settled.reverse()
    return settled


class WorkflowEngine:
    def __init__(
        self,
        store: DocumentStore,
        templates: TemplateRegistry,
        *,
        notifier: Notifier | None = None,
        assignments: AssignmentService | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        id_factory: Callable[[], str] = new_document_id,
    ) -> None:
        self.store = store
        self.templates = templates
        self.assignments = assignments or AssignmentService(store, notifier or LogNotifier())
        self.clock = clock
        self.id_factory = id_factory

    # Reads

    def get(self, document_id: str) -> Document:
        return self.store.get(document_id)

    def list(self, flt: DocumentFilter | None = None) -> list[Document]:
        return self.store.list(flt)

    # Transitions

    def create_from_template(
        self,
        template_id: str,
        title: str,
        actor: Actor,
        *,
        product_id: int | None = None,
        supplier_id: int | None = None,
    ) -> Document:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required.")
        tpl = self.templates.get(template_id)
        if tpl is None:
            raise NotFound(f"Template {template_id!r} not found.")
        if not tpl.is_active:
            raise ValidationError(f"Template {template_id!r} is inactive.")

        now = self.clock()
        doc = Document(
            id=self.id_factory(),
            title=title,
            template_id=tpl.id,
            template_type=tpl.type,
            content=copy.deepcopy(tpl.content or {}),
            status=EDIT_MODE,
            workflow_status=DRAFT,
            version=1,
            product_id=product_id,
            supplier_id=supplier_id,
            owner_user_id=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        doc = self.store.create(doc)
        logger.info("Document %s created from %s by %s", doc.id, tpl.id, actor.name)
        return doc

    def save_content(
        self,
        document_id: str,
        content: dict,
        actor: Actor,
        *,
        as_new_version: bool = False,
        comments: str | None = None,
        base_version: int | None = None,
    ) -> Document:
        doc = self.store.get(document_id)
        if not is_editable(doc):
            raise Conflict(f"Document is {doc.workflow_status}/{doc.status} and cannot be edited.")
        if base_version is not None and base_version != doc.version:
            raise Conflict(
                f"Document is at version {doc.version}, edit was based on {base_version}.",
                current_version=doc.version,
            )
        errors = validate_content(doc.template_type or None, content)
        if errors:
            raise ValidationError("Invalid document content.", errors=errors)

        now = self.clock()
        expected = doc.version
        patch = {"content": copy.deepcopy(content), "updated_at": now}
        if as_new_version:
            patch["version"] = expected + 1
            self.store.append_version(
                document_id,
                DocumentVersion(
                    version=expected + 1,
                    editor_user_id=actor.user_id,
                    editor_name=actor.name,
                    content=copy.deepcopy(content),
                    comments=(comments or "").strip() or None,
                    created_at=now,
                ),
            )
        return self.store.update(document_id, patch, expected_version=expected)

    def assign(
        self,
        document_id: str,
        reviewer_ids: list[int],
        actor: Actor,
        *,
        product_id=UNSET,
        supplier_id=UNSET,
    ) -> AssignmentResult:
        doc = self.store.get(document_id)
        reviewers = dedupe_ids(reviewer_ids)
        if reviewers and is_locked(doc):
            raise Conflict(f"Document is {doc.workflow_status}; only its product/supplier can be changed.")

        now = self.clock()
        patch: dict = {"updated_at": now}
        if reviewers:
            patch["workflow_status"] = IN_REVIEW
            for uid in reviewers:
                self.store.append_approval(
                    document_id,
                    Approval(status=APPROVAL_PENDING, approver_id=uid, created_at=now),
                )

        result = self.assignments.assign(
            document_id,
            reviewers,
            actor,
            product_id=product_id,
            supplier_id=supplier_id,
            patch=patch,
        )
        logger.info(
            "Document %s assigned to %s by %s (notified=%d failed=%d)",
            document_id,
            reviewers,
            actor.name,
            len(result.notified),
            len(result.failed),
        )
        return result

    def decide(
        self,
        document_id: str,
        action: str,
        actor: Actor,
        *,
        comments: str | None = None,
        signature: str | None = None,
    ) -> DecisionResult:
        action = (action or "").strip().lower()
        if action not in DECISION_ACTIONS:
            raise ValidationError(f"Invalid action. Must be one of: {', '.join(DECISION_ACTIONS)}")
        if action == ACTION_APPROVE and _blank(signature):
            raise ValidationError("A signature is required to approve.")
        if action == ACTION_REJECT and _blank(comments):
            raise ValidationError("Comments are required to reject.")

        doc = self.store.get(document_id)
        if action == ACTION_EDIT:
            return DecisionResult(document=doc, action=action, reopen_editor=not is_locked(doc))

        if is_locked(doc):
            raise Conflict(f"Document is already {doc.workflow_status}.")
        if doc.workflow_status != IN_REVIEW:
            raise Conflict(f"Document is {doc.workflow_status}, not in review.")

        now = self.clock()
        comments = (comments or "").strip() or None
        if action == ACTION_APPROVE:
            signature = signature.strip()
            self.store.append_approval(
                document_id,
                Approval(
                    status=APPROVAL_APPROVED,
                    approver_id=actor.user_id,
                    approver_name=actor.name,
                    comments=comments,
                    signature=signature,
                    approved_at=now,
                    created_at=now,
                ),
            )
            doc = self.store.update(
                document_id,
                {
                    "status": SIGNED,
                    "workflow_status": APPROVED,
                    "digital_signature": signature,
                    "approved_at": now,
                    "updated_at": now,
                },
            )
            message = NotificationMessage(
                kind=KIND_APPROVED,
                title=f"Approved: {doc.title}",
                body=f"{actor.name} approved \"{doc.title}\".",
                document_id=doc.id,
                sender_user_id=actor.user_id,
                sender_name=actor.name,
            )
        else:
            self.store.append_approval(
                document_id,
                Approval(
                    status=APPROVAL_REJECTED,
                    approver_id=actor.user_id,
                    approver_name=actor.name,
                    comments=comments,
                    created_at=now,
                ),
            )
            doc = self.store.update(
                document_id,
                {"status": EDIT_MODE, "workflow_status": REJECTED, "updated_at": now},
            )
            message = NotificationMessage(
                kind=KIND_REJECTED,
                title=f"Rejected: {doc.title}",
                body=f"{actor.name} rejected \"{doc.title}\": {comments}",
                document_id=doc.id,
                sender_user_id=actor.user_id,
                sender_name=actor.name,
            )

        logger.info("Document %s %s by %s", doc.id, doc.workflow_status, actor.name)
        owner_notified = self.assignments.notify_owner(doc, message)
        return DecisionResult(document=doc, action=action, owner_notified=owner_notified)

    def complete(self, document_id: str, actor: Actor) -> Document:
        doc = self.store.get(document_id)
        if doc.workflow_status != APPROVED or doc.status != SIGNED:
            raise Conflict(f"Only approved documents can be completed (document is {doc.workflow_status}).")
        doc = self.store.update(document_id, {"workflow_status": COMPLETED, "updated_at": self.clock()})
        logger.info("Document %s completed by %s", doc.id, actor.name)
        return doc

    def delete(self, document_id: str, actor: Actor) -> None:
        self.store.delete(document_id)
        logger.info("Document %s deleted by %s", document_id, actor.name)
