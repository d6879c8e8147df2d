"""
Persistence boundary for documents and their child records.

Two adapters implement the same interface:

- ``SqlDocumentStore`` works on the request's SQLAlchemy session. It only
  flushes; the request handler owns the commit (see ``commit_or_raise``).
  Backend failures are re-raised as ``StorageError`` and never retried here.
- ``InMemoryDocumentStore`` is the explicit secondary adapter selected with
  ``DOCUMENT_STORE=memory`` (and used by unit tests). Each call holds a lock,
  so every operation is atomic at the single-document level.

Neither adapter does optimistic locking on its own; callers opt in by passing
``expected_version`` to ``update``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.qms.errors import Conflict, NotFound, StorageError
from app.qms.modules.documents.models import Approval, Document, DocumentAssignment, DocumentVersion

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "content",
        "status",
        "workflow_status",
        "version",
        "digital_signature",
        "approved_at",
        "product_id",
        "supplier_id",
        "updated_at",
    }
)


@dataclass(frozen=True)
class DocumentFilter:
    product_id: int | None = None
    supplier_id: int | None = None
    assigned_user_id: int | None = None
    unassigned: bool = False  # no product association
    owner_user_id: int | None = None
    workflow_status: str | None = None


class DocumentStore:
    def get(self, document_id: str) -> Document:
        raise NotImplementedError

    def list(self, flt: DocumentFilter | None = None) -> list[Document]:
        raise NotImplementedError

    def create(self, doc: Document) -> Document:
        raise NotImplementedError

    def update(self, document_id: str, patch: dict, *, expected_version: int | None = None) -> Document:
        raise NotImplementedError

    def delete(self, document_id: str) -> None:
        raise NotImplementedError

    def append_approval(self, document_id: str, approval: Approval) -> Approval:
        raise NotImplementedError

    def append_version(self, document_id: str, version: DocumentVersion) -> DocumentVersion:
        raise NotImplementedError

    def replace_assignments(self, document_id: str, user_ids: list[int], *, assigned_by: int | None = None) -> Document:
        raise NotImplementedError


def _check_patch(patch: dict) -> None:
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")


def _apply_patch(doc: Document, patch: dict, expected_version: int | None) -> None:
    _check_patch(patch)
    if expected_version is not None and doc.version != expected_version:
        raise Conflict(
            f"Document {doc.id} changed underneath this edit (version {doc.version}, expected {expected_version}).",
            current_version=doc.version,
        )
    for field, value in patch.items():
        setattr(doc, field, value)


def _new_assignments(document_id: str, user_ids: list[int], assigned_by: int | None) -> list[DocumentAssignment]:
    return [
        DocumentAssignment(document_id=document_id, user_id=uid, position=pos, assigned_by_user_id=assigned_by)
        for pos, uid in enumerate(user_ids)
    ]


def _matches(doc: Document, flt: DocumentFilter) -> bool:
    if flt.product_id is not None and doc.product_id != flt.product_id:
        return False
    if flt.supplier_id is not None and doc.supplier_id != flt.supplier_id:
        return False
    if flt.unassigned and doc.product_id is not None:
        return False
    if flt.owner_user_id is not None and doc.owner_user_id != flt.owner_user_id:
        return False
    if flt.workflow_status and doc.workflow_status != flt.workflow_status:
        return False
    if flt.assigned_user_id is not None and flt.assigned_user_id not in doc.assigned_user_ids:
        return False
    return True


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._docs: dict[str, Document] = {}
        self._lock = threading.RLock()

    def _require(self, document_id: str) -> Document:
        doc = self._docs.get(document_id)
        if doc is None:
            raise NotFound(f"Document {document_id!r} not found.")
        return doc

    def get(self, document_id: str) -> Document:
        with self._lock:
            return self._require(document_id)

    def list(self, flt: DocumentFilter | None = None) -> list[Document]:
        flt = flt or DocumentFilter()
        with self._lock:
            docs = [d for d in self._docs.values() if _matches(d, flt)]
        return sorted(docs, key=lambda d: d.updated_at, reverse=True)

    def create(self, doc: Document) -> Document:
        with self._lock:
            if doc.id in self._docs:
                raise Conflict(f"Document {doc.id!r} already exists.")
            self._docs[doc.id] = doc
            return doc

    def update(self, document_id: str, patch: dict, *, expected_version: int | None = None) -> Document:
        with self._lock:
            doc = self._require(document_id)
            _apply_patch(doc, patch, expected_version)
            return doc

    def delete(self, document_id: str) -> None:
        with self._lock:
            self._require(document_id)
            del self._docs[document_id]

    def append_approval(self, document_id: str, approval: Approval) -> Approval:
        with self._lock:
            doc = self._require(document_id)
            doc.approvals.append(approval)
            return approval

    def append_version(self, document_id: str, version: DocumentVersion) -> DocumentVersion:
        with self._lock:
            doc = self._require(document_id)
            doc.versions.append(version)
            return version

    def replace_assignments(self, document_id: str, user_ids: list[int], *, assigned_by: int | None = None) -> Document:
        with self._lock:
            doc = self._require(document_id)
            doc.assignments = _new_assignments(document_id, user_ids, assigned_by)
            return doc


class SqlDocumentStore(DocumentStore):
    def __init__(self, s: Session) -> None:
        self.s = s

    def _flush(self, what: str) -> None:
        try:
            self.s.flush()
        except SQLAlchemyError as e:
            self.s.rollback()
            raise StorageError(f"Document store {what} failed: {e.__class__.__name__}") from e

    def _require(self, document_id: str) -> Document:
        try:
            doc = self.s.get(Document, document_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Document store read failed: {e.__class__.__name__}") from e
        if doc is None:
            raise NotFound(f"Document {document_id!r} not found.")
        return doc

    def get(self, document_id: str) -> Document:
        return self._require(document_id)

    def list(self, flt: DocumentFilter | None = None) -> list[Document]:
        flt = flt or DocumentFilter()
        stmt = select(Document)
        if flt.product_id is not None:
            stmt = stmt.where(Document.product_id == flt.product_id)
        if flt.supplier_id is not None:
            stmt = stmt.where(Document.supplier_id == flt.supplier_id)
        if flt.unassigned:
            stmt = stmt.where(Document.product_id.is_(None))
        if flt.owner_user_id is not None:
            stmt = stmt.where(Document.owner_user_id == flt.owner_user_id)
        if flt.workflow_status:
            stmt = stmt.where(Document.workflow_status == flt.workflow_status)
        if flt.assigned_user_id is not None:
            stmt = stmt.join(DocumentAssignment, DocumentAssignment.document_id == Document.id).where(
                DocumentAssignment.user_id == flt.assigned_user_id
            )
        stmt = stmt.order_by(Document.updated_at.desc(), Document.id.asc())
        try:
            return list(self.s.scalars(stmt).unique().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Document store list failed: {e.__class__.__name__}") from e

    def create(self, doc: Document) -> Document:
        self.s.add(doc)
        self._flush("create")
        return doc

    def update(self, document_id: str, patch: dict, *, expected_version: int | None = None) -> Document:
        doc = self._require(document_id)
        _apply_patch(doc, patch, expected_version)
        self._flush("update")
        return doc

    def delete(self, document_id: str) -> None:
        doc = self._require(document_id)
        self.s.delete(doc)
        self._flush("delete")

    def append_approval(self, document_id: str, approval: Approval) -> Approval:
        doc = self._require(document_id)
        doc.approvals.append(approval)
        self._flush("approval append")
        return approval

    def append_version(self, document_id: str, version: DocumentVersion) -> DocumentVersion:
        doc = self._require(document_id)
        doc.versions.append(version)
        self._flush("version append")
        return version

    def replace_assignments(self, document_id: str, user_ids: list[int], *, assigned_by: int | None = None) -> Document:
        doc = self._require(document_id)
        doc.assignments.clear()
        # Flush the orphan deletes before re-inserting so the (document, user) unique key holds.
        self._flush("assignment clear")
        doc.assignments.extend(_new_assignments(document_id, user_ids, assigned_by))
        self._flush("assignment insert")
        return doc
