from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from flask import Flask, current_app

from app.qms.modules.documents.models import Approval, Document, DocumentVersion
from app.qms.modules.documents.store import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from app.qms.modules.documents.workflow import Actor, WorkflowEngine
from app.qms.modules.notifications.service import notifier_from_config
from app.qms.modules.templates.service import SqlTemplateRegistry

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def init_document_store(app: Flask) -> None:
    """The memory adapter lives for the life of the process; SQL is per request."""
    backend = app.config.get("DOCUMENT_STORE") or "sql"
    if backend == "memory":
        app.extensions["document_store"] = InMemoryDocumentStore()
    elif backend != "sql":
        raise RuntimeError(f"Unknown DOCUMENT_STORE: {backend!r} (expected 'sql' or 'memory')")


def document_store(s: "Session") -> DocumentStore:
    store = current_app.extensions.get("document_store")
    return store if store is not None else SqlDocumentStore(s)


def workflow_engine(s: "Session") -> WorkflowEngine:
    return WorkflowEngine(
        document_store(s),
        SqlTemplateRegistry(s),
        notifier=notifier_from_config(current_app.config, s),
    )


def actor_for(user: "User") -> Actor:
    return Actor(user_id=user.id, name=user.display_name)


def document_payload(doc: Document, *, include_content: bool = True) -> dict:
    out = {
        "id": doc.id,
        "title": doc.title,
        "templateId": doc.template_id,
        "templateType": doc.template_type,
        "status": doc.status,
        "workflowStatus": doc.workflow_status,
        "version": doc.version,
        "digitalSignature": doc.digital_signature,
        "approvedAt": _iso(doc.approved_at),
        "productId": doc.product_id,
        "supplierId": doc.supplier_id,
        "assignedUserIds": doc.assigned_user_ids,
        "ownerUserId": doc.owner_user_id,
        "createdAt": _iso(doc.created_at),
        "updatedAt": _iso(doc.updated_at),
    }
    if include_content:
        out["content"] = doc.content
    return out


def approval_payload(a: Approval, *, settled: bool = True) -> dict:
    return {
        "id": a.id,
        "status": a.status,
        "settled": settled,
        "approverId": a.approver_id,
        "approverName": a.approver_name,
        "comments": a.comments,
        "signature": a.signature,
        "approvedAt": _iso(a.approved_at),
        "createdAt": _iso(a.created_at),
    }


def version_payload(v: DocumentVersion, *, include_content: bool = False) -> dict:
    out = {
        "version": v.version,
        "editorUserId": v.editor_user_id,
        "editorName": v.editor_name,
        "comments": v.comments,
        "createdAt": _iso(v.created_at),
    }
    if include_content:
        out["content"] = v.content
    return out
