from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.orm import Session

from app.qms.audit import record_event
from app.qms.db import commit_or_raise, db_session
from app.qms.errors import ValidationError
from app.qms.models import User
from app.qms.modules.documents.edit_buffer import PendingEditBuffer
from app.qms.modules.documents.service import (
    actor_for,
    approval_payload,
    document_payload,
    version_payload,
    workflow_engine,
)
from app.qms.modules.documents.store import DocumentFilter
from app.qms.modules.documents.workflow import pending_settled
from app.qms.modules.files.models import StoredFile
from app.qms.modules.products.models import Product
from app.qms.modules.suppliers.models import Supplier
from app.qms.rbac import require_permission

bp = Blueprint("documents", __name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _str_field(body: dict, name: str) -> str | None:
    value = body.get(name)
    if value is None or isinstance(value, str):
        return value
    raise ValidationError(f"{name} must be a string.")


def _int_or_none(value, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.") from None


def _arg_int(name: str) -> int | None:
    return _int_or_none((request.args.get(name) or "").strip(), name)


def _check_product(s: Session, product_id: int | None) -> None:
    if product_id is not None and s.get(Product, product_id) is None:
        raise ValidationError(f"Product {product_id} does not exist.")


def _check_supplier(s: Session, supplier_id: int | None) -> None:
    if supplier_id is not None and s.get(Supplier, supplier_id) is None:
        raise ValidationError(f"Supplier {supplier_id} does not exist.")


def _reviewer_ids(s: Session, raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("reviewerIds must be a list.")
    ids = [_int_or_none(v, "reviewerIds") for v in raw]
    ids = [i for i in ids if i is not None]
    if ids:
        found = {u.id for u in s.query(User).filter(User.id.in_(ids), User.is_active.is_(True)).all()}
        missing = sorted(set(ids) - found)
        if missing:
            raise ValidationError(f"Unknown or inactive reviewers: {', '.join(str(i) for i in missing)}")
    return ids


@bp.get("/documents")
@require_permission("docs.view")
def documents_list():
    s = db_session()
    flt = DocumentFilter(
        product_id=_arg_int("productId"),
        supplier_id=_arg_int("supplierId"),
        assigned_user_id=g.current_user.id if request.args.get("mine") == "1" else _arg_int("assignedTo"),
        unassigned=request.args.get("unassigned") == "1",
        owner_user_id=_arg_int("ownerId"),
        workflow_status=(request.args.get("status") or "").strip().upper() or None,
    )
    docs = workflow_engine(s).list(flt)
    return jsonify({"documents": [document_payload(d, include_content=False) for d in docs]})


@bp.post("/documents")
@require_permission("docs.create")
def documents_create():
    s = db_session()
    u = g.current_user
    body = _json_body()

    product_id = _int_or_none(body.get("productId"), "productId")
    supplier_id = _int_or_none(body.get("supplierId"), "supplierId")
    _check_product(s, product_id)
    _check_supplier(s, supplier_id)

    doc = workflow_engine(s).create_from_template(
        (_str_field(body, "templateId") or "").strip(),
        _str_field(body, "title") or "",
        actor_for(u),
        product_id=product_id,
        supplier_id=supplier_id,
    )
    record_event(
        s,
        actor=u,
        action="document.create",
        entity_type="Document",
        entity_id=doc.id,
        metadata={"title": doc.title, "template_id": doc.template_id},
    )
    commit_or_raise(s)
    return jsonify({"document": document_payload(doc)}), 201


@bp.get("/documents/<document_id>")
@require_permission("docs.view")
def documents_detail(document_id: str):
    s = db_session()
    doc = workflow_engine(s).get(document_id)
    return jsonify({"document": document_payload(doc)})


@bp.put("/documents/<document_id>")
@require_permission("docs.edit")
def documents_save(document_id: str):
    s = db_session()
    u = g.current_user
    body = _json_body()
    if "content" not in body:
        raise ValidationError("content is required.")

    as_new_version = bool(body.get("asNewVersion"))
    comments = _str_field(body, "comments")
    doc = workflow_engine(s).save_content(
        document_id,
        body["content"],
        actor_for(u),
        as_new_version=as_new_version,
        comments=comments,
        base_version=_int_or_none(body.get("baseVersion"), "baseVersion"),
    )
    record_event(
        s,
        actor=u,
        action="document.save",
        entity_type="Document",
        entity_id=doc.id,
        reason=(comments or "").strip() or None,
        metadata={"version": doc.version, "new_version": as_new_version},
    )
    commit_or_raise(s)
    return jsonify({"document": document_payload(doc)})


@bp.patch("/documents/<document_id>/fields")
@require_permission("docs.edit")
def documents_patch_fields(document_id: str):
    """Apply dotted-path field edits batched by the editor as one save."""
    s = db_session()
    u = g.current_user
    body = _json_body()
    edits = body.get("edits")
    if not isinstance(edits, list) or not edits:
        raise ValidationError("edits must be a non-empty list.")

    buf = PendingEditBuffer.from_config(workflow_engine(s), document_id, actor_for(u), current_app.config)
    for edit in edits:
        if not isinstance(edit, dict) or not isinstance(edit.get("path"), str):
            raise ValidationError("Each edit needs a string path.")
        buf.stage(edit["path"], edit.get("value"))

    as_new_version = bool(body.get("asNewVersion"))
    comments = _str_field(body, "comments")
    doc = buf.flush(
        as_new_version=as_new_version,
        comments=comments,
        base_version=_int_or_none(body.get("baseVersion"), "baseVersion"),
    )
    record_event(
        s,
        actor=u,
        action="document.save",
        entity_type="Document",
        entity_id=doc.id,
        reason=(comments or "").strip() or None,
        metadata={"version": doc.version, "new_version": as_new_version, "paths": [e["path"] for e in edits]},
    )
    commit_or_raise(s)
    return jsonify({"document": document_payload(doc), "debounceSeconds": buf.debounce_seconds})


@bp.post("/documents/<document_id>/assign")
@require_permission("docs.assign")
def documents_assign(document_id: str):
    s = db_session()
    u = g.current_user
    body = _json_body()

    reviewers = _reviewer_ids(s, body.get("reviewerIds"))
    kwargs: dict = {}
    # Absent keys leave the association alone; explicit null clears it.
    if "productId" in body:
        kwargs["product_id"] = _int_or_none(body["productId"], "productId")
        _check_product(s, kwargs["product_id"])
    if "supplierId" in body:
        kwargs["supplier_id"] = _int_or_none(body["supplierId"], "supplierId")
        _check_supplier(s, kwargs["supplier_id"])

    result = workflow_engine(s).assign(document_id, reviewers, actor_for(u), **kwargs)
    record_event(
        s,
        actor=u,
        action="document.assign",
        entity_type="Document",
        entity_id=document_id,
        metadata={
            "reviewer_ids": result.document.assigned_user_ids,
            "product_id": result.document.product_id,
            "supplier_id": result.document.supplier_id,
            "notified": result.notified,
            "failed": result.failed,
        },
    )
    commit_or_raise(s)
    return jsonify(
        {
            "document": document_payload(result.document),
            "notified": result.notified,
            "notificationFailures": result.failed,
        }
    )


@bp.post("/documents/<document_id>/approve")
@require_permission("docs.approve")
def documents_decide(document_id: str):
    s = db_session()
    u = g.current_user
    body = _json_body()

    comments = _str_field(body, "comments")
    result = workflow_engine(s).decide(
        document_id,
        _str_field(body, "action") or "",
        actor_for(u),
        comments=comments,
        signature=_str_field(body, "signature"),
    )
    if result.action != "edit":
        record_event(
            s,
            actor=u,
            action=f"document.{result.action}",
            entity_type="Document",
            entity_id=document_id,
            reason=(comments or "").strip() or None,
            metadata={"workflow_status": result.document.workflow_status, "version": result.document.version},
        )
        commit_or_raise(s)
    return jsonify(
        {
            "document": document_payload(result.document),
            "action": result.action,
            "reopenEditor": result.reopen_editor,
        }
    )


@bp.post("/documents/<document_id>/complete")
@require_permission("docs.approve")
def documents_complete(document_id: str):
    s = db_session()
    u = g.current_user
    doc = workflow_engine(s).complete(document_id, actor_for(u))
    record_event(s, actor=u, action="document.complete", entity_type="Document", entity_id=doc.id)
    commit_or_raise(s)
    return jsonify({"document": document_payload(doc)})


@bp.delete("/documents/<document_id>")
@require_permission("docs.delete")
def documents_delete(document_id: str):
    s = db_session()
    u = g.current_user
    engine = workflow_engine(s)
    doc = engine.get(document_id)
    title = doc.title
    engine.delete(document_id, actor_for(u))
    s.query(StoredFile).filter(StoredFile.document_id == document_id).update(
        {StoredFile.document_id: None}, synchronize_session=False
    )
    record_event(
        s,
        actor=u,
        action="document.delete",
        entity_type="Document",
        entity_id=document_id,
        metadata={"title": title},
    )
    commit_or_raise(s)
    return jsonify({"deleted": document_id})


@bp.get("/documents/<document_id>/versions")
@require_permission("docs.view")
def documents_versions(document_id: str):
    s = db_session()
    doc = workflow_engine(s).get(document_id)
    include_content = request.args.get("content") == "1"
    return jsonify({"versions": [version_payload(v, include_content=include_content) for v in doc.versions]})


@bp.get("/documents/<document_id>/approvals")
@require_permission("docs.view")
def documents_approvals(document_id: str):
    s = db_session()
    doc = workflow_engine(s).get(document_id)
    flags = pending_settled(doc.approvals)
    return jsonify({"approvals": [approval_payload(a, settled=f) for a, f in zip(doc.approvals, flags)]})
