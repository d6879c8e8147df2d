from __future__ import annotations

from datetime import date, timedelta

from flask import Blueprint, g, jsonify, request

from app.qms.db import commit_or_raise, db_session
from app.qms.errors import NotFound, ValidationError
from app.qms.modules.documents.service import document_payload, document_store
from app.qms.modules.documents.store import DocumentFilter
from app.qms.modules.files.models import StoredFile
from app.qms.modules.files.service import file_payload
from app.qms.modules.suppliers.models import Supplier
from app.qms.modules.suppliers.service import (
    create_supplier,
    supplier_payload,
    update_supplier,
    validate_supplier_payload,
)
from app.qms.rbac import require_permission

bp = Blueprint("suppliers", __name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


@bp.get("/suppliers")
@require_permission("suppliers.view")
def suppliers_list():
    s = db_session()

    # Filters
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    category_filter = (request.args.get("category") or "").strip()

    q = s.query(Supplier)
    if search:
        like = f"%{search}%"
        q = q.filter((Supplier.name.ilike(like)) | (Supplier.materials_supplied.ilike(like)))
    if status_filter:
        q = q.filter(Supplier.status == status_filter)
    if category_filter:
        q = q.filter(Supplier.category == category_filter)
    if request.args.get("expiring") == "1":
        # Certifications lapsing within 30 days (or already lapsed).
        q = q.filter(
            Supplier.certification_expiration.isnot(None),
            Supplier.certification_expiration <= date.today() + timedelta(days=30),
        )

    suppliers = q.order_by(Supplier.name.asc()).all()

    categories = s.query(Supplier.category).filter(Supplier.category.isnot(None)).distinct().all()
    categories = sorted([cat[0] for cat in categories if cat[0]])

    return jsonify({"suppliers": [supplier_payload(x) for x in suppliers], "categories": categories})


@bp.post("/suppliers")
@require_permission("suppliers.create")
def suppliers_create():
    s = db_session()
    payload = _json_body()
    errors = validate_supplier_payload(payload, creating=True)
    if errors:
        raise ValidationError("Invalid supplier.", errors=errors)
    supplier = create_supplier(s, payload, g.current_user)
    commit_or_raise(s)
    return jsonify({"supplier": supplier_payload(supplier)}), 201


@bp.get("/suppliers/<int:supplier_id>")
@require_permission("suppliers.view")
def supplier_detail(supplier_id: int):
    s = db_session()
    supplier = s.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound(f"Supplier {supplier_id} not found.")
    docs = document_store(s).list(DocumentFilter(supplier_id=supplier_id))
    files = (
        s.query(StoredFile)
        .filter(StoredFile.supplier_id == supplier_id)
        .order_by(StoredFile.uploaded_at.desc())
        .all()
    )
    return jsonify(
        {
            "supplier": supplier_payload(supplier),
            "documents": [document_payload(d, include_content=False) for d in docs],
            "files": [file_payload(f) for f in files],
        }
    )


@bp.put("/suppliers/<int:supplier_id>")
@require_permission("suppliers.edit")
def supplier_edit(supplier_id: int):
    s = db_session()
    supplier = s.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound(f"Supplier {supplier_id} not found.")
    payload = _json_body()
    errors = validate_supplier_payload(payload, creating=False)
    if errors:
        raise ValidationError("Invalid supplier.", errors=errors)
    reason = (payload.get("reason") or "").strip() or None
    update_supplier(s, supplier, payload, g.current_user, reason=reason)
    commit_or_raise(s)
    return jsonify({"supplier": supplier_payload(supplier)})
