from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.qms.audit import record_event
from app.qms.db import commit_or_raise, db_session
from app.qms.errors import NotFound, ValidationError
from app.qms.modules.documents.service import document_store
from app.qms.modules.files.models import StoredFile
from app.qms.modules.files.service import delete_file, file_payload, parse_destinations, upload_file
from app.qms.modules.products.models import Product
from app.qms.modules.suppliers.models import Supplier
from app.qms.rbac import require_permission
from app.qms.storage import storage_from_config

bp = Blueprint("files", __name__)


def _form_int(name: str) -> int | None:
    raw = (request.values.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.") from None


def _get_file_or_404(s, file_id: int) -> StoredFile:
    sf = s.get(StoredFile, file_id)
    if not sf:
        raise NotFound(f"File {file_id} not found.")
    return sf


@bp.post("/files")
@require_permission("files.upload")
def files_upload():
    s = db_session()
    u = g.current_user

    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("No file provided.")
    document_type = (request.form.get("document_type") or "").strip()
    if not document_type:
        raise ValidationError("Document type is required.")
    destinations = parse_destinations(request.form.get("destinations"))
    if not destinations:
        raise ValidationError("At least one destination is required.")

    product_id = _form_int("product_id")
    if product_id is not None and not s.get(Product, product_id):
        raise ValidationError(f"Product {product_id} does not exist.")
    supplier_id = _form_int("supplier_id")
    if supplier_id is not None and not s.get(Supplier, supplier_id):
        raise ValidationError(f"Supplier {supplier_id} does not exist.")
    document_id = (request.form.get("document_id") or "").strip() or None
    if document_id:
        document_store(s).get(document_id)

    file_bytes = f.read()
    limit = current_app.config["MAX_UPLOAD_BYTES"]
    if len(file_bytes) > limit:
        raise ValidationError(f"File exceeds the {limit // (1024 * 1024)} MB upload limit.")

    sf = upload_file(
        s,
        storage_from_config(current_app.config),
        file_bytes,
        f.filename,
        (f.mimetype or "application/octet-stream").strip(),
        u,
        document_type=document_type,
        destinations=destinations,
        product_id=product_id,
        supplier_id=supplier_id,
        document_id=document_id,
    )
    commit_or_raise(s)
    return jsonify({"file": file_payload(sf)}), 201


@bp.get("/files")
@require_permission("files.download")
def files_list():
    s = db_session()
    q = s.query(StoredFile)
    product_id = _form_int("product_id")
    if product_id is not None:
        q = q.filter(StoredFile.product_id == product_id)
    supplier_id = _form_int("supplier_id")
    if supplier_id is not None:
        q = q.filter(StoredFile.supplier_id == supplier_id)
    document_id = (request.args.get("document_id") or "").strip()
    if document_id:
        q = q.filter(StoredFile.document_id == document_id)
    document_type = (request.args.get("document_type") or "").strip()
    if document_type:
        q = q.filter(StoredFile.document_type == document_type)
    files = q.order_by(StoredFile.uploaded_at.desc(), StoredFile.id.desc()).all()
    return jsonify({"files": [file_payload(sf) for sf in files]})


@bp.get("/files/<int:file_id>/download")
@require_permission("files.download")
def files_download(file_id: int):
    s = db_session()
    u = g.current_user
    sf = _get_file_or_404(s, file_id)

    fobj = storage_from_config(current_app.config).open(sf.storage_key)
    record_event(
        s,
        actor=u,
        action="file.download",
        entity_type="StoredFile",
        entity_id=str(sf.id),
        metadata={"filename": sf.filename},
    )
    commit_or_raise(s)

    return send_file(
        fobj,
        mimetype=sf.content_type,
        as_attachment=True,
        download_name=sf.filename,
        max_age=0,
    )


@bp.delete("/files/<int:file_id>")
@require_permission("files.delete")
def files_delete(file_id: int):
    s = db_session()
    u = g.current_user
    sf = _get_file_or_404(s, file_id)
    reason = (request.args.get("reason") or "").strip() or None
    delete_file(s, storage_from_config(current_app.config), sf, u, reason)
    commit_or_raise(s)
    return jsonify({"deleted": file_id})
