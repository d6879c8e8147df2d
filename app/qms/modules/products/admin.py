from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.qms.db import commit_or_raise, db_session
from app.qms.errors import Conflict, NotFound, ValidationError
from app.qms.modules.allergens.models import AllergenEntry
from app.qms.modules.allergens.service import allergen_payload
from app.qms.modules.documents.service import document_payload, document_store
from app.qms.modules.documents.store import DocumentFilter
from app.qms.modules.files.models import StoredFile
from app.qms.modules.files.service import file_payload
from app.qms.modules.products.models import Product
from app.qms.modules.products.parsers import parse_products_csv
from app.qms.modules.products.service import (
    create_product,
    import_products,
    product_payload,
    validate_product_payload,
)
from app.qms.rbac import require_permission

bp = Blueprint("products", __name__)


@bp.get("/products")
@require_permission("products.view")
def products_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    category = (request.args.get("category") or "").strip()
    brand = (request.args.get("brand") or "").strip()

    q = s.query(Product)
    if search:
        like = f"%{search}%"
        q = q.filter(
            Product.product_name.ilike(like)
            | Product.sku.ilike(like)
            | Product.brand.ilike(like)
            | Product.health_category.ilike(like)
        )
    if category:
        q = q.filter(Product.health_category == category)
    if brand:
        q = q.filter(Product.brand == brand)

    products = q.order_by(Product.product_name.asc()).all()
    return jsonify({"products": [product_payload(p) for p in products]})


@bp.get("/products/<sku>")
@require_permission("products.view")
def product_detail(sku: str):
    s = db_session()
    product = s.query(Product).filter(Product.sku == sku.strip().upper()).one_or_none()
    if not product:
        raise NotFound(f"Product {sku!r} not found.")

    docs = document_store(s).list(DocumentFilter(product_id=product.id))
    files = (
        s.query(StoredFile)
        .filter(StoredFile.product_id == product.id)
        .order_by(StoredFile.uploaded_at.desc())
        .all()
    )
    allergens = (
        s.query(AllergenEntry)
        .filter(AllergenEntry.product_sku == product.sku)
        .order_by(AllergenEntry.allergen.asc())
        .all()
    )
    return jsonify(
        {
            "product": product_payload(product),
            "documents": [document_payload(d, include_content=False) for d in docs],
            "files": [file_payload(f) for f in files],
            "allergens": [allergen_payload(a) for a in allergens],
        }
    )


@bp.post("/products")
@require_permission("products.create")
def products_create():
    s = db_session()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    errors = validate_product_payload(payload)
    if errors:
        raise ValidationError("Invalid product.", errors=errors)
    sku = payload["sku"].strip().upper()
    if s.query(Product).filter(Product.sku == sku).one_or_none():
        raise Conflict(f"Product {sku} already exists.")
    product = create_product(s, payload, g.current_user)
    commit_or_raise(s)
    return jsonify({"product": product_payload(product)}), 201


@bp.post("/products/import")
@require_permission("products.import")
def products_import():
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("No file provided.")
    try:
        rows, errors = parse_products_csv(f.read())
    except ValueError as e:
        raise ValidationError(str(e)) from e

    result = import_products(s, rows, g.current_user, source=f.filename)
    commit_or_raise(s)
    return jsonify(
        {
            "created": result["created"],
            "updated": result["updated"],
            "errors": [{"row": e.row_number, "message": e.message} for e in errors],
        }
    )
