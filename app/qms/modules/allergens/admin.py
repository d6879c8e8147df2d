from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.qms.db import commit_or_raise, db_session
from app.qms.errors import ValidationError
from app.qms.modules.allergens.models import ALLERGEN_STATUSES, FREE, AllergenEntry
from app.qms.modules.allergens.parsers import ALLERGENS, parse_allergen_file
from app.qms.modules.allergens.service import allergen_matrix, replace_allergen_rows
from app.qms.rbac import require_permission

bp = Blueprint("allergens", __name__)


@bp.get("/allergens")
@require_permission("allergens.view")
def allergens_list():
    s = db_session()
    q = s.query(AllergenEntry)

    sku = (request.args.get("sku") or "").strip().upper()
    if sku:
        q = q.filter(AllergenEntry.product_sku == sku)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            AllergenEntry.product_sku.ilike(like)
            | AllergenEntry.brand.ilike(like)
            | AllergenEntry.product_name.ilike(like)
        )
    # e.g. ?free_from=Soy -> only SKUs marked free from soy
    free_from = (request.args.get("free_from") or "").strip()
    if free_from:
        free_skus = (
            s.query(AllergenEntry.product_sku)
            .filter(AllergenEntry.allergen == free_from, AllergenEntry.status == FREE)
            .scalar_subquery()
        )
        q = q.filter(AllergenEntry.product_sku.in_(free_skus))

    entries = q.order_by(AllergenEntry.product_sku.asc(), AllergenEntry.id.asc()).all()
    return jsonify({"allergens": list(ALLERGENS), "statuses": list(ALLERGEN_STATUSES), "rows": allergen_matrix(entries)})


@bp.post("/allergens/import")
@require_permission("allergens.import")
def allergens_import():
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("No file provided.")
    try:
        rows, errors = parse_allergen_file(f.filename, f.read())
    except ValueError as e:
        raise ValidationError(str(e)) from e

    result = replace_allergen_rows(s, rows, g.current_user, source=f.filename)
    commit_or_raise(s)
    return jsonify(
        {
            "products": result["products"],
            "entries": result["entries"],
            "errors": [{"row": e.row_number, "message": e.message} for e in errors],
        }
    )
