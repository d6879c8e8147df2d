from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.orm import Session

from app.qms.audit import MAX_EVENTS, event_payload, query_events
from app.qms.db import db_session
from app.qms.errors import ValidationError
from app.qms.models import User
from app.qms.modules.documents.models import Document
from app.qms.modules.documents.service import document_payload
from app.qms.modules.products.models import Product
from app.qms.modules.products.service import product_payload
from app.qms.modules.suppliers.models import Supplier
from app.qms.modules.suppliers.service import supplier_payload
from app.qms.modules.templates.models import Template
from app.qms.modules.templates.service import template_payload
from app.qms.rbac import require_login, require_permission

bp = Blueprint("admin", __name__)

_SEARCH_LIMIT = 25


@bp.get("/users")
@require_login
def users_list():
    """Active users, for the reviewer picker."""
    s = db_session()
    users = s.query(User).filter(User.is_active.is_(True)).order_by(User.email.asc()).all()
    return jsonify({"users": [{"id": u.id, "email": u.email, "name": u.display_name} for u in users]})


def _search_documents(s: Session, term: str) -> list[Document]:
    store = current_app.extensions.get("document_store")
    if store is None:
        return (
            s.query(Document)
            .filter(Document.title.ilike(f"%{term}%"))
            .order_by(Document.updated_at.desc())
            .limit(_SEARCH_LIMIT)
            .all()
        )
    needle = term.lower()
    return [d for d in store.list() if needle in d.title.lower()][:_SEARCH_LIMIT]


@bp.get("/search")
@require_permission("docs.view")
def search():
    """Case-insensitive keyword search across the catalog and documents."""
    s = db_session()
    term = (request.args.get("q") or "").strip()
    if len(term) < 2:
        raise ValidationError("Search term must be at least 2 characters.")
    like = f"%{term}%"

    products = (
        s.query(Product)
        .filter(
            Product.product_name.ilike(like)
            | Product.sku.ilike(like)
            | Product.brand.ilike(like)
            | Product.health_category.ilike(like)
        )
        .order_by(Product.product_name.asc())
        .limit(_SEARCH_LIMIT)
        .all()
    )
    suppliers = (
        s.query(Supplier)
        .filter(Supplier.name.ilike(like) | Supplier.materials_supplied.ilike(like))
        .order_by(Supplier.name.asc())
        .limit(_SEARCH_LIMIT)
        .all()
    )
    templates = (
        s.query(Template)
        .filter(Template.is_active.is_(True), Template.name.ilike(like) | Template.description.ilike(like))
        .order_by(Template.name.asc())
        .limit(_SEARCH_LIMIT)
        .all()
    )
    documents = _search_documents(s, term)

    return jsonify(
        {
            "query": term,
            "products": [product_payload(p) for p in products],
            "suppliers": [supplier_payload(x) for x in suppliers],
            "templates": [template_payload(t, include_content=False) for t in templates],
            "documents": [document_payload(d, include_content=False) for d in documents],
        }
    )


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    s = db_session()
    limit = (request.args.get("limit") or "").strip()
    if limit and not limit.isdigit():
        raise ValidationError("limit must be a positive integer.")
    events = query_events(
        s,
        action=(request.args.get("action") or "").strip() or None,
        entity_type=(request.args.get("entity_type") or "").strip() or None,
        entity_id=(request.args.get("entity_id") or "").strip() or None,
        actor_email=(request.args.get("actor") or "").strip() or None,
        limit=int(limit) if limit else MAX_EVENTS,
    )
    return jsonify({"events": [event_payload(ev) for ev in events]})
