from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.qms.audit import record_event
from app.qms.errors import text_field_errors
from app.qms.modules.products.models import Product

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User

PRODUCT_FIELDS = (
    "brand",
    "product_name",
    "health_category",
    "therapeutic_platform",
    "nutrient_type",
    "format",
    "number_of_actives",
    "bottle_count",
    "unit_count",
    "manufacturer",
    "contains_iron",
)


def validate_product_payload(payload: dict) -> list[str]:
    errors = text_field_errors(payload, ("sku", "brand", "product_name"))
    if errors:
        return errors
    if not (payload.get("sku") or "").strip():
        errors.append("SKU is required.")
    if not (payload.get("product_name") or "").strip():
        errors.append("Product name is required.")
    unit_count = payload.get("unit_count")
    if unit_count not in (None, ""):
        try:
            if int(unit_count) < 0:
                errors.append("Unit count cannot be negative.")
        except (TypeError, ValueError):
            errors.append("Unit count must be an integer.")
    return errors


def _normalized(payload: dict) -> dict:
    out: dict = {}
    for field in PRODUCT_FIELDS:
        if field not in payload:
            continue
        value = payload[field]
        if field == "unit_count":
            value = int(value or 0)
        elif field == "contains_iron":
            value = bool(value)
        elif field in ("brand", "product_name"):
            value = (value or "").strip()
        else:
            value = (str(value) if value is not None else "").strip() or None
        out[field] = value
    return out


def upsert_product(s: "Session", row: dict) -> tuple[Product, bool]:
    """Insert or update by SKU. Returns (product, created)."""
    sku = row["sku"].strip().upper()
    product = s.query(Product).filter(Product.sku == sku).one_or_none()
    now = datetime.utcnow()
    values = _normalized(row)
    if product is None:
        product = Product(sku=sku, created_at=now, updated_at=now, **values)
        s.add(product)
        return product, True
    for field, value in values.items():
        setattr(product, field, value)
    product.updated_at = now
    return product, False


def create_product(s: "Session", payload: dict, user: "User") -> Product:
    product, _created = upsert_product(s, payload)
    s.flush()
    record_event(
        s,
        actor=user,
        action="product.create",
        entity_type="Product",
        entity_id=product.sku,
        metadata={"name": product.product_name, "brand": product.brand},
    )
    return product


def import_products(s: "Session", rows: list[dict], user: "User | None", *, source: str = "csv") -> dict:
    created = updated = 0
    for row in rows:
        _product, was_created = upsert_product(s, row)
        if was_created:
            created += 1
        else:
            updated += 1
    s.flush()
    record_event(
        s,
        actor=user,
        action="product.import",
        entity_type="Product",
        metadata={"source": source, "created": created, "updated": updated},
    )
    return {"created": created, "updated": updated}


def product_payload(p: Product) -> dict:
    return {
        "id": p.id,
        "sku": p.sku,
        "brand": p.brand,
        "productName": p.product_name,
        "healthCategory": p.health_category,
        "therapeuticPlatform": p.therapeutic_platform,
        "nutrientType": p.nutrient_type,
        "format": p.format,
        "numberOfActives": p.number_of_actives,
        "bottleCount": p.bottle_count,
        "unitCount": p.unit_count,
        "manufacturer": p.manufacturer,
        "containsIron": p.contains_iron,
    }
