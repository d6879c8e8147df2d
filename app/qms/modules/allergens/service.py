from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.qms.audit import record_event
from app.qms.modules.allergens.models import AllergenEntry
from app.qms.modules.allergens.parsers import ALLERGENS, AllergenRow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User


def replace_allergen_rows(s: "Session", rows: list[AllergenRow], user: "User | None", *, source: str) -> dict:
    """Each imported SKU's entries are replaced wholesale; SKUs absent from the sheet are left alone."""
    skus = sorted({r.sku for r in rows})
    if skus:
        s.query(AllergenEntry).filter(AllergenEntry.product_sku.in_(skus)).delete(synchronize_session=False)
        s.flush()

    now = datetime.utcnow()
    entries = 0
    for r in rows:
        for allergen, status in r.statuses.items():
            s.add(
                AllergenEntry(
                    product_sku=r.sku,
                    brand=r.brand or None,
                    product_name=r.product_name or None,
                    allergen=allergen,
                    status=status,
                    notes=r.notes,
                    updated_at=now,
                )
            )
            entries += 1
    s.flush()

    record_event(
        s,
        actor=user,
        action="allergen.import",
        entity_type="AllergenEntry",
        metadata={"source": source, "products": len(skus), "entries": entries},
    )
    return {"products": len(skus), "entries": entries}


def allergen_payload(e: AllergenEntry) -> dict:
    return {"allergen": e.allergen, "status": e.status}


def allergen_matrix(entries: list[AllergenEntry]) -> list[dict]:
    """Regroup cells into one row per SKU, allergens in sheet order."""
    by_sku: dict[str, dict] = {}
    for e in entries:
        row = by_sku.get(e.product_sku)
        if row is None:
            row = {
                "sku": e.product_sku,
                "brand": e.brand,
                "productName": e.product_name,
                "notes": e.notes,
                "allergens": {},
            }
            by_sku[e.product_sku] = row
        row["allergens"][e.allergen] = e.status
    out = []
    for sku in sorted(by_sku):
        row = by_sku[sku]
        known = row["allergens"]
        ordered = {a: known[a] for a in ALLERGENS if a in known}
        ordered.update({a: st for a, st in known.items() if a not in ordered})
        row["allergens"] = ordered
        out.append(row)
    return out
