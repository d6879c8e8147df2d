from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from app.qms.audit import record_event
from app.qms.errors import text_field_errors
from app.qms.modules.suppliers.models import Supplier

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User


VALID_STATUSES = ("Approved", "Conditional", "Pending", "Rejected")

# Free-text fields copied straight from the payload (blank -> NULL).
_TEXT_FIELDS = (
    "category",
    "materials_supplied",
    "contact_name",
    "contact_email",
    "phone",
    "address",
    "notes",
)
_DATE_FIELDS = ("initial_listing_date", "certification_expiration")


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    return date.fromisoformat(s)


def validate_supplier_payload(payload: dict, *, creating: bool = True) -> list[str]:
    """Validate supplier creation/update payload. Returns list of errors."""
    errors = text_field_errors(payload, ("name", "status", "reason", *_TEXT_FIELDS))
    if errors:
        return errors
    name = (payload.get("name") or "").strip()
    if creating and not name:
        errors.append("Name is required.")
    status = (payload.get("status") or "").strip()
    if status and status not in VALID_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
    for field in _DATE_FIELDS:
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field} must be a YYYY-MM-DD date.")
    custom = payload.get("custom_fields")
    if custom is not None and not isinstance(custom, dict):
        errors.append("custom_fields must be an object.")
    return errors


def create_supplier(s: "Session", payload: dict, user: "User") -> Supplier:
    now = datetime.utcnow()
    supplier = Supplier(
        name=(payload.get("name") or "").strip(),
        status=(payload.get("status") or "Pending").strip(),
        initial_listing_date=parse_date(payload.get("initial_listing_date")),
        certification_expiration=parse_date(payload.get("certification_expiration")),
        custom_fields=payload.get("custom_fields") or {},
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    for field in _TEXT_FIELDS:
        setattr(supplier, field, (payload.get(field) or "").strip() or None)
    s.add(supplier)
    s.flush()

    record_event(
        s,
        actor=user,
        action="supplier.create",
        entity_type="Supplier",
        entity_id=str(supplier.id),
        metadata={"name": supplier.name, "status": supplier.status},
    )
    return supplier


def update_supplier(s: "Session", supplier: Supplier, payload: dict, user: "User", reason: str | None = None) -> Supplier:
    """Partial update: only keys present in the payload are touched."""
    changes = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != supplier.name:
        changes["name"] = {"old": supplier.name, "new": new_name}
        supplier.name = new_name

    new_status = (payload.get("status") or "").strip()
    if new_status and new_status != supplier.status:
        changes["status"] = {"old": supplier.status, "new": new_status}
        supplier.status = new_status

    for field in _TEXT_FIELDS:
        if field not in payload:
            continue
        new_value = (payload.get(field) or "").strip() or None
        old_value = getattr(supplier, field)
        if new_value != old_value:
            changes[field] = {"old": old_value, "new": new_value}
            setattr(supplier, field, new_value)

    for field in _DATE_FIELDS:
        if field not in payload:
            continue
        new_value = parse_date(payload.get(field))
        old_value = getattr(supplier, field)
        if new_value != old_value:
            changes[field] = {"old": str(old_value), "new": str(new_value)}
            setattr(supplier, field, new_value)

    if "custom_fields" in payload:
        new_custom = payload.get("custom_fields") or {}
        if new_custom != (supplier.custom_fields or {}):
            changes["custom_fields"] = {"old": supplier.custom_fields, "new": new_custom}
            supplier.custom_fields = new_custom

    supplier.updated_at = datetime.utcnow()
    supplier.updated_by_user_id = user.id

    record_event(
        s,
        actor=user,
        action="supplier.edit",
        entity_type="Supplier",
        entity_id=str(supplier.id),
        reason=reason,
        metadata={"name": supplier.name, "changes": changes},
    )
    return supplier


def supplier_payload(supplier: Supplier) -> dict:
    return {
        "id": supplier.id,
        "name": supplier.name,
        "status": supplier.status,
        "category": supplier.category,
        "materials_supplied": supplier.materials_supplied,
        "contact_name": supplier.contact_name,
        "contact_email": supplier.contact_email,
        "phone": supplier.phone,
        "address": supplier.address,
        "initial_listing_date": supplier.initial_listing_date.isoformat() if supplier.initial_listing_date else None,
        "certification_expiration": (
            supplier.certification_expiration.isoformat() if supplier.certification_expiration else None
        ),
        "notes": supplier.notes,
        "custom_fields": supplier.custom_fields or {},
        "updated_at": supplier.updated_at.isoformat() if supplier.updated_at else None,
    }
