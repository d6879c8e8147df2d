from __future__ import annotations

import hashlib
import json
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING

from werkzeug.utils import secure_filename

from app.qms.audit import record_event
from app.qms.errors import ValidationError
from app.qms.modules.files.models import StoredFile

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User
    from app.qms.storage import Storage

# Destination -> key prefix. The first matching destination in this order wins.
DESTINATION_PREFIXES = (
    ("labels", "labels"),
    ("shelfLife", "shelf-life"),
    ("products", "products"),
    ("suppliers", "suppliers"),
    ("rawMaterials", "raw-materials"),
)
GENERAL_PREFIX = "general"
VALID_DESTINATIONS = tuple(d for d, _ in DESTINATION_PREFIXES) + ("general",)


def file_digest_and_bytes(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def sanitize_upload_filename(filename: str) -> str:
    fn = secure_filename(filename or "")
    return fn or "document.bin"


def parse_destinations(raw: str | None) -> list[str]:
    """Destinations arrive as a JSON list (or a comma-separated string from simple clients)."""
    raw = (raw or "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("destinations must be a JSON list.") from None
        if not isinstance(values, list):
            raise ValidationError("destinations must be a JSON list.")
    else:
        values = raw.split(",")
    out: list[str] = []
    for v in values:
        v = str(v).strip()
        if v and v not in out:
            out.append(v)
    unknown = [v for v in out if v not in VALID_DESTINATIONS]
    if unknown:
        raise ValidationError(f"Unknown destinations: {', '.join(unknown)}")
    return out


def storage_prefix(destinations: list[str]) -> str:
    for destination, prefix in DESTINATION_PREFIXES:
        if destination in destinations:
            return prefix
    return GENERAL_PREFIX


def build_storage_key(destinations: list[str], filename: str, upload_date: date | None = None) -> str:
    if upload_date is None:
        upload_date = date.today()
    unique = uuid.uuid4().hex[:12]
    return f"{storage_prefix(destinations)}/{upload_date.isoformat()}/{unique}_{sanitize_upload_filename(filename)}"


def upload_file(
    s: "Session",
    storage: "Storage",
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
    *,
    document_type: str,
    destinations: list[str],
    product_id: int | None = None,
    supplier_id: int | None = None,
    document_id: str | None = None,
) -> StoredFile:
    sha256, size = file_digest_and_bytes(file_bytes)
    key = build_storage_key(destinations, filename)
    storage.put_bytes(key, file_bytes, content_type=content_type)

    sf = StoredFile(
        storage_key=key,
        filename=filename,
        content_type=content_type,
        sha256=sha256,
        size_bytes=size,
        document_type=document_type,
        destinations=destinations,
        product_id=product_id,
        supplier_id=supplier_id,
        document_id=document_id,
        uploaded_by_user_id=user.id,
        uploaded_at=datetime.utcnow(),
    )
    s.add(sf)
    s.flush()

    record_event(
        s,
        actor=user,
        action="file.upload",
        entity_type="StoredFile",
        entity_id=str(sf.id),
        metadata={"filename": filename, "storage_key": key, "sha256": sha256, "destinations": destinations},
    )
    return sf


def delete_file(s: "Session", storage: "Storage", sf: StoredFile, user: "User", reason: str | None = None) -> None:
    storage.delete(sf.storage_key)
    record_event(
        s,
        actor=user,
        action="file.delete",
        entity_type="StoredFile",
        entity_id=str(sf.id),
        reason=reason,
        metadata={"filename": sf.filename, "storage_key": sf.storage_key},
    )
    s.delete(sf)


def file_payload(sf: StoredFile) -> dict:
    return {
        "id": sf.id,
        "filename": sf.filename,
        "contentType": sf.content_type,
        "sha256": sf.sha256,
        "sizeBytes": sf.size_bytes,
        "documentType": sf.document_type,
        "destinations": sf.destinations or [],
        "productId": sf.product_id,
        "supplierId": sf.supplier_id,
        "documentId": sf.document_id,
        "uploadedAt": sf.uploaded_at.isoformat() if sf.uploaded_at else None,
    }
