from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.qms.models import Base, JSONType


class StoredFile(Base):
    """Uploaded file metadata; bytes live in the storage bucket under ``storage_key``."""

    __tablename__ = "stored_files"
    __table_args__ = (
        Index("idx_stored_files_product", "product_id"),
        Index("idx_stored_files_supplier", "supplier_id"),
        Index("idx_stored_files_document", "document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)

    document_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "Label", "COA", "Spec Sheet"
    destinations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # ["labels", "products"]

    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)
    # Plain reference: documents may live in the memory store.
    document_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
