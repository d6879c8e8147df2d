from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.qms.models import Base

FREE = "FREE"
CONTAINS = "CONTAINS"
UNSPECIFIED = "UNSPECIFIED"
ALLERGEN_STATUSES = (FREE, CONTAINS, UNSPECIFIED)


class AllergenEntry(Base):
    """One cell of the allergen matrix: a product SKU against one allergen."""

    __tablename__ = "allergen_entries"
    __table_args__ = (
        UniqueConstraint("product_sku", "allergen", name="uq_allergen_entry_sku_allergen"),
        Index("idx_allergen_entries_allergen_status", "allergen", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Keyed by SKU, not FK: the sheet may list SKUs ahead of the product catalog.
    product_sku: Mapped[str] = mapped_column(String(64), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(128), nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    allergen: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "Soy"
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=UNSPECIFIED)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)  # sheet NOTES column, per product

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
