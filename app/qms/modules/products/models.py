from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.qms.models import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("idx_products_brand", "brand"),
        Index("idx_products_name", "product_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "BFCAPSADEK"
    brand: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    health_category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    therapeutic_platform: Mapped[str | None] = mapped_column(String(128), nullable=True)
    nutrient_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    format: Mapped[str | None] = mapped_column(String(64), nullable=True)  # Capsule, Tablet, Powder...
    number_of_actives: Mapped[str | None] = mapped_column(String(32), nullable=True)  # Single / Multiple
    bottle_count: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    manufacturer: Mapped[str | None] = mapped_column(String(128), nullable=True)
    contains_iron: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
