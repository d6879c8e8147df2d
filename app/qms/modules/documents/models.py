from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.qms.models import Base, JSONType

# Storage/processing state.
PROCESSING = "PROCESSING"
READY = "READY"
ERROR = "ERROR"
EDIT_MODE = "EDIT_MODE"
SIGNED = "SIGNED"
DOC_STATUSES = (PROCESSING, READY, ERROR, EDIT_MODE, SIGNED)

# Business approval state.
DRAFT = "DRAFT"
IN_REVIEW = "IN_REVIEW"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
ARCHIVED = "ARCHIVED"
COMPLETED = "COMPLETED"
WORKFLOW_STATUSES = (DRAFT, IN_REVIEW, APPROVED, REJECTED, ARCHIVED, COMPLETED)

# Approval record state.
APPROVAL_APPROVED = "APPROVED"
APPROVAL_REJECTED = "REJECTED"
APPROVAL_PENDING = "PENDING"
APPROVAL_STATUSES = (APPROVAL_APPROVED, APPROVAL_REJECTED, APPROVAL_PENDING)


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_product", "product_id"),
        Index("idx_documents_supplier", "supplier_id"),
        Index("idx_documents_workflow", "workflow_status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # opaque, e.g. "doc_3f2a..."
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    template_id: Mapped[str | None] = mapped_column(ForeignKey("templates.id", ondelete="RESTRICT"), nullable=True)
    # Tag of the content variant (copied from the template at instantiation).
    template_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    content: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EDIT_MODE)
    workflow_status: Mapped[str] = mapped_column(String(16), nullable=False, default=DRAFT)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Set together on approval, never one without the other.
    digital_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)
    owner_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assignments: Mapped[list["DocumentAssignment"]] = relationship(
        "DocumentAssignment",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentAssignment.position",
    )
    approvals: Mapped[list["Approval"]] = relationship(
        "Approval",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Approval.id",
    )
    versions: Mapped[list["DocumentVersion"]] = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentVersion.version",
    )

    @property
    def assigned_user_ids(self) -> list[int]:
        return [a.user_id for a in sorted(self.assignments, key=lambda a: a.position)]


class DocumentAssignment(Base):
    """Reviewer assignment; ``position`` keeps insertion (= notification) order."""

    __tablename__ = "document_assignments"
    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_document_assignment_user"),
        Index("idx_document_assignments_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assigned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="assignments")


class Approval(Base):
    """Append-only approval log entry (one per reviewer per review cycle)."""

    __tablename__ = "approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=APPROVAL_PENDING)
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="approvals")


class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    editor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    editor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="versions")
