"""Document ORM models: DocumentType, Document, DocumentExpiryNotification."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import VerificationStatus
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum, utcnow
from backend.core_hr.models import Employee
from backend.database import Base


class DocumentType(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """Company-defined category (passport, contract, certificate …)."""

    __tablename__ = "document_types"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "code", name="uq_document_types_code"),
        sa.UniqueConstraint("company_id", "name", name="uq_document_types_name"),
    )

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    code: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    requires_expiry: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_required: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    allowed_for_employee_upload: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    allowed_mime_types: Mapped[Optional[list]] = mapped_column(JSONB)
    max_file_size_mb: Mapped[Optional[int]] = mapped_column(sa.Integer)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class Document(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """One uploaded file version. ``is_latest`` marks the head of a version chain."""

    __tablename__ = "employee_documents"
    __table_args__ = (
        sa.Index("ix_employee_documents_employee_latest", "employee_id", "is_latest"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False,
    )
    document_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("document_types.id", ondelete="RESTRICT"), nullable=False,
    )
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    file_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(sa.Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    issue_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date, index=True)

    verification_status: Mapped[VerificationStatus] = mapped_column(
        str_enum(VerificationStatus, "document_verification_status"),
        nullable=False,
        default=VerificationStatus.pending,
    )
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    parent_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employee_documents.id", ondelete="SET NULL"),
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    is_latest: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    access_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_accessed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    deleted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    document_type: Mapped[DocumentType] = relationship()
    employee: Mapped[Employee] = relationship()


class DocumentExpiryNotification(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """One expiry reminder sent; keeps the daily job idempotent."""

    __tablename__ = "document_expiry_notifications"

    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employee_documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    notification_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    days_until_expiry: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    sent_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    sent_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=utcnow)
