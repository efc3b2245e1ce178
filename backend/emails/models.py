"""Email ORM models: per-company provider settings and the delivery log."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import EmailStatus
from backend.common.models import (
    TenantMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    str_enum,
    utcnow,
)
from backend.database import Base


class CompanyEmailSettings(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """A company's own email provider; ignored while ``use_platform_default``."""

    __tablename__ = "company_email_settings"

    use_platform_default: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    provider: Mapped[Optional[str]] = mapped_column(sa.String(20))
    from_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    from_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    api_key: Mapped[Optional[str]] = mapped_column(sa.Text)
    smtp_host: Mapped[Optional[str]] = mapped_column(sa.String(255))
    smtp_port: Mapped[Optional[int]] = mapped_column(sa.Integer)
    smtp_username: Mapped[Optional[str]] = mapped_column(sa.String(255))
    smtp_password: Mapped[Optional[str]] = mapped_column(sa.Text)
    smtp_use_tls: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_test_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_test_result: Mapped[Optional[dict]] = mapped_column(JSONB)

    __table_args__ = (
        sa.UniqueConstraint("company_id", name="uq_company_email_settings_company"),
    )


class EmailLog(UUIDPrimaryKeyMixin, Base):
    """One row per recipient per send attempt."""

    __tablename__ = "email_logs"

    # NULL for platform-level mail (e.g. before a company exists)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id", ondelete="CASCADE"), index=True,
    )
    template_type: Mapped[Optional[str]] = mapped_column(sa.String(50), index=True)
    subject: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    recipient_email: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    recipient_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    cc_emails: Mapped[Optional[list]] = mapped_column(JSONB)
    bcc_emails: Mapped[Optional[list]] = mapped_column(JSONB)
    status: Mapped[EmailStatus] = mapped_column(
        str_enum(EmailStatus, "email_status"), nullable=False, default=EmailStatus.pending,
    )
    provider: Mapped[Optional[str]] = mapped_column(sa.String(20))
    message_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONB)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
