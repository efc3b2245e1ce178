"""Common ORM building blocks: mixins, enum column helper, PlatformSetting."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.exceptions import NotFoundException
from backend.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def str_enum(enum_cls: type[enum.Enum], name: str) -> sa.Enum:
    """Enum column type persisted by *value* (``"import"``, not ``"import_"``)."""
    return sa.Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ── Mixins ──────────────────────────────────────────────────────────

class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )


class TenantMixin:
    """Row owned by exactly one company; every query filters on it."""

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )


# ── Platform-wide settings ──────────────────────────────────────────

class PlatformSetting(Base):
    """Key/value settings that apply to the whole platform (email, trials)."""

    __tablename__ = "platform_settings"

    key: Mapped[str] = mapped_column(sa.String(100), primary_key=True)
    value: Mapped[dict] = mapped_column(JSONB, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow,
    )
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )


async def get_platform_setting(db, key: str) -> Optional[dict]:
    """Return the JSON value stored under *key*, or None."""
    row = await db.get(PlatformSetting, key)
    return row.value if row else None


async def get_for_company(db, model, company_id: uuid.UUID, entity_id: uuid.UUID, label: Optional[str] = None):
    """Load *model* by id within one company; other tenants' rows read as missing."""
    row = await db.get(model, entity_id)
    if row is None or row.company_id != company_id:
        raise NotFoundException(entity_type=label or model.__name__, entity_id=entity_id)
    return row
