"""Per-company settings: seeded defaults and typed readers."""

from __future__ import annotations

import copy
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.companies.models import CompanyMember, CompanySetting
from backend.config import settings

DEFAULT_COMPANY_SETTINGS: dict[str, dict[str, Any]] = {
    "employee_id_format": {"prefix": "EMP", "padding": 4, "auto_generate": True},
    "notification_preferences": {
        "document_expiry_days": [30, 7, 1],
        "send_onboarding_email": True,
    },
    "security": {
        "require_password_change_first_login": True,
        "password_expiry_days": None,
        "max_failed_attempts": settings.MAX_FAILED_LOGIN_ATTEMPTS,
        "lockout_duration_minutes": settings.LOCKOUT_DURATION_MINUTES,
    },
    "shift_defaults": {
        "default_start_time": "09:00",
        "default_end_time": "18:00",
        "default_weekly_off": ["saturday", "sunday"],
    },
}


async def seed_company_settings(db: AsyncSession, company_id: uuid.UUID) -> None:
    existing = set(
        (
            await db.execute(
                select(CompanySetting.key).where(CompanySetting.company_id == company_id)
            )
        ).scalars().all()
    )
    for key, value in DEFAULT_COMPANY_SETTINGS.items():
        if key not in existing:
            db.add(CompanySetting(company_id=company_id, key=key, value=copy.deepcopy(value)))
    await db.flush()


async def get_company_setting(
    db: AsyncSession, company_id: Optional[uuid.UUID], key: str,
) -> dict[str, Any]:
    """Stored value merged over the default for *key* (``{}`` if unknown)."""
    value = copy.deepcopy(DEFAULT_COMPANY_SETTINGS.get(key, {}))
    if company_id is None:
        return value
    row = (
        await db.execute(
            select(CompanySetting).where(
                CompanySetting.company_id == company_id, CompanySetting.key == key,
            )
        )
    ).scalars().first()
    if row is not None and isinstance(row.value, dict):
        value.update(row.value)
    return value


async def primary_company_id(db: AsyncSession, user_id: uuid.UUID) -> Optional[uuid.UUID]:
    """Primary active membership, else the oldest active one."""
    result = await db.execute(
        select(CompanyMember.company_id)
        .where(CompanyMember.user_id == user_id, CompanyMember.is_active.is_(True))
        .order_by(CompanyMember.is_primary.desc(), CompanyMember.joined_at)
        .limit(1)
    )
    return result.scalars().first()
