"""Choose the email provider for a send.

Order: the company's own provider (when ``use_platform_default`` is off and
its configuration validates), then the platform provider stored under
``platform_settings['email']``, then the environment, then console.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.models import get_platform_setting
from backend.config import settings
from backend.emails.models import CompanyEmailSettings
from backend.emails.providers import ConsoleEmailProvider, EmailProvider, create_provider
from backend.emails.types import ProviderConfig

logger = logging.getLogger(__name__)


def config_from_company(row: CompanyEmailSettings) -> ProviderConfig:
    return ProviderConfig(
        provider=row.provider or "console",
        from_email=row.from_email or settings.EMAIL_FROM_ADDRESS,
        from_name=row.from_name or settings.EMAIL_FROM_NAME,
        api_key=row.api_key,
        smtp_host=row.smtp_host,
        smtp_port=row.smtp_port,
        smtp_username=row.smtp_username,
        smtp_password=row.smtp_password,
        smtp_use_tls=row.smtp_use_tls,
    )


def config_from_env() -> ProviderConfig:
    return ProviderConfig(
        provider=settings.EMAIL_PROVIDER,
        from_email=settings.EMAIL_FROM_ADDRESS,
        from_name=settings.EMAIL_FROM_NAME,
        api_key=settings.EMAIL_API_KEY or None,
        smtp_host=settings.SMTP_HOST or None,
        smtp_port=settings.SMTP_PORT,
        smtp_username=settings.SMTP_USERNAME or None,
        smtp_password=settings.SMTP_PASSWORD or None,
        smtp_use_tls=settings.SMTP_USE_TLS,
    )


def config_from_platform(stored: dict) -> ProviderConfig:
    """Overlay a ``platform_settings['email']`` value on the env config."""
    base = config_from_env()
    return ProviderConfig(
        provider=stored.get("provider") or base.provider,
        from_email=stored.get("from_email") or base.from_email,
        from_name=stored.get("from_name") or base.from_name,
        api_key=stored.get("api_key") or base.api_key,
        smtp_host=stored.get("smtp_host") or base.smtp_host,
        smtp_port=stored.get("smtp_port") or base.smtp_port,
        smtp_username=stored.get("smtp_username") or base.smtp_username,
        smtp_password=stored.get("smtp_password") or base.smtp_password,
        smtp_use_tls=stored.get("smtp_use_tls", base.smtp_use_tls),
    )


async def get_company_email_settings(
    db: AsyncSession, company_id: uuid.UUID,
) -> Optional[CompanyEmailSettings]:
    result = await db.execute(
        select(CompanyEmailSettings).where(CompanyEmailSettings.company_id == company_id)
    )
    return result.scalars().first()


async def get_platform_provider(db: AsyncSession) -> EmailProvider:
    stored = await get_platform_setting(db, "email")
    config = config_from_platform(stored) if stored else config_from_env()
    provider = create_provider(config)
    if not provider.validate_config():
        logger.warning(
            "Platform email provider %r is not fully configured, using console",
            config.provider,
        )
        return ConsoleEmailProvider(config)
    return provider


async def get_company_provider(
    db: AsyncSession, company_id: uuid.UUID,
) -> Optional[EmailProvider]:
    """The company's own provider, or None when the platform default applies."""
    row = await get_company_email_settings(db, company_id)
    if row is None or row.use_platform_default or not row.provider:
        return None
    provider = create_provider(config_from_company(row))
    if not provider.validate_config():
        logger.warning(
            "Company email provider %r is invalid, using platform default",
            row.provider,
            extra={"company_id": company_id},
        )
        return None
    return provider


async def get_provider(
    db: AsyncSession, company_id: Optional[uuid.UUID] = None,
) -> tuple[EmailProvider, bool]:
    """Return ``(provider, is_company_provider)``."""
    if company_id is not None:
        provider = await get_company_provider(db, company_id)
        if provider is not None:
            return provider, True
    return await get_platform_provider(db), False
