"""Email service: render, log, send with company → platform fallback."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import EmailStatus
from backend.common.exceptions import ValidationException
from backend.common.models import utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.emails import factory
from backend.emails.models import CompanyEmailSettings, EmailLog
from backend.emails.providers import EmailProvider, create_provider
from backend.emails.schemas import EmailLogOut
from backend.emails.templates import TEMPLATE_TYPES, render_email
from backend.emails.types import (
    EmailMessage,
    EmailRecipient,
    EmailSendResult,
    normalize_recipients,
)

logger = logging.getLogger(__name__)

_SETTINGS_FIELDS = (
    "use_platform_default", "provider", "from_email", "from_name", "api_key",
    "smtp_host", "smtp_port", "smtp_username", "smtp_password", "smtp_use_tls",
)


class EmailService:
    """Async email operations."""

    # ─────────────────────────────────────────────────────────────────
    # Sending
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _deliver(
        db: AsyncSession, message: EmailMessage, company_id: Optional[uuid.UUID],
    ) -> EmailSendResult:
        provider, is_company = await factory.get_provider(db, company_id)
        result = await EmailService._send_via(provider, message)
        if not result.success and is_company:
            logger.warning(
                "Company provider %s failed (%s), retrying with platform provider",
                provider.name, result.error,
                extra={"company_id": company_id, "provider": provider.name},
            )
            platform = await factory.get_platform_provider(db)
            result = await EmailService._send_via(platform, message)
        return result

    @staticmethod
    async def _send_via(provider: EmailProvider, message: EmailMessage) -> EmailSendResult:
        try:
            return await provider.send(message)
        except Exception as exc:
            logger.exception("Provider %s raised while sending", provider.name)
            return EmailSendResult(success=False, provider=provider.name, error=str(exc))

    @staticmethod
    async def send(
        db: AsyncSession,
        *,
        email_type: str,
        to: Any,
        data: dict[str, Any],
        company_id: Optional[uuid.UUID] = None,
        cc: Any = None,
        bcc: Any = None,
        reply_to: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> EmailSendResult:
        """Render *email_type* with *data* and send it to *to*.

        A ``pending`` row is written to ``email_logs`` before delivery and
        updated to ``sent`` / ``failed`` afterwards.
        """
        if email_type not in TEMPLATE_TYPES:
            raise ValueError(f"Unknown email template: {email_type}")

        recipients = normalize_recipients(to)
        if not recipients:
            logger.warning("Email %s has no valid recipients", email_type, extra={"email_type": email_type})
            return EmailSendResult(success=False, provider="none", error="No valid recipients")

        rendered = render_email(email_type, data)
        message = EmailMessage(
            to=recipients,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            cc=normalize_recipients(cc) if cc else [],
            bcc=normalize_recipients(bcc) if bcc else [],
            reply_to=EmailRecipient(email=reply_to) if reply_to else None,
            tags={"template": email_type},
        )

        log = EmailLog(
            company_id=company_id,
            template_type=email_type,
            subject=message.subject,
            recipient_email=recipients[0].email,
            recipient_name=recipients[0].name,
            cc_emails=[r.email for r in message.cc] or None,
            bcc_emails=[r.email for r in message.bcc] or None,
            status=EmailStatus.pending,
            metadata_={**(metadata or {}), "to": [r.email for r in recipients]},
        )
        db.add(log)
        await db.flush()

        result = await EmailService._deliver(db, message, company_id)

        log.provider = result.provider
        log.message_id = result.message_id
        if result.success:
            log.status = EmailStatus.sent
            log.sent_at = utcnow()
            logger.info(
                "Sent %s email via %s", email_type, result.provider,
                extra={"email_type": email_type, "provider": result.provider, "company_id": company_id},
            )
        else:
            log.status = EmailStatus.failed
            log.error_message = result.error
            logger.error(
                "Failed to send %s email: %s", email_type, result.error,
                extra={"email_type": email_type, "provider": result.provider, "company_id": company_id},
            )
        await db.flush()
        return result

    @staticmethod
    async def send_batch(
        db: AsyncSession, messages: Sequence[dict[str, Any]],
    ) -> list[EmailSendResult]:
        """Send several messages; each item holds the keyword args of ``send``."""
        results = []
        for item in messages:
            results.append(await EmailService.send(db, **item))
        return results

    # ─────────────────────────────────────────────────────────────────
    # Company settings
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_settings(db: AsyncSession, company_id: uuid.UUID) -> CompanyEmailSettings:
        row = await factory.get_company_email_settings(db, company_id)
        if row is None:
            row = CompanyEmailSettings(company_id=company_id, use_platform_default=True)
            db.add(row)
            await db.flush()
        return row

    @staticmethod
    async def update_settings(
        db: AsyncSession, company_id: uuid.UUID, changes: dict[str, Any],
    ) -> CompanyEmailSettings:
        row = await EmailService.get_settings(db, company_id)
        for key, value in changes.items():
            if key in _SETTINGS_FIELDS:
                setattr(row, key, value)

        if not row.use_platform_default:
            if not row.provider:
                raise ValidationException({"provider": ["A provider is required."]})
            provider = create_provider(factory.config_from_company(row))
            if not provider.validate_config():
                raise ValidationException(
                    {"provider": [f"The {row.provider} configuration is incomplete."]},
                )
        # any change invalidates a previous successful test
        row.is_verified = False
        row.verified_at = None
        await db.flush()
        return row

    @staticmethod
    async def send_test(
        db: AsyncSession, company_id: uuid.UUID, to: str,
    ) -> EmailSendResult:
        """Send a test message through the company's configured provider only."""
        recipients = normalize_recipients(to)
        if not recipients:
            raise ValidationException({"to": ["A valid email address is required."]})
        row = await EmailService.get_settings(db, company_id)
        if row.use_platform_default:
            provider = await factory.get_platform_provider(db)
        else:
            provider = create_provider(factory.config_from_company(row))

        message = EmailMessage(
            to=recipients,
            subject="Test email",
            html="<p>Your email settings are working.</p>",
            text="Your email settings are working.",
            tags={"template": "test"},
        )
        result = await EmailService._send_via(provider, message)

        now = utcnow()
        row.last_test_at = now
        row.last_test_result = {
            "success": result.success,
            "provider": result.provider,
            "error": result.error,
            "tested_to": recipients[0].email,
        }
        if result.success:
            row.is_verified = True
            row.verified_at = now
        await db.flush()
        return result

    # ─────────────────────────────────────────────────────────────────
    # Logs
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_logs(
        db: AsyncSession,
        company_id: Optional[uuid.UUID],
        params: PaginationParams,
        *,
        status: Optional[EmailStatus] = None,
        template_type: Optional[str] = None,
    ) -> PaginatedResponse:
        query = select(EmailLog).order_by(EmailLog.created_at.desc())
        if company_id is not None:
            query = query.where(EmailLog.company_id == company_id)
        if status is not None:
            query = query.where(EmailLog.status == status)
        if template_type:
            query = query.where(EmailLog.template_type == template_type)
        return await paginate(db, query, params, model=EmailLog, schema=EmailLogOut)
