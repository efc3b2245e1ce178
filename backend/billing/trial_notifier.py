"""Scheduled trial-expiration emails.

Every trialing company whose trial ends in 7, 3 or 1 days gets a reminder
sent to its active admins; a trial that has already ended gets a single
``trial_expired`` email and the subscription is moved to ``trial_expired``.
Sends are de-duplicated through ``trial_email_logs``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.models import User
from backend.billing.models import Subscription, TrialEmailLog
from backend.billing.schemas import TrialJobResult
from backend.billing.service import BillingService, days_remaining
from backend.common.constants import ADMIN_ROLES, SubscriptionStatus
from backend.common.models import as_utc, utcnow
from backend.companies.models import Company, CompanyMember
from backend.config import settings
from backend.emails.service import EmailService

logger = logging.getLogger(__name__)

EMAIL_THRESHOLDS = (7, 3, 1)


def expiring_email_type(days: int) -> str:
    return f"trial_expiring_{days}_day{'' if days == 1 else 's'}"


async def _admins(db: AsyncSession, company_id) -> list[User]:
    result = await db.execute(
        select(User)
        .join(CompanyMember, CompanyMember.user_id == User.id)
        .where(
            CompanyMember.company_id == company_id,
            CompanyMember.is_active.is_(True),
            CompanyMember.role.in_(ADMIN_ROLES),
            User.is_active.is_(True),
        )
        .order_by(User.email)
    )
    return list(result.scalars().all())


async def _already_sent(
    db: AsyncSession, company_id, email_type: str, recipient: str, sent_date=None,
) -> bool:
    query = select(TrialEmailLog.id).where(
        TrialEmailLog.company_id == company_id,
        TrialEmailLog.email_type == email_type,
        TrialEmailLog.recipient_email == recipient,
    )
    if sent_date is not None:
        query = query.where(TrialEmailLog.sent_date == sent_date)
    return (await db.execute(query.limit(1))).first() is not None


async def send_trial_expiration_emails(
    db: AsyncSession, now: Optional[datetime] = None,
) -> TrialJobResult:
    now = now or utcnow()
    today = now.date()
    billing_url = f"{settings.APP_URL}/settings/billing"

    subscriptions = (
        await db.execute(
            select(Subscription, Company)
            .join(Company, Company.id == Subscription.company_id)
            .where(
                Subscription.status == SubscriptionStatus.trialing,
                Subscription.trial_ends_at.is_not(None),
            )
        )
    ).all()
    logger.info("Trial email job: %d trialing companies", len(subscriptions))

    emails_sent = 0
    errors: list[str] = []

    for subscription, company in subscriptions:
        expired = as_utc(subscription.trial_ends_at) <= now
        remaining = 0 if expired else days_remaining(subscription.trial_ends_at, now)
        if not expired and remaining not in EMAIL_THRESHOLDS:
            continue
        email_type = "trial_expired" if expired else expiring_email_type(remaining)

        can_extend, pending = await BillingService.can_request_extension(db, company.id)
        admins = await _admins(db, company.id)
        if not admins:
            logger.info("No admins to notify", extra={"company_id": company.id})

        for admin in admins:
            # trial_expired goes out once ever; reminders once per day
            if await _already_sent(
                db, company.id, email_type, admin.email, None if expired else today,
            ):
                continue
            result = await EmailService.send(
                db,
                email_type=email_type,
                to={"email": admin.email, "name": admin.full_name or None},
                data={
                    "company_name": company.name,
                    "user_name": admin.full_name or "there",
                    "days_remaining": remaining,
                    "upgrade_url": billing_url,
                    "extension_url": billing_url,
                    "can_request_extension": can_extend,
                    "has_pending_request": pending,
                },
                company_id=company.id,
            )
            if not result.success:
                errors.append(f"{company.slug}: {admin.email}: {result.error}")
                continue
            db.add(TrialEmailLog(
                company_id=company.id,
                email_type=email_type,
                recipient_email=admin.email,
                days_remaining=remaining,
                sent_date=today,
            ))
            await db.flush()
            emails_sent += 1

        if expired:
            subscription.status = SubscriptionStatus.trial_expired
            await db.flush()
            logger.info("Trial expired", extra={"company_id": company.id})

    logger.info("Trial email job finished: %d sent, %d errors", emails_sent, len(errors))
    return TrialJobResult(
        companies_checked=len(subscriptions), emails_sent=emails_sent, errors=errors,
    )
