"""Scheduled document-expiry job.

Latest, live documents past their expiry date are moved to ``expired``.
Documents expiring in one of the company's ``document_expiry_days``
(default 30, 7 and 1) notify the owner in-app and by email; the owner's
manager is told as well once seven days or fewer remain. Each reminder is
recorded in ``document_expiry_notifications`` so reruns are harmless.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.constants import NotificationType, VerificationStatus
from backend.common.models import utcnow
from backend.companies.settings import get_company_setting
from backend.core_hr.models import Employee
from backend.documents.models import Document, DocumentExpiryNotification
from backend.documents.schemas import ExpiryJobResult
from backend.emails.service import EmailService
from backend.notifications.service import NotificationService, notify_document_expiring

logger = logging.getLogger(__name__)

MANAGER_THRESHOLD_DAYS = 7


def _live_latest():
    return (
        Document.deleted_at.is_(None),
        Document.is_latest.is_(True),
        Document.expiry_date.is_not(None),
        Document.verification_status != VerificationStatus.expired,
    )


async def _already_notified(db: AsyncSession, document: Document, notification_type: str) -> bool:
    result = await db.execute(
        select(DocumentExpiryNotification.id).where(
            DocumentExpiryNotification.document_id == document.id,
            DocumentExpiryNotification.notification_type == notification_type,
        ).limit(1)
    )
    return result.first() is not None


async def expire_documents(db: AsyncSession, today: date) -> int:
    result = await db.execute(select(Document).where(*_live_latest(), Document.expiry_date < today))
    documents = result.scalars().all()
    for document in documents:
        document.verification_status = VerificationStatus.expired
    await db.flush()
    return len(documents)


async def _notify_owner(
    db: AsyncSession, document: Document, employee: Employee, days: int, errors: list[str],
) -> bool:
    notification_type = f"expiring_{days}_days"
    if employee.user_id is None or await _already_notified(db, document, notification_type):
        return False

    result = await EmailService.send(
        db,
        email_type="document_expiring",
        to={"email": employee.email, "name": f"{employee.first_name} {employee.last_name}"},
        data={
            "employee_name": employee.first_name,
            "document_name": document.title,
            "expiry_date": str(document.expiry_date),
            "days_until_expiry": days,
        },
        company_id=document.company_id,
        metadata={"document_id": str(document.id)},
    )
    if not result.success:
        errors.append(f"{document.id}: {employee.email}: {result.error}")
        return False
    await notify_document_expiring(db, document, employee.user_id, days)
    db.add(DocumentExpiryNotification(
        company_id=document.company_id,
        document_id=document.id,
        notification_type=notification_type,
        days_until_expiry=days,
        sent_to=employee.user_id,
    ))
    await db.flush()
    return True


async def _notify_manager(db: AsyncSession, document: Document, employee: Employee, days: int) -> bool:
    if days > MANAGER_THRESHOLD_DAYS or employee.manager_id is None:
        return False
    manager = await db.get(Employee, employee.manager_id)
    notification_type = f"manager_expiring_{days}_days"
    if manager is None or manager.user_id is None or await _already_notified(db, document, notification_type):
        return False

    await NotificationService.create_notification(
        db,
        company_id=document.company_id,
        user_id=manager.user_id,
        type=NotificationType.document_expiring,
        title=f"Team member document expiring: {employee.first_name} {employee.last_name}",
        message=(
            f"{document.title} for {employee.first_name} {employee.last_name} expires in "
            f"{days} day{'' if days == 1 else 's'}."
        ),
        action_url=f"/documents/{document.id}",
        entity_type="document",
        entity_id=document.id,
    )
    db.add(DocumentExpiryNotification(
        company_id=document.company_id,
        document_id=document.id,
        notification_type=notification_type,
        days_until_expiry=days,
        sent_to=manager.user_id,
    ))
    await db.flush()
    return True


async def run_document_expiry(db: AsyncSession, today: Optional[date] = None) -> ExpiryJobResult:
    today = today or utcnow().date()
    expired = await expire_documents(db, today)
    logger.info("Document expiry job: %d documents expired", expired)

    thresholds_by_company: dict = {}
    horizon = today + timedelta(days=365)
    result = await db.execute(
        select(Document)
        .where(*_live_latest(), Document.expiry_date >= today, Document.expiry_date <= horizon)
        .options(selectinload(Document.employee))
    )

    sent = 0
    errors: list[str] = []
    for document in result.scalars().all():
        if document.company_id not in thresholds_by_company:
            prefs = await get_company_setting(db, document.company_id, "notification_preferences")
            thresholds_by_company[document.company_id] = set(prefs.get("document_expiry_days") or [])
        days = (document.expiry_date - today).days
        if days not in thresholds_by_company[document.company_id]:
            continue

        employee = document.employee
        if await _notify_owner(db, document, employee, days, errors):
            sent += 1
        if await _notify_manager(db, document, employee, days):
            sent += 1

    logger.info("Document expiry job finished: %d notifications sent, %d errors", sent, len(errors))
    return ExpiryJobResult(documents_expired=expired, notifications_sent=sent, errors=errors)
