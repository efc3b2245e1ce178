"""Notification service — CRUD operations and cross-module helper dispatchers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType
from backend.common.exceptions import NotFoundException
from backend.common.pagination import PaginationParams, build_meta
from backend.notifications.models import Notification
from backend.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations, always scoped to (company, user)."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        type: NotificationType = NotificationType.general,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            company_id=company_id,
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for a user, newest first."""
        query = (
            select(Notification)
            .where(
                Notification.company_id == company_id,
                Notification.user_id == user_id,
            )
            .order_by(Notification.created_at.desc())
        )

        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if notification_type is not None:
            query = query.where(Notification.type == notification_type)

        count_q = query.with_only_columns(func.count()).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        # Unread count is unfiltered; it feeds the header badge
        unread = await NotificationService.get_unread_count(db, company_id, user_id)
        meta = build_meta(pagination.page, pagination.page_size, total)

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(**meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        company_id: uuid.UUID,
        notification_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read.

        Another user's notification reads as missing rather than forbidden,
        so other accounts learn nothing about which ids exist.
        """
        notification = await db.get(Notification, notification_id)
        if (
            notification is None
            or notification.user_id != user_id
            or notification.company_id != company_id
        ):
            raise NotFoundException("Notification", notification_id)

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(
        db: AsyncSession,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(Notification)
            .where(
                Notification.company_id == company_id,
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(
        db: AsyncSession,
        company_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.company_id == company_id,
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Cross-module helper dispatchers ─────────────────────────────────
# Imported by the leave / payroll / documents / performance services.
# They take the ORM object directly and skip recipients without a login.


async def notify_leave_request(
    db: AsyncSession,
    leave_request,  # backend.leave.models.LeaveRequest
    approver_user_id: Optional[uuid.UUID],
    employee_name: str,
) -> Optional[Notification]:
    """Notify the approver that a new leave request needs review."""
    if approver_user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=leave_request.company_id,
        user_id=approver_user_id,
        type=NotificationType.leave_request,
        title="New Leave Request",
        message=(
            f"{employee_name} requested leave from {leave_request.start_date} to "
            f"{leave_request.end_date} ({leave_request.total_days} day(s))."
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_approved(
    db: AsyncSession,
    leave_request,
    user_id: Optional[uuid.UUID],
) -> Optional[Notification]:
    """Notify the employee that their leave request was approved."""
    if user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=leave_request.company_id,
        user_id=user_id,
        type=NotificationType.leave_approved,
        title="Leave Request Approved",
        message=(
            f"Your leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} has been approved."
        ),
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_leave_rejected(
    db: AsyncSession,
    leave_request,
    user_id: Optional[uuid.UUID],
    reason: Optional[str],
) -> Optional[Notification]:
    """Notify the employee that their leave request was rejected."""
    if user_id is None:
        return None
    message = (
        f"Your leave request from {leave_request.start_date} to "
        f"{leave_request.end_date} was rejected."
    )
    if reason:
        message += f" Reason: {reason}"
    return await NotificationService.create_notification(
        db,
        company_id=leave_request.company_id,
        user_id=user_id,
        type=NotificationType.leave_rejected,
        title="Leave Request Rejected",
        message=message,
        action_url=f"/leave/requests/{leave_request.id}",
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


async def notify_payroll_processed(
    db: AsyncSession,
    payroll_run,  # backend.payroll.models.PayrollRun
    user_id: Optional[uuid.UUID],
) -> Optional[Notification]:
    if user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=payroll_run.company_id,
        user_id=user_id,
        type=NotificationType.payroll_processed,
        title="Payslip Available",
        message=(
            f"Payroll for {payroll_run.period_start} to {payroll_run.period_end} "
            f"has been processed."
        ),
        action_url=f"/payroll/runs/{payroll_run.id}",
        entity_type="payroll_run",
        entity_id=payroll_run.id,
    )


async def notify_document_expiring(
    db: AsyncSession,
    document,  # backend.documents.models.Document
    user_id: Optional[uuid.UUID],
    days_left: int,
) -> Optional[Notification]:
    if user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=document.company_id,
        user_id=user_id,
        type=NotificationType.document_expiring,
        title="Document Expiring",
        message=f"{document.title} expires in {days_left} day(s) on {document.expiry_date}.",
        action_url=f"/documents/{document.id}",
        entity_type="document",
        entity_id=document.id,
    )


async def notify_document_verification(
    db: AsyncSession,
    document,
    user_id: Optional[uuid.UUID],
    *,
    verified: bool,
    reason: Optional[str] = None,
) -> Optional[Notification]:
    """Tell the uploader their document was verified or rejected."""
    if user_id is None:
        return None
    if verified:
        type_, title = NotificationType.document_verified, "Document Verified"
        message = f"{document.title} has been verified."
    else:
        type_, title = NotificationType.document_rejected, "Document Rejected"
        message = f"{document.title} was rejected. Reason: {reason}"
    return await NotificationService.create_notification(
        db,
        company_id=document.company_id,
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        action_url=f"/documents/{document.id}",
        entity_type="document",
        entity_id=document.id,
    )


async def notify_review_assigned(
    db: AsyncSession,
    review,  # backend.performance.models.PerformanceReview
    user_id: Optional[uuid.UUID],
) -> Optional[Notification]:
    if user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=review.company_id,
        user_id=user_id,
        type=NotificationType.review_assigned,
        title="Performance Review Assigned",
        message=(
            f"You have been assigned a performance review for "
            f"{review.period_start} to {review.period_end}."
        ),
        action_url=f"/performance/reviews/{review.id}",
        entity_type="performance_review",
        entity_id=review.id,
    )


async def notify_time_correction_request(
    db: AsyncSession,
    correction,  # backend.time_tracking.models.TimeCorrectionRequest
    approver_user_id: Optional[uuid.UUID],
    employee_name: str,
) -> Optional[Notification]:
    if approver_user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=correction.company_id,
        user_id=approver_user_id,
        type=NotificationType.time_correction,
        title="Time Correction Requested",
        message=f"{employee_name} requested a time correction for {correction.correction_date}.",
        action_url=f"/time-tracking/corrections/{correction.id}",
        entity_type="time_correction_request",
        entity_id=correction.id,
    )


async def notify_time_correction_reviewed(
    db: AsyncSession,
    correction,
    user_id: Optional[uuid.UUID],
) -> Optional[Notification]:
    """Tell the employee how their correction request was decided."""
    if user_id is None:
        return None
    outcome = correction.status.value.replace("_", " ")
    message = f"Your time correction for {correction.correction_date} is {outcome}."
    if correction.review_notes:
        message += f" Notes: {correction.review_notes}"
    return await NotificationService.create_notification(
        db,
        company_id=correction.company_id,
        user_id=user_id,
        type=NotificationType.time_correction,
        title="Time Correction Reviewed",
        message=message,
        action_url=f"/time-tracking/corrections/{correction.id}",
        entity_type="time_correction_request",
        entity_id=correction.id,
    )


async def notify_review_reminder(
    db: AsyncSession,
    review,  # backend.performance.models.PerformanceReview
    user_id: Optional[uuid.UUID],
    days_until_due: int,
) -> Optional[Notification]:
    if user_id is None:
        return None
    if days_until_due < 0:
        message = f"A performance review for {review.period_start} to {review.period_end} is overdue."
    else:
        message = (
            f"A performance review for {review.period_start} to {review.period_end} "
            f"is due in {days_until_due} day(s)."
        )
    return await NotificationService.create_notification(
        db,
        company_id=review.company_id,
        user_id=user_id,
        type=NotificationType.review_reminder,
        title="Performance Review Reminder",
        message=message,
        action_url=f"/performance/reviews/{review.id}",
        entity_type="performance_review",
        entity_id=review.id,
    )


async def notify_candidate_update(
    db: AsyncSession,
    candidate,  # backend.recruitment.models.Candidate
    user_id: Optional[uuid.UUID],
    *,
    title: str,
    message: str,
) -> Optional[Notification]:
    if user_id is None:
        return None
    return await NotificationService.create_notification(
        db,
        company_id=candidate.company_id,
        user_id=user_id,
        type=NotificationType.candidate_update,
        title=title,
        message=message,
        action_url=f"/recruitment/candidates/{candidate.id}",
        entity_type="candidate",
        entity_id=candidate.id,
    )
