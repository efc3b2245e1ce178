"""Scheduled performance-review reminders.

Open reviews (draft or in progress) are due on ``due_date``, or on
``period_end`` when no due date was set. The reviewer gets an in-app
reminder 7, 3 and 1 days before, and on the day itself. Once a review is
``ESCALATION_DAYS`` overdue the reviewer's own manager is told, at most
once a week. Sent reminders are kept in ``review_reminders``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.constants import NotificationType, ReviewStatus
from backend.common.models import utcnow
from backend.core_hr.models import Employee
from backend.notifications.service import NotificationService, notify_review_reminder
from backend.performance.models import PerformanceReview, ReviewReminder
from backend.performance.schemas import ReminderJobResult

logger = logging.getLogger(__name__)

REMINDER_DAYS = (7, 3, 1, 0)
ESCALATION_DAYS = 7

OPEN_STATUSES = (ReviewStatus.draft, ReviewStatus.in_progress)


def _due(review: PerformanceReview) -> date:
    return review.due_date or review.period_end


def _name(employee: Optional[Employee], fallback: str) -> str:
    if employee is None:
        return fallback
    return f"{employee.first_name} {employee.last_name}"


async def _already_sent(
    db: AsyncSession,
    review: PerformanceReview,
    reminder_type: str,
    *,
    since: Optional[datetime] = None,
    days_remaining: Optional[int] = None,
) -> bool:
    query = select(ReviewReminder.id).where(
        ReviewReminder.review_id == review.id,
        ReviewReminder.reminder_type == reminder_type,
    )
    if since is not None:
        query = query.where(ReviewReminder.sent_at >= since)
    if days_remaining is not None:
        query = query.where(ReviewReminder.days_remaining == days_remaining)
    return (await db.execute(query.limit(1))).first() is not None


async def _remind_reviewer(db: AsyncSession, review: PerformanceReview, days: int) -> bool:
    reviewer = review.reviewer
    if reviewer is None or reviewer.user_id is None:
        return False
    if await _already_sent(db, review, "reminder", days_remaining=days):
        return False

    await notify_review_reminder(db, review, reviewer.user_id, days)
    db.add(ReviewReminder(
        company_id=review.company_id,
        review_id=review.id,
        reminder_type="reminder",
        days_remaining=days,
        sent_to=reviewer.user_id,
    ))
    await db.flush()
    return True


async def _escalate(db: AsyncSession, review: PerformanceReview, days_overdue: int, today: date) -> bool:
    reviewer = review.reviewer
    if reviewer is None or reviewer.manager_id is None:
        return False
    manager = await db.get(Employee, reviewer.manager_id)
    if manager is None or manager.user_id is None:
        return False
    week_ago = datetime.combine(today - timedelta(days=7), time.min, tzinfo=timezone.utc)
    if await _already_sent(db, review, "escalation", since=week_ago):
        return False

    reviewer_name = _name(reviewer, "A reviewer")
    employee_name = _name(review.employee, "an employee")
    await NotificationService.create_notification(
        db,
        company_id=review.company_id,
        user_id=manager.user_id,
        type=NotificationType.review_reminder,
        title=f"Overdue review: {reviewer_name}'s review for {employee_name}",
        message=(
            f"The performance review by {reviewer_name} for {employee_name} is "
            f"{days_overdue} days overdue. Please follow up."
        ),
        action_url=f"/performance/reviews/{review.id}",
        entity_type="performance_review",
        entity_id=review.id,
    )
    db.add(ReviewReminder(
        company_id=review.company_id,
        review_id=review.id,
        reminder_type="escalation",
        days_remaining=-days_overdue,
        sent_to=manager.user_id,
    ))
    await db.flush()
    return True


async def run_review_reminders(db: AsyncSession, today: Optional[date] = None) -> ReminderJobResult:
    today = today or utcnow().date()
    horizon = today + timedelta(days=max(REMINDER_DAYS))
    due = func.coalesce(PerformanceReview.due_date, PerformanceReview.period_end)
    result = await db.execute(
        select(PerformanceReview)
        .where(
            PerformanceReview.status.in_(OPEN_STATUSES),
            due <= horizon,
        )
        .options(selectinload(PerformanceReview.reviewer), selectinload(PerformanceReview.employee))
    )
    reviews = result.scalars().all()
    logger.info("Review reminder job: %d open reviews due by %s", len(reviews), horizon)

    reminders = escalations = 0
    errors: list[str] = []
    for review in reviews:
        days = (_due(review) - today).days
        if days in REMINDER_DAYS:
            if review.reviewer is None or review.reviewer.user_id is None:
                errors.append(f"{review.id}: reviewer has no user account")
            elif await _remind_reviewer(db, review, days):
                reminders += 1
        elif -days >= ESCALATION_DAYS and await _escalate(db, review, -days, today):
            escalations += 1

    logger.info(
        "Review reminder job finished: %d reminders, %d escalations, %d errors",
        reminders, escalations, len(errors),
    )
    return ReminderJobResult(reminders_sent=reminders, escalations_sent=escalations, errors=errors)
