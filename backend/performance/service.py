"""Performance service — review lifecycle and goal tracking."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction, GoalStatus, ReviewStatus
from backend.common.exceptions import ForbiddenException, InvalidStateException, ValidationException
from backend.common.models import get_for_company, utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Employee
from backend.notifications.service import notify_review_assigned
from backend.performance.models import Goal, PerformanceReview
from backend.performance.schemas import (
    GoalCreate,
    GoalOut,
    GoalProgress,
    GoalUpdate,
    ReviewCreate,
    ReviewOut,
    ReviewStats,
    ReviewSubmit,
    ReviewUpdate,
)

logger = logging.getLogger(__name__)

GOAL_CLOSED = (GoalStatus.completed, GoalStatus.canceled)


class PerformanceService:
    """Async performance operations."""

    # ═════════════════════════════════════════════════════════════════
    # Reviews
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    async def _load_review(db: AsyncSession, review_id: uuid.UUID) -> PerformanceReview:
        result = await db.execute(
            select(PerformanceReview)
            .where(PerformanceReview.id == review_id)
            .options(selectinload(PerformanceReview.employee), selectinload(PerformanceReview.reviewer))
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()

    @staticmethod
    async def get_review(db: AsyncSession, company_id: uuid.UUID, review_id: uuid.UUID) -> PerformanceReview:
        review = await get_for_company(db, PerformanceReview, company_id, review_id, "Performance review")
        return await PerformanceService._load_review(db, review.id)

    @staticmethod
    async def list_reviews(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        employee_ids: Optional[list[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        reviewer_id: Optional[uuid.UUID] = None,
        status: Optional[ReviewStatus] = None,
    ) -> PaginatedResponse[ReviewOut]:
        query = (
            select(PerformanceReview)
            .where(PerformanceReview.company_id == company_id)
            .options(selectinload(PerformanceReview.employee), selectinload(PerformanceReview.reviewer))
            .order_by(PerformanceReview.period_end.desc(), PerformanceReview.created_at.desc())
        )
        if employee_ids is not None:
            query = query.where(PerformanceReview.employee_id.in_(employee_ids))
        if employee_id is not None:
            query = query.where(PerformanceReview.employee_id == employee_id)
        if reviewer_id is not None:
            query = query.where(PerformanceReview.reviewer_id == reviewer_id)
        if status is not None:
            query = query.where(PerformanceReview.status == status)
        return await paginate(db, query, pagination, schema=ReviewOut)

    @staticmethod
    async def create_review(
        db: AsyncSession, company_id: uuid.UUID, data: ReviewCreate, *, actor_id: uuid.UUID,
    ) -> PerformanceReview:
        employee = await get_for_company(db, Employee, company_id, data.employee_id, "Employee")
        reviewer_id = data.reviewer_id or employee.manager_id
        if reviewer_id is None:
            raise ValidationException(
                {"reviewer_id": ["The employee has no manager; a reviewer must be given."]}
            )
        if reviewer_id == employee.id:
            raise ValidationException({"reviewer_id": ["An employee cannot review themselves."]})
        reviewer = await get_for_company(db, Employee, company_id, reviewer_id, "Reviewer")

        review = PerformanceReview(
            company_id=company_id,
            employee_id=employee.id,
            reviewer_id=reviewer.id,
            period_start=data.period_start,
            period_end=data.period_end,
            due_date=data.due_date,
            status=ReviewStatus.draft,
            created_by=actor_id,
        )
        db.add(review)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="performance_review",
            entity_id=review.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"employee_id": str(employee.id), "reviewer_id": str(reviewer.id)},
        )
        await notify_review_assigned(db, review, reviewer.user_id)
        return await PerformanceService._load_review(db, review.id)

    @staticmethod
    async def update_review(
        db: AsyncSession,
        company_id: uuid.UUID,
        review_id: uuid.UUID,
        data: ReviewUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> PerformanceReview:
        review = await get_for_company(db, PerformanceReview, company_id, review_id, "Performance review")
        if review.status not in (ReviewStatus.draft, ReviewStatus.in_progress):
            raise InvalidStateException(f"Cannot edit a {review.status.value} review.")

        changes = data.model_dump(exclude_unset=True)
        new_reviewer = changes.get("reviewer_id")
        if new_reviewer is not None and new_reviewer != review.reviewer_id:
            if new_reviewer == review.employee_id:
                raise ValidationException({"reviewer_id": ["An employee cannot review themselves."]})
            reviewer = await get_for_company(db, Employee, company_id, new_reviewer, "Reviewer")
            review.reviewer_id = reviewer.id
            await notify_review_assigned(db, review, reviewer.user_id)
        if "due_date" in changes:
            review.due_date = changes["due_date"]
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="performance_review",
            entity_id=review.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={k: str(v) if v is not None else None for k, v in changes.items()},
        )
        return await PerformanceService._load_review(db, review.id)

    @staticmethod
    async def start_review(
        db: AsyncSession,
        company_id: uuid.UUID,
        review_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        actor_employee_id: Optional[uuid.UUID],
        is_hr: bool,
    ) -> PerformanceReview:
        review = await get_for_company(db, PerformanceReview, company_id, review_id, "Performance review")
        if not is_hr and review.reviewer_id != actor_employee_id:
            raise ForbiddenException("Only the assigned reviewer can start this review.")
        if review.status != ReviewStatus.draft:
            raise InvalidStateException("Only draft reviews can be started.")
        review.status = ReviewStatus.in_progress
        review.started_at = utcnow()
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="performance_review",
            entity_id=review.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"status": ReviewStatus.draft.value},
            new_values={"status": ReviewStatus.in_progress.value},
        )
        return await PerformanceService._load_review(db, review.id)

    @staticmethod
    async def submit_review(
        db: AsyncSession,
        company_id: uuid.UUID,
        review_id: uuid.UUID,
        data: ReviewSubmit,
        *,
        actor_id: uuid.UUID,
        actor_employee_id: Optional[uuid.UUID],
    ) -> PerformanceReview:
        """The assigned reviewer records the rating and feedback."""
        review = await get_for_company(db, PerformanceReview, company_id, review_id, "Performance review")
        if review.reviewer_id != actor_employee_id:
            raise ForbiddenException("Only the assigned reviewer can submit this review.")
        if review.status != ReviewStatus.in_progress:
            raise InvalidStateException("Only reviews in progress can be submitted.")

        for field, value in data.model_dump().items():
            setattr(review, field, value)
        review.status = ReviewStatus.completed
        review.completed_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="performance_review",
            entity_id=review.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"status": ReviewStatus.completed.value, "overall_rating": data.overall_rating},
            details={"action_type": "submit_review"},
        )
        logger.info("Review %s submitted with rating %d", review.id, data.overall_rating)
        return await PerformanceService._load_review(db, review.id)

    @staticmethod
    async def acknowledge_review(
        db: AsyncSession,
        company_id: uuid.UUID,
        review_id: uuid.UUID,
        employee_comments: Optional[str],
        *,
        actor_id: uuid.UUID,
        actor_employee_id: Optional[uuid.UUID],
    ) -> PerformanceReview:
        review = await get_for_company(db, PerformanceReview, company_id, review_id, "Performance review")
        if review.employee_id != actor_employee_id:
            raise ForbiddenException("Only the reviewed employee can acknowledge this review.")
        if review.status != ReviewStatus.completed:
            raise InvalidStateException("Only completed reviews can be acknowledged.")
        review.status = ReviewStatus.acknowledged
        review.acknowledged_at = utcnow()
        review.employee_comments = employee_comments
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="performance_review",
            entity_id=review.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"status": ReviewStatus.acknowledged.value},
        )
        return await PerformanceService._load_review(db, review.id)

    @staticmethod
    async def delete_review(
        db: AsyncSession, company_id: uuid.UUID, review_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        review = await get_for_company(db, PerformanceReview, company_id, review_id, "Performance review")
        if review.status != ReviewStatus.draft:
            raise InvalidStateException("Only draft reviews can be deleted.")
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="performance_review",
            entity_id=review.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"employee_id": str(review.employee_id)},
        )
        await db.delete(review)
        await db.flush()

    @staticmethod
    async def review_stats(
        db: AsyncSession, company_id: uuid.UUID, employee_ids: Optional[list[uuid.UUID]] = None,
    ) -> ReviewStats:
        base = select(PerformanceReview.status, func.count(PerformanceReview.id)).where(
            PerformanceReview.company_id == company_id,
        )
        rating = select(func.avg(PerformanceReview.overall_rating)).where(
            PerformanceReview.company_id == company_id,
            PerformanceReview.overall_rating.is_not(None),
        )
        if employee_ids is not None:
            base = base.where(PerformanceReview.employee_id.in_(employee_ids))
            rating = rating.where(PerformanceReview.employee_id.in_(employee_ids))

        rows = (await db.execute(base.group_by(PerformanceReview.status))).all()
        by_status = {s.value: 0 for s in ReviewStatus}
        for status, count in rows:
            by_status[status.value] = count
        average = (await db.execute(rating)).scalar_one_or_none()
        return ReviewStats(
            total=sum(by_status.values()),
            by_status=by_status,
            average_rating=round(float(average), 2) if average is not None else None,
        )

    # ═════════════════════════════════════════════════════════════════
    # Goals
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    async def list_goals(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        employee_ids: Optional[list[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[GoalStatus] = None,
    ) -> PaginatedResponse[GoalOut]:
        query = (
            select(Goal)
            .where(Goal.company_id == company_id)
            .order_by(Goal.target_date.asc().nulls_last(), Goal.created_at.desc())
        )
        if employee_ids is not None:
            query = query.where(Goal.employee_id.in_(employee_ids))
        if employee_id is not None:
            query = query.where(Goal.employee_id == employee_id)
        if status is not None:
            query = query.where(Goal.status == status)
        return await paginate(db, query, pagination, schema=GoalOut)

    @staticmethod
    async def get_goal(db: AsyncSession, company_id: uuid.UUID, goal_id: uuid.UUID) -> Goal:
        return await get_for_company(db, Goal, company_id, goal_id, "Goal")

    @staticmethod
    async def create_goal(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        data: GoalCreate,
        *,
        actor_id: uuid.UUID,
    ) -> Goal:
        employee = await get_for_company(db, Employee, company_id, employee_id, "Employee")
        goal = Goal(
            company_id=company_id,
            employee_id=employee.id,
            title=data.title,
            description=data.description,
            category=data.category,
            target_date=data.target_date,
            progress=0,
            status=GoalStatus.not_started,
            progress_notes=[],
            created_by=actor_id,
        )
        db.add(goal)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="goal",
            entity_id=goal.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"title": goal.title, "employee_id": str(employee.id)},
        )
        return goal

    @staticmethod
    async def update_goal(
        db: AsyncSession,
        company_id: uuid.UUID,
        goal_id: uuid.UUID,
        data: GoalUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> Goal:
        goal = await PerformanceService.get_goal(db, company_id, goal_id)
        changes = data.model_dump(exclude_unset=True)
        status = changes.pop("status", None)
        for field, value in changes.items():
            setattr(goal, field, value)

        if status is not None and status != goal.status:
            if goal.status in GOAL_CLOSED:
                raise InvalidStateException(f"Cannot change the status of a {goal.status.value} goal.")
            goal.status = status
            if status == GoalStatus.completed:
                goal.progress = 100
                goal.completed_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="goal",
            entity_id=goal.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={k: str(v) if v is not None else None for k, v in data.model_dump(exclude_unset=True).items()},
        )
        return goal

    @staticmethod
    async def update_progress(
        db: AsyncSession,
        company_id: uuid.UUID,
        goal_id: uuid.UUID,
        data: GoalProgress,
        *,
        actor_id: uuid.UUID,
    ) -> Goal:
        """Record progress; reaching 100 completes the goal."""
        goal = await PerformanceService.get_goal(db, company_id, goal_id)
        if goal.status in GOAL_CLOSED:
            raise InvalidStateException(f"Cannot update progress on a {goal.status.value} goal.")

        now = utcnow()
        goal.progress = data.progress
        goal.last_progress_update = now
        # reassign so the JSONB change is tracked
        goal.progress_notes = list(goal.progress_notes or []) + [
            {"date": now.isoformat(), "note": data.note or "", "progress": data.progress},
        ]
        if data.progress == 100:
            goal.status = GoalStatus.completed
            goal.completed_at = now
        elif data.progress > 0:
            goal.status = GoalStatus.in_progress
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="goal",
            entity_id=goal.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"progress": data.progress, "status": goal.status.value},
        )
        return goal
