"""Performance tests — review workflow, scoping, goals and progress."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from backend.common.constants import GoalStatus, NotificationType, ReviewStatus
from backend.common.exceptions import ForbiddenException, InvalidStateException, ValidationException
from backend.notifications.models import Notification
from backend.performance.reminders import run_review_reminders
from backend.performance.schemas import GoalCreate, GoalProgress, GoalUpdate, ReviewCreate, ReviewSubmit, ReviewUpdate
from backend.performance.service import PerformanceService
from tests.conftest import TestSessionFactory

PERIOD = {"period_start": "2026-01-01", "period_end": "2026-06-30"}


async def _review(db, tenant, employee=None, **kwargs):
    employee = employee or tenant.employee
    return await PerformanceService.create_review(
        db,
        tenant.company_id,
        ReviewCreate(
            employee_id=employee.employee.id,
            period_start=date(2026, 1, 1),
            period_end=date(2026, 6, 30),
            **kwargs,
        ),
        actor_id=tenant.hr.user_id,
    )


async def _started(db, tenant):
    review = await _review(db, tenant)
    return await PerformanceService.start_review(
        db, tenant.company_id, review.id,
        actor_id=tenant.manager.user_id, actor_employee_id=tenant.manager.employee.id, is_hr=False,
    )


def _submission(rating=4):
    return ReviewSubmit(overall_rating=rating, manager_assessment="Solid half year.", strengths="Ownership")


# ═════════════════════════════════════════════════════════════════════
# REVIEWS
# ═════════════════════════════════════════════════════════════════════


class TestCreateReview:

    async def test_reviewer_defaults_to_manager(self, client, db, tenant):
        resp = await client.post(
            "/api/v1/performance/reviews",
            headers=tenant.manager.headers,
            json={"employee_id": str(tenant.employee.employee.id), **PERIOD},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "draft"
        assert data["reviewer"]["first_name"] == "Max"
        assert data["employee"]["first_name"] == "Eve"

        async with TestSessionFactory() as session:
            notification = (await session.execute(
                select(Notification).where(Notification.user_id == tenant.manager.user_id)
            )).scalars().one()
            assert notification.type == NotificationType.review_assigned

    async def test_manager_limited_to_team(self, client, tenant):
        resp = await client.post(
            "/api/v1/performance/reviews",
            headers=tenant.manager.headers,
            json={"employee_id": str(tenant.hr.employee.id), **PERIOD},
        )
        assert resp.status_code == 403

    async def test_employee_cannot_create(self, client, tenant):
        resp = await client.post(
            "/api/v1/performance/reviews",
            headers=tenant.employee.headers,
            json={"employee_id": str(tenant.employee.employee.id), **PERIOD},
        )
        assert resp.status_code == 403

    async def test_reviewer_required_without_manager(self, db, tenant):
        with pytest.raises(ValidationException) as exc_info:
            await _review(db, tenant, employee=tenant.hr)
        assert "reviewer_id" in exc_info.value.errors

    async def test_no_self_review(self, db, tenant):
        with pytest.raises(ValidationException):
            await _review(db, tenant, employee=tenant.hr, reviewer_id=tenant.hr.employee.id)

    async def test_period_order(self, client, tenant):
        resp = await client.post(
            "/api/v1/performance/reviews",
            headers=tenant.hr.headers,
            json={
                "employee_id": str(tenant.employee.employee.id),
                "period_start": "2026-06-30",
                "period_end": "2026-01-01",
            },
        )
        assert resp.status_code == 422


class TestReviewWorkflow:

    async def test_full_cycle(self, client, db, tenant):
        review = await _review(db, tenant)
        await db.commit()
        base = f"/api/v1/performance/reviews/{review.id}"

        resp = await client.post(f"{base}/start", headers=tenant.manager.headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "in_progress"

        resp = await client.post(
            f"{base}/submit",
            headers=tenant.manager.headers,
            json={"overall_rating": 4, "manager_assessment": "Great work"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
        assert resp.json()["overall_rating"] == 4

        resp = await client.post(
            f"{base}/acknowledge", headers=tenant.employee.headers, json={"employee_comments": "Thanks!"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "acknowledged"
        assert resp.json()["employee_comments"] == "Thanks!"

        resp = await client.get("/api/v1/performance/reviews/stats", headers=tenant.hr.headers)
        stats = resp.json()
        assert stats["total"] == 1
        assert stats["by_status"]["acknowledged"] == 1
        assert stats["average_rating"] == 4.0

    async def test_hr_may_start_but_not_submit(self, db, tenant):
        review = await _review(db, tenant)
        started = await PerformanceService.start_review(
            db, tenant.company_id, review.id,
            actor_id=tenant.hr.user_id, actor_employee_id=tenant.hr.employee.id, is_hr=True,
        )
        assert started.status == ReviewStatus.in_progress
        assert started.started_at is not None

        with pytest.raises(ForbiddenException, match="assigned reviewer"):
            await PerformanceService.submit_review(
                db, tenant.company_id, review.id, _submission(),
                actor_id=tenant.hr.user_id, actor_employee_id=tenant.hr.employee.id,
            )

    async def test_only_reviewer_starts(self, db, tenant):
        review = await _review(db, tenant)
        with pytest.raises(ForbiddenException):
            await PerformanceService.start_review(
                db, tenant.company_id, review.id,
                actor_id=tenant.employee.user_id, actor_employee_id=tenant.employee.employee.id, is_hr=False,
            )

    async def test_submit_needs_in_progress(self, db, tenant):
        review = await _review(db, tenant)
        with pytest.raises(InvalidStateException, match="in progress"):
            await PerformanceService.submit_review(
                db, tenant.company_id, review.id, _submission(),
                actor_id=tenant.manager.user_id, actor_employee_id=tenant.manager.employee.id,
            )

    async def test_only_reviewed_employee_acknowledges(self, db, tenant):
        review = await _started(db, tenant)
        await PerformanceService.submit_review(
            db, tenant.company_id, review.id, _submission(),
            actor_id=tenant.manager.user_id, actor_employee_id=tenant.manager.employee.id,
        )
        with pytest.raises(ForbiddenException):
            await PerformanceService.acknowledge_review(
                db, tenant.company_id, review.id, None,
                actor_id=tenant.manager.user_id, actor_employee_id=tenant.manager.employee.id,
            )

    async def test_acknowledge_needs_completed(self, db, tenant):
        review = await _started(db, tenant)
        with pytest.raises(InvalidStateException):
            await PerformanceService.acknowledge_review(
                db, tenant.company_id, review.id, "ok",
                actor_id=tenant.employee.user_id, actor_employee_id=tenant.employee.employee.id,
            )

    async def test_completed_review_is_frozen(self, db, tenant):
        review = await _started(db, tenant)
        await PerformanceService.submit_review(
            db, tenant.company_id, review.id, _submission(),
            actor_id=tenant.manager.user_id, actor_employee_id=tenant.manager.employee.id,
        )
        with pytest.raises(InvalidStateException, match="completed"):
            await PerformanceService.update_review(
                db, tenant.company_id, review.id, ReviewUpdate(due_date=date(2026, 8, 1)),
                actor_id=tenant.hr.user_id,
            )
        with pytest.raises(InvalidStateException, match="Only draft"):
            await PerformanceService.delete_review(db, tenant.company_id, review.id, actor_id=tenant.admin.user_id)

    async def test_reassigning_reviewer_notifies(self, db, tenant):
        review = await _review(db, tenant)
        updated = await PerformanceService.update_review(
            db, tenant.company_id, review.id, ReviewUpdate(reviewer_id=tenant.hr.employee.id),
            actor_id=tenant.hr.user_id,
        )
        assert updated.reviewer_id == tenant.hr.employee.id
        notes = (await db.execute(
            select(Notification).where(Notification.user_id == tenant.hr.user_id)
        )).scalars().all()
        assert len(notes) == 1

        with pytest.raises(ValidationException):
            await PerformanceService.update_review(
                db, tenant.company_id, review.id, ReviewUpdate(reviewer_id=tenant.employee.employee.id),
                actor_id=tenant.hr.user_id,
            )

    async def test_delete_draft(self, client, db, tenant):
        review = await _review(db, tenant)
        await db.commit()
        resp = await client.delete(f"/api/v1/performance/reviews/{review.id}", headers=tenant.hr.headers)
        assert resp.status_code == 403
        resp = await client.delete(f"/api/v1/performance/reviews/{review.id}", headers=tenant.admin.headers)
        assert resp.status_code == 204


class TestReviewVisibility:

    async def test_employee_sees_own_review(self, client, db, tenant):
        review = await _review(db, tenant)
        await db.commit()
        resp = await client.get(f"/api/v1/performance/reviews/{review.id}", headers=tenant.employee.headers)
        assert resp.status_code == 200

        resp = await client.get("/api/v1/performance/reviews/mine", headers=tenant.employee.headers)
        assert resp.json()["meta"]["total"] == 1

        resp = await client.get("/api/v1/performance/reviews/to-complete", headers=tenant.manager.headers)
        assert resp.json()["meta"]["total"] == 1

    async def test_employee_cannot_list_all(self, client, tenant):
        resp = await client.get("/api/v1/performance/reviews", headers=tenant.employee.headers)
        assert resp.status_code == 403

    async def test_other_tenant_review_is_missing(self, client, db, tenant, other_tenant):
        review = await _review(db, tenant)
        await db.commit()
        resp = await client.get(f"/api/v1/performance/reviews/{review.id}", headers=other_tenant.hr.headers)
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════
# GOALS
# ═════════════════════════════════════════════════════════════════════


class TestGoals:

    async def test_employee_sets_own_goal(self, client, tenant):
        resp = await client.post(
            "/api/v1/performance/goals",
            headers=tenant.employee.headers,
            json={"title": "Ship onboarding v2", "category": "delivery"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "not_started"
        assert data["progress"] == 0
        assert data["employee_id"] == str(tenant.employee.employee.id)

        resp = await client.get("/api/v1/performance/goals/mine", headers=tenant.employee.headers)
        assert resp.json()["meta"]["total"] == 1

    async def test_employee_cannot_set_colleague_goal(self, client, tenant):
        resp = await client.post(
            "/api/v1/performance/goals",
            headers=tenant.employee.headers,
            json={"title": "Hire two engineers", "employee_id": str(tenant.manager.employee.id)},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"

    async def test_manager_sets_report_goal(self, client, tenant):
        resp = await client.post(
            "/api/v1/performance/goals",
            headers=tenant.manager.headers,
            json={"title": "Pass certification", "employee_id": str(tenant.employee.employee.id)},
        )
        assert resp.status_code == 201

    async def test_progress_to_completion(self, client, db, tenant):
        goal = await PerformanceService.create_goal(
            db, tenant.company_id, tenant.employee.employee.id, GoalCreate(title="Write docs"),
            actor_id=tenant.employee.user_id,
        )
        await db.commit()
        url = f"/api/v1/performance/goals/{goal.id}/progress"

        resp = await client.post(url, headers=tenant.employee.headers, json={"progress": 40, "note": "Outline done"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "in_progress"

        resp = await client.post(url, headers=tenant.manager.headers, json={"progress": 100})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["completed_at"] is not None
        assert [n["progress"] for n in data["progress_notes"]] == [40, 100]
        assert data["progress_notes"][0]["note"] == "Outline done"

        resp = await client.post(url, headers=tenant.employee.headers, json={"progress": 50})
        assert resp.status_code == 409

    async def test_progress_bounds(self, client, db, tenant):
        goal = await PerformanceService.create_goal(
            db, tenant.company_id, tenant.employee.employee.id, GoalCreate(title="Write docs"),
            actor_id=tenant.employee.user_id,
        )
        await db.commit()
        resp = await client.post(
            f"/api/v1/performance/goals/{goal.id}/progress", headers=tenant.employee.headers, json={"progress": 101},
        )
        assert resp.status_code == 422

    async def test_completing_by_status_fills_progress(self, db, tenant):
        goal = await PerformanceService.create_goal(
            db, tenant.company_id, tenant.employee.employee.id, GoalCreate(title="Write docs"),
            actor_id=tenant.employee.user_id,
        )
        done = await PerformanceService.update_goal(
            db, tenant.company_id, goal.id, GoalUpdate(status=GoalStatus.completed), actor_id=tenant.manager.user_id,
        )
        assert done.progress == 100
        assert done.completed_at is not None

    async def test_canceled_goal_is_closed(self, db, tenant):
        goal = await PerformanceService.create_goal(
            db, tenant.company_id, tenant.employee.employee.id, GoalCreate(title="Write docs"),
            actor_id=tenant.employee.user_id,
        )
        await PerformanceService.update_goal(
            db, tenant.company_id, goal.id, GoalUpdate(status=GoalStatus.canceled), actor_id=tenant.manager.user_id,
        )
        with pytest.raises(InvalidStateException):
            await PerformanceService.update_goal(
                db, tenant.company_id, goal.id, GoalUpdate(status=GoalStatus.in_progress),
                actor_id=tenant.manager.user_id,
            )
        with pytest.raises(InvalidStateException):
            await PerformanceService.update_progress(
                db, tenant.company_id, goal.id, GoalProgress(progress=10), actor_id=tenant.employee.user_id,
            )

    async def test_colleague_cannot_touch_goal(self, client, db, tenant):
        goal = await PerformanceService.create_goal(
            db, tenant.company_id, tenant.manager.employee.id, GoalCreate(title="Team offsite"),
            actor_id=tenant.manager.user_id,
        )
        await db.commit()
        resp = await client.get(f"/api/v1/performance/goals/{goal.id}", headers=tenant.employee.headers)
        assert resp.status_code == 403
        resp = await client.patch(
            f"/api/v1/performance/goals/{goal.id}", headers=tenant.employee.headers, json={"title": "Mine now"},
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# REMINDERS
# ═════════════════════════════════════════════════════════════════════


async def _reminders(db, user_id):
    return (await db.execute(
        select(Notification).where(
            Notification.user_id == user_id, Notification.type == NotificationType.review_reminder,
        )
    )).scalars().all()


class TestReviewReminders:

    async def test_reviewer_reminded_once_per_threshold(self, db, tenant):
        await _review(db, tenant, due_date=date(2026, 3, 7))

        result = await run_review_reminders(db, today=date(2026, 3, 4))
        assert result.reminders_sent == 1
        (note,) = await _reminders(db, tenant.manager.user_id)
        assert "due in 3 day(s)" in note.message

        again = await run_review_reminders(db, today=date(2026, 3, 4))
        assert again.reminders_sent == 0
        assert len(await _reminders(db, tenant.manager.user_id)) == 1

        tomorrow = await run_review_reminders(db, today=date(2026, 3, 6))
        assert tomorrow.reminders_sent == 1

    async def test_period_end_used_without_due_date(self, db, tenant):
        await _review(db, tenant)
        result = await run_review_reminders(db, today=date(2026, 6, 23))
        assert result.reminders_sent == 1
        result = await run_review_reminders(db, today=date(2026, 6, 25))
        assert result.reminders_sent == 0

    async def test_closed_reviews_are_skipped(self, db, tenant):
        review = await _review(db, tenant, due_date=date(2026, 3, 5))
        review.status = ReviewStatus.completed
        await db.flush()
        result = await run_review_reminders(db, today=date(2026, 3, 4))
        assert result.reminders_sent == 0

    async def test_overdue_review_escalates_to_reviewers_manager(self, db, tenant):
        tenant.manager.employee.manager_id = tenant.admin.employee.id
        await _review(db, tenant, due_date=date(2026, 3, 1))

        result = await run_review_reminders(db, today=date(2026, 3, 10))
        assert result.escalations_sent == 1
        (note,) = await _reminders(db, tenant.admin.user_id)
        assert "9 days overdue" in note.message
        assert "Max" in note.title

        result = await run_review_reminders(db, today=date(2026, 3, 11))
        assert result.escalations_sent == 0

    async def test_not_escalated_before_a_week(self, db, tenant):
        tenant.manager.employee.manager_id = tenant.admin.employee.id
        await _review(db, tenant, due_date=date(2026, 3, 1))
        result = await run_review_reminders(db, today=date(2026, 3, 5))
        assert result.escalations_sent == 0
        assert result.reminders_sent == 0
