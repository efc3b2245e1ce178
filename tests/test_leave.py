"""Leave tests — day counting, balances, request lifecycle, reviewers, policies."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.common.constants import AppRole, LeaveStatus, NotificationType
from backend.common.exceptions import (
    ForbiddenException,
    InvalidStateException,
    ValidationException,
)
from backend.emails.models import EmailLog
from backend.leave.models import LeaveBalance, LeaveType
from backend.leave.schemas import BalanceAdjustRequest, LeaveRequestCreate, LeaveTypeCreate
from backend.leave.service import LeaveService, count_leave_days, format_days
from backend.notifications.models import Notification
from tests.conftest import TestSessionFactory, make_actor

# 2026-03-02 is a Monday.
MON = date(2026, 3, 2)
FRI = date(2026, 3, 6)


async def _annual(db, tenant, **overrides) -> LeaveType:
    data = {"name": "Annual Leave", "code": "AL", "default_days": Decimal("10")}
    data.update(overrides)
    leave_type = await LeaveService.create_type(
        db, tenant.company_id, LeaveTypeCreate(**data), actor_id=tenant.hr.user_id,
    )
    return leave_type


async def _submit(db, tenant, actor, leave_type, start=MON, end=FRI, **kwargs):
    return await LeaveService.create_request(
        db,
        tenant.company,
        actor.employee,
        LeaveRequestCreate(leave_type_id=leave_type.id, start_date=start, end_date=end, **kwargs),
        actor_id=actor.user_id,
    )


async def _balance(session, employee_id, leave_type_id, year=2026) -> LeaveBalance:
    return (await session.execute(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )
    )).scalars().one()


# ═════════════════════════════════════════════════════════════════════
# DAY COUNTING
# ═════════════════════════════════════════════════════════════════════


class TestCountLeaveDays:

    def test_full_week(self):
        assert count_leave_days(MON, FRI) == 5

    def test_weekend_is_excluded(self):
        assert count_leave_days(FRI, date(2026, 3, 9)) == 2

    def test_weekend_only(self):
        assert count_leave_days(date(2026, 3, 7), date(2026, 3, 8)) == 0

    def test_single_half_day(self):
        assert count_leave_days(MON, MON, start_half_day=True) == Decimal("0.5")

    def test_half_days_at_both_ends(self):
        assert count_leave_days(MON, FRI, start_half_day=True, end_half_day=True) == 4

    def test_reversed_range(self):
        assert count_leave_days(FRI, MON) == 0

    def test_format_days(self):
        assert format_days(Decimal("10.00")) == "10"
        assert format_days(Decimal("2.50")) == "2.5"


# ═════════════════════════════════════════════════════════════════════
# REQUESTS
# ═════════════════════════════════════════════════════════════════════


class TestSubmit:

    async def test_submit_reserves_pending_days(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        assert request.status == LeaveStatus.pending
        assert request.total_days == 5

        balance = await _balance(db, tenant.employee.employee.id, leave_type.id)
        assert balance.pending_days == 5
        assert balance.available_days == 5

    async def test_manager_is_notified(self, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type)

        notification = (await db.execute(
            select(Notification).where(Notification.user_id == tenant.manager.user_id)
        )).scalars().one()
        assert notification.type == NotificationType.leave_request
        emails = (await db.execute(
            select(EmailLog).where(EmailLog.template_type == "leave_request_submitted")
        )).scalars().all()
        assert len(emails) == 1

    async def test_insufficient_balance(self, db, tenant):
        leave_type = await _annual(db, tenant)
        with pytest.raises(ValidationException) as exc_info:
            await _submit(db, tenant, tenant.employee, leave_type, end=date(2026, 3, 20))
        assert exc_info.value.detail == "Insufficient balance. Available: 10 days, Requested: 15 days"

    async def test_type_without_allocation(self, db, tenant):
        leave_type = await _annual(db, tenant, name="Unpaid", code="UP", default_days=Decimal("0"))
        with pytest.raises(ValidationException, match="No leave balance allocated"):
            await _submit(db, tenant, tenant.employee, leave_type)

    async def test_overlap_is_rejected(self, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type, end=date(2026, 3, 3))
        with pytest.raises(ValidationException) as exc_info:
            await _submit(db, tenant, tenant.employee, leave_type, start=date(2026, 3, 3), end=FRI)
        assert "dates" in exc_info.value.errors

    async def test_weekend_range_is_rejected(self, db, tenant):
        leave_type = await _annual(db, tenant)
        with pytest.raises(ValidationException):
            await _submit(db, tenant, tenant.employee, leave_type, start=date(2026, 3, 7), end=date(2026, 3, 8))

    async def test_max_consecutive_days(self, db, tenant):
        leave_type = await _annual(db, tenant, max_consecutive_days=3)
        with pytest.raises(ValidationException) as exc_info:
            await _submit(db, tenant, tenant.employee, leave_type)
        assert exc_info.value.errors["dates"] == ["Annual Leave allows at most 3 consecutive days."]

    async def test_inactive_type(self, db, tenant):
        leave_type = await _annual(db, tenant)
        leave_type.is_active = False
        await db.flush()
        with pytest.raises(ValidationException):
            await _submit(db, tenant, tenant.employee, leave_type)

    async def test_submit_endpoint(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        await db.commit()
        resp = await client.post(
            "/api/v1/leave/requests",
            headers=tenant.employee.headers,
            json={"leave_type_id": str(leave_type.id), "start_date": "2026-03-02", "end_date": "2026-03-03"},
        )
        assert resp.status_code == 201
        assert resp.json()["status"] == "pending"
        assert Decimal(resp.json()["total_days"]) == 2
        assert resp.json()["leave_type"]["code"] == "AL"

    async def test_end_before_start_is_422(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        await db.commit()
        resp = await client.post(
            "/api/v1/leave/requests",
            headers=tenant.employee.headers,
            json={"leave_type_id": str(leave_type.id), "start_date": "2026-03-05", "end_date": "2026-03-02"},
        )
        assert resp.status_code == 422


class TestReview:

    async def test_manager_approves(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        await db.commit()

        resp = await client.post(
            f"/api/v1/leave/requests/{request.id}/approve",
            headers=tenant.manager.headers,
            json={"notes": "Enjoy"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        assert resp.json()["review_notes"] == "Enjoy"

        async with TestSessionFactory() as session:
            balance = await _balance(session, tenant.employee.employee.id, leave_type.id)
            assert (balance.used_days, balance.pending_days) == (5, 0)
            notification = (await session.execute(
                select(Notification).where(
                    Notification.user_id == tenant.employee.user_id,
                    Notification.type == NotificationType.leave_approved,
                )
            )).scalars().one()
            assert notification.entity_id == request.id

    async def test_approve_twice_is_conflict(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        kwargs = dict(reviewer_id=tenant.hr.user_id, can_review_all=True)
        await LeaveService.approve_request(db, tenant.company_id, request.id, **kwargs)
        with pytest.raises(InvalidStateException, match="already approved"):
            await LeaveService.approve_request(db, tenant.company_id, request.id, **kwargs)

    async def test_other_manager_cannot_review(self, client, db, tenant):
        other = await make_actor(db, tenant.company, AppRole.manager, first_name="Olga")
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        await db.commit()

        resp = await client.post(f"/api/v1/leave/requests/{request.id}/approve", headers=other.headers)
        assert resp.status_code == 403

    async def test_cannot_review_own_request(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.hr, leave_type)
        with pytest.raises(ForbiddenException, match="own leave request"):
            await LeaveService.approve_request(
                db, tenant.company_id, request.id, reviewer_id=tenant.hr.user_id, can_review_all=True,
            )

    async def test_employee_cannot_approve(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.manager, leave_type)
        await db.commit()
        resp = await client.post(f"/api/v1/leave/requests/{request.id}/approve", headers=tenant.employee.headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"

    async def test_reject_releases_pending(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        result = await LeaveService.reject_request(
            db, tenant.company_id, request.id,
            reviewer_id=tenant.manager.user_id, can_review_all=False, notes="Busy week",
        )
        assert result.status == LeaveStatus.rejected

        balance = await _balance(db, tenant.employee.employee.id, leave_type.id)
        assert balance.pending_days == 0
        assert balance.available_days == 10

    async def test_cancel_approved_restores_used(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        await LeaveService.approve_request(
            db, tenant.company_id, request.id, reviewer_id=tenant.manager.user_id, can_review_all=False,
        )
        result = await LeaveService.cancel_request(
            db, tenant.company_id, request.id, user_id=tenant.employee.user_id,
        )
        assert result.status == LeaveStatus.canceled
        balance = await _balance(db, tenant.employee.employee.id, leave_type.id)
        assert balance.used_days == 0

    async def test_only_requester_can_cancel(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        with pytest.raises(ForbiddenException):
            await LeaveService.cancel_request(db, tenant.company_id, request.id, user_id=tenant.hr.user_id)

    async def test_rejected_cannot_be_canceled(self, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.employee, leave_type)
        await LeaveService.reject_request(
            db, tenant.company_id, request.id, reviewer_id=tenant.hr.user_id, can_review_all=True,
        )
        with pytest.raises(InvalidStateException):
            await LeaveService.cancel_request(
                db, tenant.company_id, request.id, user_id=tenant.employee.user_id,
            )


class TestVisibility:

    async def test_manager_sees_team_only(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type)
        await _submit(db, tenant, tenant.hr, leave_type)
        await db.commit()

        resp = await client.get("/api/v1/leave/requests", headers=tenant.manager.headers)
        assert resp.status_code == 200
        assert [r["employee_id"] for r in resp.json()["data"]] == [str(tenant.employee.employee.id)]

        resp = await client.get("/api/v1/leave/requests", headers=tenant.hr.headers)
        assert resp.json()["meta"]["total"] == 2

    async def test_mine(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type)
        await _submit(db, tenant, tenant.hr, leave_type)
        await db.commit()

        resp = await client.get("/api/v1/leave/requests/mine", headers=tenant.employee.headers)
        assert resp.json()["meta"]["total"] == 1

    async def test_employee_cannot_read_colleague_request(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        request = await _submit(db, tenant, tenant.hr, leave_type)
        await db.commit()
        resp = await client.get(f"/api/v1/leave/requests/{request.id}", headers=tenant.employee.headers)
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# BALANCES
# ═════════════════════════════════════════════════════════════════════


class TestBalances:

    async def test_adjust_appends_reason(self, db, tenant):
        leave_type = await _annual(db, tenant)
        data = BalanceAdjustRequest(
            employee_id=tenant.employee.employee.id,
            leave_type_id=leave_type.id,
            adjustment_days=Decimal("2"),
            reason="Overtime",
            year=2026,
        )
        out = await LeaveService.adjust_balance(db, tenant.company_id, data, actor_id=tenant.hr.user_id)
        assert out.available_days == 12
        out = await LeaveService.adjust_balance(
            db, tenant.company_id, data.model_copy(update={"adjustment_days": Decimal("-0.5"), "reason": "Fix"}),
            actor_id=tenant.hr.user_id,
        )
        assert out.available_days == Decimal("11.5")
        assert out.adjustment_reason.count("\n") == 1
        assert out.adjustment_reason.endswith("Fix: -0.5 days")

    async def test_employee_cannot_adjust(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        await db.commit()
        resp = await client.post(
            "/api/v1/leave/balances/adjust",
            headers=tenant.employee.headers,
            json={
                "employee_id": str(tenant.employee.employee.id),
                "leave_type_id": str(leave_type.id),
                "adjustment_days": "5",
                "reason": "Please",
            },
        )
        assert resp.status_code == 403

    async def test_accrual_carries_over_capped(self, db, tenant):
        leave_type = await _annual(db, tenant, carry_over_limit=Decimal("5"))
        await _submit(db, tenant, tenant.employee, leave_type, end=date(2026, 3, 4))
        balance = await _balance(db, tenant.employee.employee.id, leave_type.id)
        balance.pending_days = Decimal("0")
        balance.used_days = Decimal("3")
        await db.flush()

        result = await LeaveService.accrue_balances(db, tenant.company_id, 2027)
        assert result.employees_processed == 4
        assert result.balances_created == 4

        next_year = await _balance(db, tenant.employee.employee.id, leave_type.id, year=2027)
        assert next_year.carried_over_days == 5
        assert next_year.allocated_days == 10
        hr_next = await _balance(db, tenant.hr.employee.id, leave_type.id, year=2027)
        assert hr_next.carried_over_days == 0

    async def test_accrual_without_limit_carries_nothing(self, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type, end=MON)
        await LeaveService.accrue_balances(db, tenant.company_id, 2027)
        next_year = await _balance(db, tenant.employee.employee.id, leave_type.id, year=2027)
        assert next_year.carried_over_days == 0

    async def test_my_balances_endpoint(self, client, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type, end=MON)
        await db.commit()
        resp = await client.get("/api/v1/leave/balances", headers=tenant.employee.headers, params={"year": 2026})
        assert resp.status_code == 200
        (balance,) = resp.json()
        assert Decimal(balance["available_days"]) == 9
        assert balance["leave_type"]["name"] == "Annual Leave"


# ═════════════════════════════════════════════════════════════════════
# TYPES & POLICIES
# ═════════════════════════════════════════════════════════════════════


class TestLeaveTypes:

    async def test_hr_creates_type(self, client, tenant):
        body = {"name": "Sick Leave", "code": "SL", "default_days": "8"}
        resp = await client.post("/api/v1/leave/types", headers=tenant.hr.headers, json=body)
        assert resp.status_code == 201
        resp = await client.post("/api/v1/leave/types", headers=tenant.hr.headers, json=body)
        assert resp.status_code == 409

    async def test_employee_cannot_create_type(self, client, tenant):
        resp = await client.post(
            "/api/v1/leave/types", headers=tenant.employee.headers, json={"name": "Free", "code": "FR"},
        )
        assert resp.status_code == 403

    async def test_bad_color(self, client, tenant):
        resp = await client.post(
            "/api/v1/leave/types", headers=tenant.hr.headers, json={"name": "X", "code": "X", "color": "blue"},
        )
        assert resp.status_code == 422

    async def test_type_in_use_cannot_be_deleted(self, db, tenant):
        leave_type = await _annual(db, tenant)
        await _submit(db, tenant, tenant.employee, leave_type)
        with pytest.raises(InvalidStateException, match="deactivate"):
            await LeaveService.delete_type(db, tenant.company_id, leave_type.id, actor_id=tenant.hr.user_id)


class TestPolicies:

    async def test_export_then_import_into_other_company(self, client, db, tenant, other_tenant):
        await _annual(db, tenant, carry_over_limit=Decimal("5"))
        await db.commit()

        resp = await client.get("/api/v1/leave/policies/export", headers=tenant.employee.headers)
        assert resp.status_code == 200
        exported = resp.json()
        assert exported["source_company"] == "Acme"
        assert [t["code"] for t in exported["leave_types"]] == ["AL"]

        resp = await client.post("/api/v1/leave/policies/import", headers=other_tenant.hr.headers, json=exported)
        assert resp.status_code == 200
        assert resp.json() == {"created": 1, "updated": 0, "errors": []}

        resp = await client.post("/api/v1/leave/policies/import", headers=other_tenant.hr.headers, json=exported)
        assert resp.json()["updated"] == 1

    async def test_bad_items_are_reported(self, db, tenant):
        result = await LeaveService.import_policies(
            db,
            tenant.company_id,
            {
                "version": "1.0",
                "leave_types": [
                    {"name": "Study", "code": "ST", "default_days": 3},
                    {"name": "Broken", "code": ""},
                ],
            },
            actor_id=tenant.hr.user_id,
        )
        assert result.created == 1
        assert [e.code for e in result.errors] == ["item 2"]

    async def test_code_clash_is_reported(self, db, tenant):
        await _annual(db, tenant)
        result = await LeaveService.import_policies(
            db,
            tenant.company_id,
            {"version": "1.0", "leave_types": [{"name": "Another", "code": "AL"}]},
            actor_id=tenant.hr.user_id,
        )
        assert result.created == 0
        assert result.errors[0].message == "Code 'AL' is used by another type."

    async def test_missing_version(self, db, tenant):
        with pytest.raises(ValidationException):
            await LeaveService.import_policies(
                db, tenant.company_id, {"leave_types": [{"name": "A", "code": "A"}]}, actor_id=tenant.hr.user_id,
            )
