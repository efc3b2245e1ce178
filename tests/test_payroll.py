"""Payroll tests — pay math, entries, bulk add, run lifecycle, payslips, stats."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.common.constants import NotificationType, PayrollStatus
from backend.common.exceptions import ConflictError, InvalidStateException
from backend.companies.models import Company
from backend.emails.models import EmailLog
from backend.leave.schemas import LeaveRequestCreate, LeaveTypeCreate
from backend.leave.service import LeaveService
from backend.notifications.models import Notification
from backend.payroll.schemas import PayrollEntryCreate, PayrollEntryUpdate, PayrollRunCreate
from backend.payroll.service import LOCKED_RUN_MESSAGE, PayrollService, calculate_pay, working_days
from backend.time_tracking.models import TimeEntry
from backend.time_tracking.service import TimeTrackingService
from tests.conftest import TestSessionFactory, make_tenant, utc


def _company(pf_enabled=False) -> Company:
    return Company(
        name="Acme", slug="acme", pf_enabled=pf_enabled,
        pf_employee_rate=Decimal("12"), pf_employer_rate=Decimal("13"),
    )


async def _march_run(db, tenant, name="March 2026"):
    return await PayrollService.create_run(
        db,
        tenant.company,
        PayrollRunCreate(
            name=name, period_start=date(2026, 3, 1), period_end=date(2026, 3, 31), pay_date=date(2026, 3, 31),
        ),
        actor_id=tenant.hr.user_id,
    )


async def _entry(db, tenant, run, actor, base="4000", **kwargs):
    return await PayrollService.add_entry(
        db, tenant.company, run.id,
        PayrollEntryCreate(employee_id=actor.employee.id, base_salary=Decimal(base), **kwargs),
        actor_id=tenant.hr.user_id,
    )


# ═════════════════════════════════════════════════════════════════════
# PAY CALCULATION
# ═════════════════════════════════════════════════════════════════════


class TestCalculatePay:

    def test_gross_includes_commissions(self):
        pay = calculate_pay(
            _company(), base_salary="3000", overtime_pay="150", bonuses="200", commissions="50",
            tax_deductions="400", benefits_deductions="100",
        )
        assert pay.gross_pay == Decimal("3400.00")
        assert pay.total_deductions == Decimal("500.00")
        assert pay.net_pay == Decimal("2900.00")
        assert pay.total_employer_cost == Decimal("3400.00")

    def test_pf_from_company_rates(self):
        pay = calculate_pay(_company(pf_enabled=True), base_salary="1000")
        assert pay.pf_deduction == Decimal("120.00")
        assert pay.net_pay == Decimal("880.00")
        assert pay.total_employer_cost == Decimal("1130.00")

    def test_explicit_pf_wins(self):
        pay = calculate_pay(_company(pf_enabled=True), base_salary="1000", pf_deduction="50")
        assert pay.pf_deduction == Decimal("50.00")

    def test_no_pf_when_disabled(self):
        assert calculate_pay(_company(), base_salary="1000").pf_deduction == 0

    def test_rounds_to_cents(self):
        pay = calculate_pay(_company(pf_enabled=True), base_salary="333.33")
        assert pay.pf_deduction == Decimal("40.00")

    def test_working_days(self):
        assert working_days(date(2026, 3, 1), date(2026, 3, 31)) == 22


# ═════════════════════════════════════════════════════════════════════
# RUNS & ENTRIES
# ═════════════════════════════════════════════════════════════════════


class TestRuns:

    async def test_create_run_endpoint(self, client, tenant):
        resp = await client.post(
            "/api/v1/payroll/runs",
            headers=tenant.hr.headers,
            json={"name": "April", "period_start": "2026-04-01", "period_end": "2026-04-30", "pay_date": "2026-04-30"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "draft"
        assert data["currency"] == "USD"
        assert data["employee_count"] == 0

    async def test_duplicate_period(self, db, tenant):
        await _march_run(db, tenant)
        with pytest.raises(ConflictError):
            await _march_run(db, tenant, name="Again")

    async def test_period_order_is_validated(self, client, tenant):
        resp = await client.post(
            "/api/v1/payroll/runs",
            headers=tenant.hr.headers,
            json={"name": "Bad", "period_start": "2026-04-30", "period_end": "2026-04-01", "pay_date": "2026-04-30"},
        )
        assert resp.status_code == 422

    async def test_employee_has_no_payroll_access(self, client, tenant):
        resp = await client.get("/api/v1/payroll/runs", headers=tenant.employee.headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"

    async def test_plan_without_payroll(self, client, db):
        pro = await make_tenant(db, plan_name="Pro", name="Initech")
        resp = await client.get("/api/v1/payroll/runs", headers=pro.admin.headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "module_not_available"


class TestEntries:

    async def test_totals_follow_entries(self, db, tenant):
        run = await _march_run(db, tenant)
        first = await _entry(db, tenant, run, tenant.employee, base="4000", tax_deductions=Decimal("500"))
        await _entry(db, tenant, run, tenant.manager, base="5000", bonuses=Decimal("250"))
        assert first.net_pay == Decimal("3500.00")
        assert first.employee.first_name == "Eve"

        assert run.employee_count == 2
        assert run.total_gross == Decimal("9250.00")
        assert run.total_net == Decimal("8750.00")

        await PayrollService.delete_entry(db, tenant.company_id, run.id, first.id, actor_id=tenant.hr.user_id)
        assert run.employee_count == 1
        assert run.total_gross == Decimal("5250.00")

    async def test_one_entry_per_employee(self, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        with pytest.raises(ConflictError):
            await _entry(db, tenant, run, tenant.employee)

    async def test_update_recomputes(self, db, tenant):
        run = await _march_run(db, tenant)
        entry = await _entry(db, tenant, run, tenant.employee, base="4000")
        updated = await PayrollService.update_entry(
            db, tenant.company, run.id, entry.id,
            PayrollEntryUpdate(commissions=Decimal("300"), tax_deductions=Decimal("100")),
            actor_id=tenant.hr.user_id,
        )
        assert updated.gross_pay == Decimal("4300.00")
        assert updated.net_pay == Decimal("4200.00")
        assert run.total_net == Decimal("4200.00")

    async def test_pf_follows_base_salary(self, db, tenant):
        tenant.company.pf_enabled = True
        await db.flush()
        run = await _march_run(db, tenant)
        entry = await _entry(db, tenant, run, tenant.employee, base="1000")
        assert entry.pf_deduction == Decimal("120.00")

        updated = await PayrollService.update_entry(
            db, tenant.company, run.id, entry.id, PayrollEntryUpdate(base_salary=Decimal("2000")),
            actor_id=tenant.hr.user_id,
        )
        assert updated.pf_deduction == Decimal("240.00")

    async def test_list_entries_endpoint(self, client, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        await db.commit()
        resp = await client.get(f"/api/v1/payroll/runs/{run.id}/entries", headers=tenant.hr.headers)
        assert resp.status_code == 200
        assert [e["employee"]["first_name"] for e in resp.json()] == ["Eve"]


class TestBulkAdd:

    async def test_bulk_add_prices_overtime_and_unpaid_leave(self, db, tenant):
        # 22 working days in March: Eve's daily rate is 4400 / 22 = 200.
        employee = tenant.employee.employee
        await TimeTrackingService.clock_in(db, employee, now=utc(2026, 3, 4, 9))
        await TimeTrackingService.clock_out(db, employee, now=utc(2026, 3, 4, 19))

        unpaid = await LeaveService.create_type(
            db, tenant.company_id,
            LeaveTypeCreate(name="Unpaid", code="UP", default_days=Decimal("5"), is_paid=False),
            actor_id=tenant.hr.user_id,
        )
        request = await LeaveService.create_request(
            db, tenant.company, employee,
            LeaveRequestCreate(leave_type_id=unpaid.id, start_date=date(2026, 3, 10), end_date=date(2026, 3, 10)),
            actor_id=tenant.employee.user_id,
        )
        await LeaveService.approve_request(
            db, tenant.company_id, request.id, reviewer_id=tenant.hr.user_id, can_review_all=True,
        )

        run = await _march_run(db, tenant)
        result = await PayrollService.bulk_add(db, tenant.company, run.id, actor_id=tenant.hr.user_id)
        # the owner has no salary on file
        assert (result.added, result.skipped) == (3, 1)
        assert result.run.employee_count == 3

        entries = {e.employee_id: e for e in await PayrollService.list_entries(db, tenant.company_id, run.id)}
        eve = entries[employee.id]
        assert eve.overtime_pay == Decimal("75.00")
        assert eve.unpaid_leave_days == 1
        assert eve.benefits_deductions == Decimal("200.00")
        assert eve.net_pay == Decimal("4275.00")
        assert eve.days_present == 1

    async def test_bulk_add_skips_existing(self, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        result = await PayrollService.bulk_add(db, tenant.company, run.id, actor_id=tenant.hr.user_id)
        assert (result.added, result.skipped) == (2, 2)


# ═════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═════════════════════════════════════════════════════════════════════


class TestLifecycle:

    async def test_process_needs_entries(self, db, tenant):
        run = await _march_run(db, tenant)
        with pytest.raises(InvalidStateException, match="without entries"):
            await PayrollService.process_run(db, tenant.company_id, run.id, actor_id=tenant.hr.user_id)

    async def test_complete_locks_time_and_notifies(self, client, db, tenant):
        employee = tenant.employee.employee
        await TimeTrackingService.clock_in(db, employee, now=utc(2026, 3, 4, 9))
        await TimeTrackingService.clock_out(db, employee, now=utc(2026, 3, 4, 17))
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        await db.commit()

        resp = await client.post(f"/api/v1/payroll/runs/{run.id}/process", headers=tenant.hr.headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "processing"

        resp = await client.post(f"/api/v1/payroll/runs/{run.id}/complete", headers=tenant.hr.headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
        assert resp.json()["processed_by"] == str(tenant.hr.user_id)

        async with TestSessionFactory() as session:
            entry = (await session.execute(
                select(TimeEntry).where(TimeEntry.employee_id == employee.id)
            )).scalars().one()
            assert entry.is_locked is True
            assert entry.payroll_run_id == run.id

            notification = (await session.execute(
                select(Notification).where(
                    Notification.user_id == tenant.employee.user_id,
                    Notification.type == NotificationType.payroll_processed,
                )
            )).scalars().one()
            assert notification.entity_id == run.id
            emails = (await session.execute(
                select(EmailLog).where(EmailLog.template_type == "payroll_processed")
            )).scalars().all()
            assert len(emails) == 1

        resp = await client.get("/api/v1/payroll/payslips/mine", headers=tenant.employee.headers)
        assert resp.status_code == 200
        (payslip,) = resp.json()
        assert payslip["payroll_run"]["name"] == "March 2026"
        assert Decimal(payslip["net_pay"]) == Decimal("4000")

    async def test_non_draft_run_is_locked(self, db, tenant):
        run = await _march_run(db, tenant)
        entry = await _entry(db, tenant, run, tenant.employee)
        await PayrollService.process_run(db, tenant.company_id, run.id, actor_id=tenant.hr.user_id)

        with pytest.raises(InvalidStateException) as exc_info:
            await PayrollService.update_entry(
                db, tenant.company, run.id, entry.id, PayrollEntryUpdate(bonuses=Decimal("1")),
                actor_id=tenant.hr.user_id,
            )
        assert exc_info.value.detail == LOCKED_RUN_MESSAGE
        with pytest.raises(InvalidStateException):
            await _entry(db, tenant, run, tenant.manager)
        with pytest.raises(InvalidStateException, match="Only draft"):
            await PayrollService.delete_run(db, tenant.company_id, run.id, actor_id=tenant.hr.user_id)

    async def test_fail_appends_reason(self, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        await PayrollService.process_run(db, tenant.company_id, run.id, actor_id=tenant.hr.user_id)
        failed = await PayrollService.fail_run(
            db, tenant.company_id, run.id, actor_id=tenant.hr.user_id, reason="Bank rejected file",
        )
        assert failed.status == PayrollStatus.failed
        assert failed.notes == "Bank rejected file"

    async def test_complete_requires_processing(self, db, tenant):
        run = await _march_run(db, tenant)
        with pytest.raises(InvalidStateException, match="processing"):
            await PayrollService.complete_run(db, tenant.company, run.id, actor_id=tenant.hr.user_id)

    async def test_manager_cannot_process(self, client, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        await db.commit()
        resp = await client.post(f"/api/v1/payroll/runs/{run.id}/process", headers=tenant.manager.headers)
        assert resp.status_code == 403

    async def test_delete_draft(self, client, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        await db.commit()
        resp = await client.delete(f"/api/v1/payroll/runs/{run.id}", headers=tenant.admin.headers)
        assert resp.status_code == 204


class TestStats:

    async def test_stats(self, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee, base="4000")
        await PayrollService.process_run(db, tenant.company_id, run.id, actor_id=tenant.hr.user_id)
        await PayrollService.complete_run(db, tenant.company, run.id, actor_id=tenant.hr.user_id)
        await PayrollService.create_run(
            db, tenant.company,
            PayrollRunCreate(
                name="April", period_start=date(2026, 4, 1), period_end=date(2026, 4, 30), pay_date=date(2026, 4, 30),
            ),
            actor_id=tenant.hr.user_id,
        )

        stats = await PayrollService.get_stats(db, tenant.company_id, today=date(2026, 6, 1))
        assert stats.runs_by_status["completed"] == 1
        assert stats.runs_by_status["draft"] == 1
        assert stats.runs_by_status["failed"] == 0
        assert stats.completed_runs_this_year == 1
        assert stats.ytd_net == Decimal("4000.00")
        assert stats.last_run.name == "March 2026"

    async def test_payslips_hide_open_runs(self, db, tenant):
        run = await _march_run(db, tenant)
        await _entry(db, tenant, run, tenant.employee)
        assert await PayrollService.list_payslips(db, tenant.company_id, tenant.employee.employee.id) == []
