"""Payroll service — runs, entries, pay calculation, run lifecycle.

Business logic:
  - gross = base + overtime + bonuses + commissions
  - PF (company ``pf_enabled`` and no explicit value) = base × employee rate / 100
  - deductions = tax + benefits + PF; net = gross − deductions
  - employer cost = gross + base × employer rate / 100
  - Entries only change while the run is ``draft``; run totals are
    recomputed after every entry change
  - draft → processing → completed (time entries locked, employees notified);
    processing → failed
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction, EmploymentStatus, LeaveStatus, PayrollStatus
from backend.common.exceptions import ConflictError, InvalidStateException, NotFoundException
from backend.common.models import get_for_company, utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.companies.models import Company
from backend.core_hr.models import Employee
from backend.emails.service import EmailService
from backend.leave.models import LeaveRequest, LeaveType
from backend.leave.service import count_leave_days
from backend.notifications.service import notify_payroll_processed
from backend.payroll.models import PayrollEntry, PayrollRun
from backend.payroll.schemas import (
    BulkAddResult,
    PayrollEntryCreate,
    PayrollEntryOut,
    PayrollEntryUpdate,
    PayrollRunCreate,
    PayrollRunOut,
    PayrollRunUpdate,
    PayrollStats,
    PayslipOut,
)
from backend.time_tracking.service import TimeTrackingService

logger = logging.getLogger(__name__)

LOCKED_RUN_MESSAGE = "Cannot modify a locked payroll run"
CENTS = Decimal("0.01")
ZERO = Decimal("0")
OVERTIME_MULTIPLIER = Decimal("1.5")
HOURS_PER_DAY = Decimal("8")

_PAY_FIELDS = (
    "base_salary", "overtime_pay", "bonuses", "commissions",
    "tax_deductions", "benefits_deductions", "pf_deduction",
)


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PayBreakdown:
    gross_pay: Decimal
    pf_deduction: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    total_employer_cost: Decimal


def calculate_pay(
    company: Company,
    *,
    base_salary: Any,
    overtime_pay: Any = 0,
    bonuses: Any = 0,
    commissions: Any = 0,
    tax_deductions: Any = 0,
    benefits_deductions: Any = 0,
    pf_deduction: Any = None,
) -> PayBreakdown:
    """Derive gross, PF, deductions, net and employer cost for one entry."""
    base = _money(base_salary)
    gross = base + _money(overtime_pay) + _money(bonuses) + _money(commissions)

    if pf_deduction is None:
        pf = _money(base * Decimal(company.pf_employee_rate or 0) / 100) if company.pf_enabled else ZERO
    else:
        pf = _money(pf_deduction)

    deductions = _money(tax_deductions) + _money(benefits_deductions) + pf
    employer_pf = _money(base * Decimal(company.pf_employer_rate or 0) / 100) if company.pf_enabled else ZERO
    return PayBreakdown(
        gross_pay=gross,
        pf_deduction=pf,
        total_deductions=deductions,
        net_pay=gross - deductions,
        total_employer_cost=gross + employer_pf,
    )


def working_days(start: date, end: date) -> int:
    return int(count_leave_days(start, end))


class PayrollService:
    """Async payroll operations."""

    # ─────────────────────────────────────────────────────────────────
    # Runs
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_runs(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: Optional[PayrollStatus] = None,
        year: Optional[int] = None,
    ) -> PaginatedResponse[PayrollRunOut]:
        query = select(PayrollRun).where(PayrollRun.company_id == company_id)
        if status is not None:
            query = query.where(PayrollRun.status == status)
        if year is not None:
            query = query.where(PayrollRun.pay_date >= date(year, 1, 1), PayrollRun.pay_date <= date(year, 12, 31))
        if not pagination.sort:
            query = query.order_by(PayrollRun.pay_date.desc())
        return await paginate(db, query, pagination, model=PayrollRun, schema=PayrollRunOut)

    @staticmethod
    async def get_run(db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID) -> PayrollRun:
        return await get_for_company(db, PayrollRun, company_id, run_id, "Payroll run")

    @staticmethod
    async def _draft_run(db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID) -> PayrollRun:
        run = await PayrollService.get_run(db, company_id, run_id)
        if run.status != PayrollStatus.draft:
            raise InvalidStateException(LOCKED_RUN_MESSAGE)
        return run

    @staticmethod
    async def create_run(
        db: AsyncSession, company: Company, data: PayrollRunCreate, *, actor_id: uuid.UUID,
    ) -> PayrollRun:
        existing = await db.execute(
            select(PayrollRun.id).where(
                PayrollRun.company_id == company.id,
                PayrollRun.period_start == data.period_start,
                PayrollRun.period_end == data.period_end,
            )
        )
        if existing.first():
            raise ConflictError("period", f"{data.period_start}..{data.period_end}")

        run = PayrollRun(
            company_id=company.id,
            name=data.name,
            period_start=data.period_start,
            period_end=data.period_end,
            pay_date=data.pay_date,
            currency=data.currency or company.currency,
            notes=data.notes,
            status=PayrollStatus.draft,
            created_by=actor_id,
        )
        db.add(run)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="payroll_run",
            entity_id=run.id,
            company_id=company.id,
            user_id=actor_id,
            new_values={
                "name": run.name,
                "period_start": str(run.period_start),
                "period_end": str(run.period_end),
            },
        )
        logger.info("Created payroll run %s for company %s", run.id, company.id)
        return run

    @staticmethod
    async def update_run(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID, data: PayrollRunUpdate, *, actor_id: uuid.UUID,
    ) -> PayrollRun:
        run = await PayrollService._draft_run(db, company_id, run_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(run, field, value)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="payroll_run",
            entity_id=run.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={k: str(v) for k, v in changes.items()},
        )
        return run

    @staticmethod
    async def delete_run(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        run = await PayrollService.get_run(db, company_id, run_id)
        if run.status != PayrollStatus.draft:
            raise InvalidStateException("Only draft payroll runs can be deleted.")

        entries = await db.execute(select(PayrollEntry).where(PayrollEntry.payroll_run_id == run.id))
        for entry in entries.scalars().all():
            await db.delete(entry)
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="payroll_run",
            entity_id=run.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"name": run.name, "period_start": str(run.period_start), "period_end": str(run.period_end)},
        )
        await db.delete(run)
        await db.flush()

    @staticmethod
    async def recalculate_totals(db: AsyncSession, run: PayrollRun) -> PayrollRun:
        """Refresh the run's totals and head count from its entries."""
        result = await db.execute(
            select(
                func.count(PayrollEntry.id),
                func.coalesce(func.sum(PayrollEntry.gross_pay), 0),
                func.coalesce(func.sum(PayrollEntry.total_deductions), 0),
                func.coalesce(func.sum(PayrollEntry.net_pay), 0),
                func.coalesce(func.sum(PayrollEntry.total_employer_cost), 0),
            ).where(PayrollEntry.payroll_run_id == run.id)
        )
        count, gross, deductions, net, employer = result.one()
        run.employee_count = count or 0
        run.total_gross = _money(gross)
        run.total_deductions = _money(deductions)
        run.total_net = _money(net)
        run.total_employer_cost = _money(employer)
        await db.flush()
        return run

    # ─────────────────────────────────────────────────────────────────
    # Entries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_entries(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID,
    ) -> list[PayrollEntryOut]:
        await PayrollService.get_run(db, company_id, run_id)
        result = await db.execute(
            select(PayrollEntry)
            .where(PayrollEntry.payroll_run_id == run_id, PayrollEntry.company_id == company_id)
            .options(selectinload(PayrollEntry.employee))
            .join(Employee, Employee.id == PayrollEntry.employee_id)
            .order_by(Employee.last_name, Employee.first_name)
            .execution_options(populate_existing=True)
        )
        return [PayrollEntryOut.model_validate(e) for e in result.scalars().all()]

    @staticmethod
    async def _load_entry(db: AsyncSession, entry_id: uuid.UUID) -> PayrollEntry:
        result = await db.execute(
            select(PayrollEntry)
            .where(PayrollEntry.id == entry_id)
            .options(selectinload(PayrollEntry.employee))
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()

    @staticmethod
    async def _entry_in_run(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID, entry_id: uuid.UUID,
    ) -> PayrollEntry:
        entry = await get_for_company(db, PayrollEntry, company_id, entry_id, "Payroll entry")
        if entry.payroll_run_id != run_id:
            raise NotFoundException(entity_type="Payroll entry", entity_id=entry_id)
        return entry

    @staticmethod
    async def add_entry(
        db: AsyncSession, company: Company, run_id: uuid.UUID, data: PayrollEntryCreate, *, actor_id: uuid.UUID,
    ) -> PayrollEntry:
        run = await PayrollService._draft_run(db, company.id, run_id)
        await get_for_company(db, Employee, company.id, data.employee_id)

        duplicate = await db.execute(
            select(PayrollEntry.id).where(
                PayrollEntry.payroll_run_id == run.id, PayrollEntry.employee_id == data.employee_id,
            )
        )
        if duplicate.first():
            raise ConflictError("employee_id", data.employee_id)

        values = data.model_dump()
        pay = calculate_pay(company, **{f: values[f] for f in _PAY_FIELDS})
        entry = PayrollEntry(
            company_id=company.id,
            payroll_run_id=run.id,
            employee_id=data.employee_id,
            base_salary=_money(data.base_salary),
            overtime_pay=_money(data.overtime_pay),
            bonuses=_money(data.bonuses),
            commissions=_money(data.commissions),
            tax_deductions=_money(data.tax_deductions),
            benefits_deductions=_money(data.benefits_deductions),
            pf_deduction=pay.pf_deduction,
            gross_pay=pay.gross_pay,
            total_deductions=pay.total_deductions,
            net_pay=pay.net_pay,
            total_employer_cost=pay.total_employer_cost,
            hours_worked=data.hours_worked,
            overtime_hours=data.overtime_hours,
            days_present=data.days_present,
            notes=data.notes,
        )
        db.add(entry)
        await db.flush()
        await PayrollService.recalculate_totals(db, run)

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="payroll_entry",
            entity_id=entry.id,
            company_id=company.id,
            user_id=actor_id,
            new_values={"employee_id": str(entry.employee_id), "net_pay": str(entry.net_pay)},
        )
        return await PayrollService._load_entry(db, entry.id)

    @staticmethod
    async def update_entry(
        db: AsyncSession,
        company: Company,
        run_id: uuid.UUID,
        entry_id: uuid.UUID,
        data: PayrollEntryUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> PayrollEntry:
        run = await PayrollService._draft_run(db, company.id, run_id)
        entry = await PayrollService._entry_in_run(db, company.id, run_id, entry_id)

        changes = data.model_dump(exclude_unset=True)
        old = {"gross_pay": str(entry.gross_pay), "net_pay": str(entry.net_pay)}
        for field, value in changes.items():
            if field in _PAY_FIELDS and field != "pf_deduction" and value is None:
                continue
            setattr(entry, field, value)

        # PF follows the base salary unless the caller pins it.
        pf = changes.get("pf_deduction") if "pf_deduction" in changes else (
            None if company.pf_enabled else entry.pf_deduction
        )
        pay = calculate_pay(
            company,
            base_salary=entry.base_salary,
            overtime_pay=entry.overtime_pay,
            bonuses=entry.bonuses,
            commissions=entry.commissions,
            tax_deductions=entry.tax_deductions,
            benefits_deductions=entry.benefits_deductions,
            pf_deduction=pf,
        )
        entry.pf_deduction = pay.pf_deduction
        entry.gross_pay = pay.gross_pay
        entry.total_deductions = pay.total_deductions
        entry.net_pay = pay.net_pay
        entry.total_employer_cost = pay.total_employer_cost
        await db.flush()
        await PayrollService.recalculate_totals(db, run)

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="payroll_entry",
            entity_id=entry.id,
            company_id=company.id,
            user_id=actor_id,
            old_values=old,
            new_values={"gross_pay": str(entry.gross_pay), "net_pay": str(entry.net_pay)},
        )
        return await PayrollService._load_entry(db, entry.id)

    @staticmethod
    async def delete_entry(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID, entry_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        run = await PayrollService._draft_run(db, company_id, run_id)
        entry = await PayrollService._entry_in_run(db, company_id, run_id, entry_id)
        await db.delete(entry)
        await db.flush()
        await PayrollService.recalculate_totals(db, run)
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="payroll_entry",
            entity_id=entry_id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"employee_id": str(entry.employee_id), "net_pay": str(entry.net_pay)},
        )

    @staticmethod
    async def _unpaid_leave_days(
        db: AsyncSession, employee_id: uuid.UUID, start: date, end: date,
    ) -> Decimal:
        """Approved unpaid leave inside [start, end], clipped to the period."""
        result = await db.execute(
            select(LeaveRequest)
            .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveStatus.approved,
                LeaveType.is_paid.is_(False),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        total = ZERO
        for request in result.scalars().all():
            lo, hi = max(request.start_date, start), min(request.end_date, end)
            total += count_leave_days(
                lo,
                hi,
                start_half_day=request.start_half_day and lo == request.start_date,
                end_half_day=request.end_half_day and hi == request.end_date,
            )
        return total

    @staticmethod
    async def bulk_add(
        db: AsyncSession, company: Company, run_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> BulkAddResult:
        """Add an entry for every active employee not yet in the run.

        Base pay is the employee's salary; overtime is paid at 1.5× the
        hourly rate (salary / working days / 8) for tracked overtime, and
        approved unpaid leave is deducted at the daily rate.
        """
        run = await PayrollService._draft_run(db, company.id, run_id)

        already = set(
            (await db.execute(
                select(PayrollEntry.employee_id).where(PayrollEntry.payroll_run_id == run.id)
            )).scalars().all()
        )
        employees = (await db.execute(
            select(Employee).where(
                Employee.company_id == company.id,
                Employee.employment_status == EmploymentStatus.active,
            )
        )).scalars().all()

        days_in_period = working_days(run.period_start, run.period_end)
        added = skipped = 0
        for employee in employees:
            if employee.id in already or employee.salary is None:
                skipped += 1
                continue

            base = _money(employee.salary)
            daily_rate = base / days_in_period if days_in_period else ZERO
            summary = await TimeTrackingService.summarize(
                db, company.id, employee.id, run.period_start, run.period_end,
            )
            overtime_pay = _money(daily_rate / HOURS_PER_DAY * summary.overtime_hours * OVERTIME_MULTIPLIER)
            unpaid_days = await PayrollService._unpaid_leave_days(db, employee.id, run.period_start, run.period_end)
            unpaid_deduction = _money(daily_rate * unpaid_days)

            pay = calculate_pay(
                company, base_salary=base, overtime_pay=overtime_pay, benefits_deductions=unpaid_deduction,
            )
            db.add(PayrollEntry(
                company_id=company.id,
                payroll_run_id=run.id,
                employee_id=employee.id,
                base_salary=base,
                overtime_pay=overtime_pay,
                benefits_deductions=unpaid_deduction,
                pf_deduction=pay.pf_deduction,
                gross_pay=pay.gross_pay,
                total_deductions=pay.total_deductions,
                net_pay=pay.net_pay,
                total_employer_cost=pay.total_employer_cost,
                hours_worked=summary.total_hours,
                overtime_hours=summary.overtime_hours,
                days_present=summary.days_worked,
                unpaid_leave_days=unpaid_days,
            ))
            added += 1

        await db.flush()
        await PayrollService.recalculate_totals(db, run)
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="payroll_entry",
            company_id=company.id,
            user_id=actor_id,
            details={"payroll_run_id": str(run.id), "bulk_added": added, "skipped": skipped},
        )
        logger.info("Bulk-added %d payroll entries to run %s (%d skipped)", added, run.id, skipped)
        return BulkAddResult(added=added, skipped=skipped, run=PayrollRunOut.model_validate(run))

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _transition(
        db: AsyncSession,
        run: PayrollRun,
        new_status: PayrollStatus,
        *,
        actor_id: uuid.UUID,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        old_status = run.status
        run.status = new_status
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="payroll_run",
            entity_id=run.id,
            company_id=run.company_id,
            user_id=actor_id,
            old_values={"status": old_status.value},
            new_values={"status": new_status.value},
            details=details,
        )
        logger.info("Payroll run %s: %s -> %s", run.id, old_status.value, new_status.value)

    @staticmethod
    async def process_run(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> PayrollRun:
        run = await PayrollService.get_run(db, company_id, run_id)
        if run.status != PayrollStatus.draft:
            raise InvalidStateException("Can only process draft payroll runs")
        await PayrollService.recalculate_totals(db, run)
        if run.employee_count == 0:
            raise InvalidStateException("Cannot process a payroll run without entries.")
        await PayrollService._transition(db, run, PayrollStatus.processing, actor_id=actor_id)
        return run

    @staticmethod
    async def complete_run(
        db: AsyncSession, company: Company, run_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> PayrollRun:
        run = await PayrollService.get_run(db, company.id, run_id)
        if run.status != PayrollStatus.processing:
            raise InvalidStateException("Can only complete processing payroll runs")

        locked = await TimeTrackingService.lock_period(db, company.id, run.period_start, run.period_end, run.id)
        await PayrollService.recalculate_totals(db, run)
        run.processed_at = utcnow()
        run.processed_by = actor_id
        await PayrollService._transition(
            db, run, PayrollStatus.completed, actor_id=actor_id, details={"time_entries_locked": locked},
        )

        entries = (await db.execute(
            select(PayrollEntry)
            .where(PayrollEntry.payroll_run_id == run.id)
            .options(selectinload(PayrollEntry.employee))
            .execution_options(populate_existing=True)
        )).scalars().all()
        for entry in entries:
            employee = entry.employee
            if employee.user_id is None:
                continue
            await notify_payroll_processed(db, run, employee.user_id)
            await EmailService.send(
                db,
                email_type="payroll_processed",
                to={"email": employee.email, "name": f"{employee.first_name} {employee.last_name}"},
                data={
                    "employee_name": employee.first_name,
                    "company_name": company.name,
                    "period_start": str(run.period_start),
                    "period_end": str(run.period_end),
                    "pay_date": str(run.pay_date),
                    "net_pay": f"{run.currency} {entry.net_pay:,.2f}",
                },
                company_id=company.id,
                metadata={"payroll_run_id": str(run.id)},
            )
        return run

    @staticmethod
    async def fail_run(
        db: AsyncSession, company_id: uuid.UUID, run_id: uuid.UUID, *, actor_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> PayrollRun:
        run = await PayrollService.get_run(db, company_id, run_id)
        if run.status != PayrollStatus.processing:
            raise InvalidStateException("Can only fail processing payroll runs")
        if reason:
            run.notes = f"{run.notes}\n{reason}" if run.notes else reason
        await PayrollService._transition(
            db, run, PayrollStatus.failed, actor_id=actor_id, details={"reason": reason} if reason else None,
        )
        return run

    # ─────────────────────────────────────────────────────────────────
    # Payslips / stats
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_payslips(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID,
    ) -> list[PayslipOut]:
        """Entries of completed runs for one employee, newest first."""
        result = await db.execute(
            select(PayrollEntry)
            .join(PayrollRun, PayrollRun.id == PayrollEntry.payroll_run_id)
            .where(
                PayrollEntry.company_id == company_id,
                PayrollEntry.employee_id == employee_id,
                PayrollRun.status == PayrollStatus.completed,
            )
            .options(selectinload(PayrollEntry.payroll_run), selectinload(PayrollEntry.employee))
            .execution_options(populate_existing=True)
            .order_by(PayrollRun.pay_date.desc())
        )
        return [PayslipOut.model_validate(e) for e in result.scalars().all()]

    @staticmethod
    async def get_stats(
        db: AsyncSession, company_id: uuid.UUID, *, today: Optional[date] = None,
    ) -> PayrollStats:
        today = today or utcnow().date()
        counts = await db.execute(
            select(PayrollRun.status, func.count(PayrollRun.id))
            .where(PayrollRun.company_id == company_id)
            .group_by(PayrollRun.status)
        )
        runs_by_status = {status.value: 0 for status in PayrollStatus}
        for status, count in counts.all():
            runs_by_status[PayrollStatus(status).value] = count

        ytd = await db.execute(
            select(
                func.count(PayrollRun.id),
                func.coalesce(func.sum(PayrollRun.total_gross), 0),
                func.coalesce(func.sum(PayrollRun.total_net), 0),
                func.coalesce(func.sum(PayrollRun.total_employer_cost), 0),
            ).where(
                PayrollRun.company_id == company_id,
                PayrollRun.status == PayrollStatus.completed,
                PayrollRun.pay_date >= date(today.year, 1, 1),
                PayrollRun.pay_date <= today,
            )
        )
        completed, gross, net, employer = ytd.one()

        last = (await db.execute(
            select(PayrollRun)
            .where(PayrollRun.company_id == company_id, PayrollRun.status == PayrollStatus.completed)
            .order_by(PayrollRun.pay_date.desc())
            .limit(1)
        )).scalars().first()

        return PayrollStats(
            runs_by_status=runs_by_status,
            ytd_gross=_money(gross),
            ytd_net=_money(net),
            ytd_employer_cost=_money(employer),
            completed_runs_this_year=completed or 0,
            last_run=PayrollRunOut.model_validate(last) if last else None,
        )
