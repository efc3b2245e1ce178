"""Time tracking service — clock in/out, breaks, schedules, corrections.

One entry per employee per day. Hours are computed at clock-out:
``total = max(0, (worked minutes - break minutes) / 60)`` rounded to two
decimals and overtime is whatever exceeds the day's expected hours
(employee schedule, then company default, then 8h). Entries locked by a
completed payroll run are read-only.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction, TimeCorrectionStatus
from backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    ValidationException,
)
from backend.common.models import as_utc, get_for_company, utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Employee
from backend.notifications.service import notify_time_correction_request, notify_time_correction_reviewed
from backend.time_tracking.models import TimeCorrectionRequest, TimeEntry, TimeEntryBreak, WorkSchedule
from backend.time_tracking.schemas import (
    ClockRequest,
    TimeCorrectionRequestCreate,
    TimeCorrectionRequestOut,
    TimeEntryCorrection,
    TimeEntryOut,
    TimeSummary,
    WorkScheduleIn,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_HOURS = Decimal("8")
TWO_PLACES = Decimal("0.01")

LOCKED_MESSAGE = "This time entry is locked by a completed payroll run and cannot be changed."


def schedule_day(day: date) -> int:
    """Python weekday → schedule day (0 = Sunday … 6 = Saturday)."""
    return (day.weekday() + 1) % 7


def compute_hours(
    clock_in: datetime,
    clock_out: datetime,
    break_minutes: int,
    expected_hours: Decimal = DEFAULT_EXPECTED_HOURS,
) -> tuple[Decimal, Decimal]:
    """Return ``(total_hours, overtime_hours)`` for one worked day."""
    worked_minutes = Decimal(str((as_utc(clock_out) - as_utc(clock_in)).total_seconds())) / 60
    total = max(Decimal("0"), (worked_minutes - break_minutes) / 60)
    total = total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    overtime = max(Decimal("0"), total - Decimal(expected_hours)).quantize(TWO_PLACES)
    return total, overtime


def _ensure_unlocked(entry: TimeEntry) -> None:
    if entry.is_locked:
        raise InvalidStateException(LOCKED_MESSAGE)


def _active_break(entry: TimeEntry) -> Optional[TimeEntryBreak]:
    return next((b for b in entry.breaks if b.break_end is None), None)


def _close_break(item: TimeEntryBreak, entry: TimeEntry, now: datetime) -> None:
    item.break_end = now
    item.duration_minutes = max(0, int((as_utc(now) - as_utc(item.break_start)).total_seconds() // 60))
    entry.break_minutes = (entry.break_minutes or 0) + item.duration_minutes


class TimeTrackingService:
    """Clocking, breaks, schedules, listings and approvals."""

    # ── Schedules ───────────────────────────────────────────────────

    @staticmethod
    async def list_schedules(
        db: AsyncSession, company_id: uuid.UUID, *, employee_id: Optional[uuid.UUID] = None,
    ) -> list[WorkSchedule]:
        query = select(WorkSchedule).where(WorkSchedule.company_id == company_id)
        if employee_id is None:
            query = query.where(WorkSchedule.employee_id.is_(None))
        else:
            query = query.where(WorkSchedule.employee_id == employee_id)
        result = await db.execute(query.order_by(WorkSchedule.day_of_week))
        return list(result.scalars().all())

    @staticmethod
    async def upsert_schedule(
        db: AsyncSession, company_id: uuid.UUID, data: WorkScheduleIn, *, actor_id: uuid.UUID,
    ) -> WorkSchedule:
        """Create or replace the schedule row for (employee or company default, weekday)."""
        if data.employee_id is not None:
            await get_for_company(db, Employee, company_id, data.employee_id)

        owner = (
            WorkSchedule.employee_id.is_(None)
            if data.employee_id is None
            else WorkSchedule.employee_id == data.employee_id
        )
        result = await db.execute(
            select(WorkSchedule).where(
                WorkSchedule.company_id == company_id, owner, WorkSchedule.day_of_week == data.day_of_week,
            )
        )
        schedule = result.scalars().first()
        values = data.model_dump()
        if schedule is None:
            schedule = WorkSchedule(company_id=company_id, **values)
            db.add(schedule)
            action = AuditAction.create
        else:
            for field, value in values.items():
                setattr(schedule, field, value)
            action = AuditAction.update
        await db.flush()

        await create_audit_entry(
            db,
            action=action,
            entity_type="work_schedule",
            entity_id=schedule.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"day_of_week": data.day_of_week, "expected_hours": str(data.expected_hours)},
        )
        return schedule

    @staticmethod
    async def delete_schedule(
        db: AsyncSession, company_id: uuid.UUID, schedule_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        schedule = await get_for_company(db, WorkSchedule, company_id, schedule_id, "Work schedule")
        await db.delete(schedule)
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="work_schedule",
            entity_id=schedule_id,
            company_id=company_id,
            user_id=actor_id,
        )

    @staticmethod
    async def expected_hours(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID, day: date,
    ) -> Decimal:
        """Expected hours for *day*: employee schedule, else company default, else 8."""
        weekday = schedule_day(day)
        result = await db.execute(
            select(WorkSchedule).where(
                WorkSchedule.company_id == company_id,
                WorkSchedule.day_of_week == weekday,
                WorkSchedule.is_active.is_(True),
                (WorkSchedule.employee_id == employee_id) | WorkSchedule.employee_id.is_(None),
            )
        )
        schedules = result.scalars().all()
        own = next((s for s in schedules if s.employee_id == employee_id), None)
        schedule = own or next((s for s in schedules if s.employee_id is None), None)
        if schedule is None:
            return DEFAULT_EXPECTED_HOURS
        if not schedule.is_working_day:
            return Decimal("0")
        return Decimal(schedule.expected_hours)

    # ── Entry lookups ───────────────────────────────────────────────

    @staticmethod
    async def _load(db: AsyncSession, entry_id: uuid.UUID) -> TimeEntry:
        result = await db.execute(
            select(TimeEntry)
            .where(TimeEntry.id == entry_id)
            .options(selectinload(TimeEntry.breaks))
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()

    @staticmethod
    async def _entry_for_day(db: AsyncSession, employee_id: uuid.UUID, day: date) -> Optional[TimeEntry]:
        result = await db.execute(
            select(TimeEntry)
            .where(TimeEntry.employee_id == employee_id, TimeEntry.date == day)
            .options(selectinload(TimeEntry.breaks))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def _current_entry(db: AsyncSession, employee_id: uuid.UUID, now: datetime) -> Optional[TimeEntry]:
        """Today's entry, else yesterday's when it is still clocked in (shift past midnight)."""
        entry = await TimeTrackingService._entry_for_day(db, employee_id, now.date())
        if entry is not None:
            return entry
        previous = await TimeTrackingService._entry_for_day(db, employee_id, now.date() - timedelta(days=1))
        if previous is not None and previous.clock_in is not None and previous.clock_out is None:
            return previous
        return None

    @staticmethod
    async def get_entry(db: AsyncSession, company_id: uuid.UUID, entry_id: uuid.UUID) -> TimeEntry:
        entry = await get_for_company(db, TimeEntry, company_id, entry_id, "Time entry")
        return await TimeTrackingService._load(db, entry.id)

    @staticmethod
    async def get_today(
        db: AsyncSession, employee: Employee, *, now: Optional[datetime] = None,
    ) -> Optional[TimeEntry]:
        now = now or utcnow()
        return await TimeTrackingService._current_entry(db, employee.id, now)

    # ── Clocking ────────────────────────────────────────────────────

    @staticmethod
    async def clock_in(
        db: AsyncSession,
        employee: Employee,
        data: Optional[ClockRequest] = None,
        *,
        now: Optional[datetime] = None,
    ) -> TimeEntry:
        now = now or utcnow()
        existing = await TimeTrackingService._current_entry(db, employee.id, now)
        if existing is not None:
            if existing.clock_out is None:
                raise InvalidStateException("You are already clocked in. Please clock out first.")
            raise InvalidStateException(
                "You have already completed your shift for today. "
                "Contact your manager if you need to make corrections."
            )

        entry = TimeEntry(
            company_id=employee.company_id,
            employee_id=employee.id,
            date=now.date(),
            clock_in=now,
            clock_in_location=data.location if data else None,
            notes=data.notes if data else None,
            breaks=[],
        )
        db.add(entry)
        await db.flush()
        logger.info("Employee %s clocked in (entry %s)", employee.id, entry.id)
        return await TimeTrackingService._load(db, entry.id)

    @staticmethod
    async def clock_out(
        db: AsyncSession,
        employee: Employee,
        data: Optional[ClockRequest] = None,
        *,
        now: Optional[datetime] = None,
    ) -> TimeEntry:
        now = now or utcnow()
        entry = await TimeTrackingService._current_entry(db, employee.id, now)
        if entry is None or entry.clock_in is None:
            raise InvalidStateException("You must clock in first before clocking out.")
        if entry.clock_out is not None:
            raise InvalidStateException("You have already clocked out for today.")
        _ensure_unlocked(entry)

        active = _active_break(entry)
        if active is not None:
            _close_break(active, entry, now)

        expected = await TimeTrackingService.expected_hours(db, entry.company_id, employee.id, entry.date)
        entry.clock_out = now
        entry.total_hours, entry.overtime_hours = compute_hours(
            entry.clock_in, now, entry.break_minutes or 0, expected,
        )
        if data is not None:
            entry.clock_out_location = data.location
            if data.notes:
                entry.notes = data.notes
        await db.flush()
        logger.info(
            "Employee %s clocked out: %s h (%s overtime)", employee.id, entry.total_hours, entry.overtime_hours,
        )
        return await TimeTrackingService._load(db, entry.id)

    # ── Breaks ──────────────────────────────────────────────────────

    @staticmethod
    async def start_break(
        db: AsyncSession, employee: Employee, *, now: Optional[datetime] = None,
    ) -> TimeEntry:
        now = now or utcnow()
        entry = await TimeTrackingService._current_entry(db, employee.id, now)
        if entry is None or entry.clock_in is None:
            raise InvalidStateException("You must clock in first before taking a break.")
        if entry.clock_out is not None:
            raise InvalidStateException("Cannot start break - you have already clocked out.")
        _ensure_unlocked(entry)
        if _active_break(entry) is not None:
            raise InvalidStateException("You are already on a break. End your current break first.")

        db.add(TimeEntryBreak(company_id=entry.company_id, time_entry_id=entry.id, break_start=now))
        await db.flush()
        return await TimeTrackingService._load(db, entry.id)

    @staticmethod
    async def end_break(
        db: AsyncSession, employee: Employee, *, now: Optional[datetime] = None,
    ) -> TimeEntry:
        now = now or utcnow()
        entry = await TimeTrackingService._current_entry(db, employee.id, now)
        if entry is None:
            raise InvalidStateException("No time entry found for today.")
        _ensure_unlocked(entry)
        active = _active_break(entry)
        if active is None:
            raise InvalidStateException("No active break to end.")

        _close_break(active, entry, now)
        await db.flush()
        return await TimeTrackingService._load(db, entry.id)

    # ── Listing ─────────────────────────────────────────────────────

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        employee_ids: Optional[list[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        is_approved: Optional[bool] = None,
    ) -> PaginatedResponse[TimeEntryOut]:
        """Entries newest first; *employee_ids* restricts to a team."""
        query = (
            select(TimeEntry)
            .where(TimeEntry.company_id == company_id)
            .options(selectinload(TimeEntry.breaks))
            .order_by(TimeEntry.date.desc(), TimeEntry.clock_in.desc())
        )
        if employee_ids is not None:
            query = query.where(TimeEntry.employee_id.in_(employee_ids))
        if employee_id is not None:
            query = query.where(TimeEntry.employee_id == employee_id)
        if from_date is not None:
            query = query.where(TimeEntry.date >= from_date)
        if to_date is not None:
            query = query.where(TimeEntry.date <= to_date)
        if is_approved is not None:
            query = query.where(TimeEntry.is_approved.is_(is_approved))
        return await paginate(db, query, pagination, schema=TimeEntryOut)

    @staticmethod
    async def summarize(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID, from_date: date, to_date: date,
    ) -> TimeSummary:
        """Worked days, hours and overtime for completed entries in a period."""
        result = await db.execute(
            select(
                func.count(TimeEntry.id),
                func.coalesce(func.sum(TimeEntry.total_hours), 0),
                func.coalesce(func.sum(TimeEntry.overtime_hours), 0),
            ).where(
                TimeEntry.company_id == company_id,
                TimeEntry.employee_id == employee_id,
                TimeEntry.date >= from_date,
                TimeEntry.date <= to_date,
                TimeEntry.clock_out.is_not(None),
            )
        )
        days, hours, overtime = result.one()
        return TimeSummary(
            employee_id=employee_id,
            from_date=from_date,
            to_date=to_date,
            days_worked=days or 0,
            total_hours=Decimal(str(hours)).quantize(TWO_PLACES),
            overtime_hours=Decimal(str(overtime)).quantize(TWO_PLACES),
        )

    # ── Corrections / approval ──────────────────────────────────────

    @staticmethod
    def _apply_correction(
        entry: TimeEntry,
        changes: dict,
        expected: Decimal,
        *,
        actor_id: uuid.UUID,
        reason: Optional[str],
    ) -> None:
        """Write corrected times onto *entry*, keeping the first recorded clock times."""
        if not entry.is_corrected:
            entry.original_clock_in = entry.clock_in
            entry.original_clock_out = entry.clock_out
        for field, value in changes.items():
            setattr(entry, field, value)
        if entry.clock_in and entry.clock_out:
            entry.total_hours, entry.overtime_hours = compute_hours(
                entry.clock_in, entry.clock_out, entry.break_minutes or 0, expected,
            )
        entry.is_corrected = True
        entry.corrected_by = actor_id
        entry.corrected_at = utcnow()
        entry.correction_reason = reason
        # Corrected times need a fresh approval.
        entry.is_approved = False
        entry.approved_by = None
        entry.approved_at = None

    @staticmethod
    async def correct_entry(
        db: AsyncSession,
        company_id: uuid.UUID,
        entry_id: uuid.UUID,
        data: TimeEntryCorrection,
        *,
        actor_id: uuid.UUID,
    ) -> TimeEntry:
        entry = await TimeTrackingService.get_entry(db, company_id, entry_id)
        _ensure_unlocked(entry)

        changes = data.model_dump(exclude_unset=True)
        clock_in = changes.get("clock_in", entry.clock_in)
        clock_out = changes.get("clock_out", entry.clock_out)
        if clock_in and clock_out and as_utc(clock_out) < as_utc(clock_in):
            raise InvalidStateException("clock_out cannot be before clock_in.")

        old = {k: str(getattr(entry, k)) for k in changes}
        expected = await TimeTrackingService.expected_hours(db, company_id, entry.employee_id, entry.date)
        TimeTrackingService._apply_correction(
            entry, changes, expected, actor_id=actor_id, reason=changes.get("notes"),
        )
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="time_entry",
            entity_id=entry.id,
            company_id=company_id,
            user_id=actor_id,
            old_values=old,
            new_values={k: str(v) for k, v in changes.items()},
        )
        return await TimeTrackingService._load(db, entry.id)

    @staticmethod
    async def approve_entry(
        db: AsyncSession,
        company_id: uuid.UUID,
        entry_id: uuid.UUID,
        *,
        approver_id: uuid.UUID,
        approver_employee_id: Optional[uuid.UUID],
        can_approve_all: bool,
    ) -> TimeEntry:
        entry = await TimeTrackingService.get_entry(db, company_id, entry_id)
        _ensure_unlocked(entry)
        if entry.clock_out is None:
            raise InvalidStateException("Only completed time entries can be approved.")
        if approver_employee_id is not None and approver_employee_id == entry.employee_id:
            raise ForbiddenException("You cannot approve your own time entries.")
        if not can_approve_all:
            owner = await db.get(Employee, entry.employee_id)
            if owner is None or approver_employee_id is None or owner.manager_id != approver_employee_id:
                raise ForbiddenException("You can only approve time entries of your direct reports.")

        entry.is_approved = True
        entry.approved_by = approver_id
        entry.approved_at = utcnow()
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="time_entry",
            entity_id=entry.id,
            company_id=company_id,
            user_id=approver_id,
            new_values={"is_approved": True},
        )
        return await TimeTrackingService._load(db, entry.id)

    @staticmethod
    async def lock_period(
        db: AsyncSession, company_id: uuid.UUID, period_start: date, period_end: date, payroll_run_id: uuid.UUID,
    ) -> int:
        """Lock every unlocked entry in the period against further edits."""
        result = await db.execute(
            select(TimeEntry).where(
                TimeEntry.company_id == company_id,
                TimeEntry.date >= period_start,
                TimeEntry.date <= period_end,
                TimeEntry.is_locked.is_(False),
            )
        )
        entries = result.scalars().all()
        for entry in entries:
            entry.is_locked = True
            entry.payroll_run_id = payroll_run_id
        await db.flush()
        logger.info("Locked %d time entries for payroll run %s", len(entries), payroll_run_id)
        return len(entries)

    # ── Correction requests ─────────────────────────────────────────

    @staticmethod
    async def create_correction_request(
        db: AsyncSession,
        employee: Employee,
        data: TimeCorrectionRequestCreate,
        *,
        actor_id: uuid.UUID,
        today: Optional[date] = None,
    ) -> TimeCorrectionRequest:
        """File a correction for one of the caller's own days and notify their manager."""
        today = today or utcnow().date()
        if data.correction_date > today:
            raise ValidationException({"correction_date": ["Corrections cannot be requested for future dates."]})

        entry = await TimeTrackingService._entry_for_day(db, employee.id, data.correction_date)
        if entry is not None:
            _ensure_unlocked(entry)
        pending = (await db.execute(
            select(TimeCorrectionRequest.id).where(
                TimeCorrectionRequest.employee_id == employee.id,
                TimeCorrectionRequest.correction_date == data.correction_date,
                TimeCorrectionRequest.status == TimeCorrectionStatus.pending,
            )
        )).first()
        if pending:
            raise ConflictError("correction_date", str(data.correction_date), code="correction_pending")

        correction = TimeCorrectionRequest(
            company_id=employee.company_id,
            employee_id=employee.id,
            original_entry_id=entry.id if entry else None,
            **data.model_dump(),
        )
        db.add(correction)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="time_correction_request",
            entity_id=correction.id,
            company_id=employee.company_id,
            user_id=actor_id,
            new_values={"correction_date": str(data.correction_date)},
        )
        if employee.manager_id is not None:
            manager = await db.get(Employee, employee.manager_id)
            if manager is not None:
                await notify_time_correction_request(db, correction, manager.user_id, employee.full_name)
        logger.info("Time correction %s requested by employee %s", correction.id, employee.id)
        return correction

    @staticmethod
    async def list_correction_requests(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        employee_ids: Optional[list[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[TimeCorrectionStatus] = None,
    ) -> PaginatedResponse[TimeCorrectionRequestOut]:
        query = (
            select(TimeCorrectionRequest)
            .where(TimeCorrectionRequest.company_id == company_id)
            .order_by(TimeCorrectionRequest.created_at.desc())
        )
        if employee_ids is not None:
            query = query.where(TimeCorrectionRequest.employee_id.in_(employee_ids))
        if employee_id is not None:
            query = query.where(TimeCorrectionRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(TimeCorrectionRequest.status == status)
        return await paginate(db, query, pagination, schema=TimeCorrectionRequestOut)

    @staticmethod
    async def get_correction_request(
        db: AsyncSession, company_id: uuid.UUID, request_id: uuid.UUID,
    ) -> TimeCorrectionRequest:
        return await get_for_company(db, TimeCorrectionRequest, company_id, request_id, "Time correction request")

    @staticmethod
    async def review_correction_request(
        db: AsyncSession,
        company_id: uuid.UUID,
        request_id: uuid.UUID,
        target: TimeCorrectionStatus,
        *,
        reviewer_id: uuid.UUID,
        can_review_all: bool,
        notes: Optional[str] = None,
    ) -> TimeCorrectionRequest:
        """Approve, reject or send back a request; approval writes the times onto the day's entry.

        Rejections and clarification requests must carry notes. The
        employee's manager or HR may review, never the employee.
        """
        correction = await TimeTrackingService.get_correction_request(db, company_id, request_id)
        if correction.status not in (TimeCorrectionStatus.pending, TimeCorrectionStatus.clarification_needed):
            raise InvalidStateException(f"Time correction request is already {correction.status.value}.")
        if target == TimeCorrectionStatus.pending:
            raise InvalidStateException("A reviewed request cannot be moved back to pending.")
        if target != TimeCorrectionStatus.approved and not (notes or "").strip():
            raise ValidationException({"review_notes": ["Notes are required to reject or ask for clarification."]})

        employee = await db.get(Employee, correction.employee_id)
        if employee.user_id == reviewer_id:
            raise ForbiddenException("You cannot review your own time correction request.")
        if not can_review_all:
            manager = await db.get(Employee, employee.manager_id) if employee.manager_id else None
            if manager is None or manager.user_id != reviewer_id:
                raise ForbiddenException("Only the employee's manager or HR can review this request.")

        entry_id: Optional[uuid.UUID] = None
        if target == TimeCorrectionStatus.approved:
            entry_id = await TimeTrackingService._apply_correction_request(db, correction, employee, reviewer_id)

        previous = correction.status
        correction.status = target
        correction.reviewed_by = reviewer_id
        correction.reviewed_at = utcnow()
        correction.review_notes = notes
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="time_correction_request",
            entity_id=correction.id,
            company_id=company_id,
            user_id=reviewer_id,
            old_values={"status": previous.value},
            new_values={"status": target.value, "review_notes": notes},
            details={"time_entry_id": str(entry_id)} if entry_id else None,
        )
        await notify_time_correction_reviewed(db, correction, employee.user_id)
        return correction

    @staticmethod
    async def _apply_correction_request(
        db: AsyncSession, correction: TimeCorrectionRequest, employee: Employee, reviewer_id: uuid.UUID,
    ) -> uuid.UUID:
        entry = await TimeTrackingService._entry_for_day(db, employee.id, correction.correction_date)
        if entry is None:
            entry = TimeEntry(
                company_id=correction.company_id,
                employee_id=employee.id,
                date=correction.correction_date,
                breaks=[],
            )
            db.add(entry)
        else:
            _ensure_unlocked(entry)

        changes = {"break_minutes": correction.requested_break_minutes}
        if correction.requested_clock_in is not None:
            changes["clock_in"] = correction.requested_clock_in
        if correction.requested_clock_out is not None:
            changes["clock_out"] = correction.requested_clock_out
        clock_in = changes.get("clock_in", entry.clock_in)
        clock_out = changes.get("clock_out", entry.clock_out)
        if clock_in and clock_out and as_utc(clock_out) < as_utc(clock_in):
            raise InvalidStateException("clock_out cannot be before clock_in.")

        expected = await TimeTrackingService.expected_hours(
            db, correction.company_id, employee.id, correction.correction_date,
        )
        TimeTrackingService._apply_correction(
            entry, changes, expected, actor_id=reviewer_id, reason=correction.reason,
        )
        await db.flush()
        return entry.id
