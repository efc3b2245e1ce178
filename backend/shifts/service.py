"""Shift service — shift templates, the company default, employee assignments.

An employee has at most one assignment covering any given day; the
shift for a day is that assignment's shift, else the company's active
default shift.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, time
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction
from backend.common.exceptions import ConflictError, InvalidStateException, ValidationException
from backend.common.models import get_for_company
from backend.companies.settings import get_company_setting
from backend.core_hr.models import Employee
from backend.shifts.models import WEEKDAYS, EmployeeShiftAssignment, Shift
from backend.shifts.schemas import ShiftAssignmentCreate, ShiftCreate, ShiftUpdate

logger = logging.getLogger(__name__)

DEFAULT_SHIFT_NAME = "General Shift"


def _parse_time(value: str, fallback: time) -> time:
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed shift default time %r", value)
        return fallback


class ShiftService:

    # ── Shifts ──────────────────────────────────────────────────────

    @staticmethod
    async def list_shifts(
        db: AsyncSession, company_id: uuid.UUID, *, active_only: bool = False,
    ) -> list[Shift]:
        query = (
            select(Shift)
            .where(Shift.company_id == company_id)
            .order_by(Shift.is_default.desc(), Shift.name)
        )
        if active_only:
            query = query.where(Shift.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def get_shift(db: AsyncSession, company_id: uuid.UUID, shift_id: uuid.UUID) -> Shift:
        return await get_for_company(db, Shift, company_id, shift_id, "Shift")

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession, company_id: uuid.UUID, name: str, exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(Shift.id).where(Shift.company_id == company_id, Shift.name == name)
        if exclude_id is not None:
            query = query.where(Shift.id != exclude_id)
        if (await db.execute(query)).first():
            raise ConflictError("name", name)

    @staticmethod
    async def _clear_default(db: AsyncSession, company_id: uuid.UUID, keep_id: Optional[uuid.UUID]) -> None:
        query = update(Shift).where(Shift.company_id == company_id, Shift.is_default.is_(True))
        if keep_id is not None:
            query = query.where(Shift.id != keep_id)
        await db.execute(query.values(is_default=False).execution_options(synchronize_session="fetch"))

    @staticmethod
    async def create_shift(
        db: AsyncSession, company_id: uuid.UUID, data: ShiftCreate, *, actor_id: uuid.UUID,
    ) -> Shift:
        await ShiftService._ensure_unique_name(db, company_id, data.name)
        if data.is_default:
            await ShiftService._clear_default(db, company_id, None)
        shift = Shift(company_id=company_id, created_by=actor_id, **data.model_dump())
        db.add(shift)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="shift",
            entity_id=shift.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"name": shift.name, "start_time": str(shift.start_time), "end_time": str(shift.end_time)},
        )
        return shift

    @staticmethod
    async def update_shift(
        db: AsyncSession, company_id: uuid.UUID, shift_id: uuid.UUID, data: ShiftUpdate, *, actor_id: uuid.UUID,
    ) -> Shift:
        shift = await ShiftService.get_shift(db, company_id, shift_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("name") and changes["name"] != shift.name:
            await ShiftService._ensure_unique_name(db, company_id, changes["name"], shift_id)

        start = changes.get("start_time") or shift.start_time
        end = changes.get("end_time") or shift.end_time
        if start == end:
            raise ValidationException({"end_time": ["start_time and end_time cannot be equal."]})
        full = changes.get("min_hours_full_day", shift.min_hours_full_day)
        half = changes.get("min_hours_half_day", shift.min_hours_half_day)
        if half is not None and full is not None and half > full:
            raise ValidationException({"min_hours_half_day": ["Cannot exceed min_hours_full_day."]})

        if changes.get("is_default"):
            await ShiftService._clear_default(db, company_id, shift.id)
        old = {k: str(getattr(shift, k)) for k in changes}
        for field, value in changes.items():
            setattr(shift, field, value)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="shift",
            entity_id=shift.id,
            company_id=company_id,
            user_id=actor_id,
            old_values=old,
            new_values={k: str(v) for k, v in changes.items()},
        )
        return shift

    @staticmethod
    async def delete_shift(
        db: AsyncSession, company_id: uuid.UUID, shift_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        shift = await ShiftService.get_shift(db, company_id, shift_id)
        in_use = (await db.execute(
            select(EmployeeShiftAssignment.id).where(EmployeeShiftAssignment.shift_id == shift.id).limit(1)
        )).first()
        if in_use:
            raise InvalidStateException("This shift is assigned to employees. Deactivate it instead.")
        await db.delete(shift)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="shift",
            entity_id=shift_id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"name": shift.name},
        )

    @staticmethod
    async def get_default_shift(db: AsyncSession, company_id: uuid.UUID) -> Optional[Shift]:
        result = await db.execute(
            select(Shift).where(
                Shift.company_id == company_id, Shift.is_default.is_(True), Shift.is_active.is_(True),
            )
        )
        return result.scalars().first()

    @staticmethod
    async def ensure_default_shift(
        db: AsyncSession, company_id: uuid.UUID, *, actor_id: Optional[uuid.UUID] = None,
    ) -> Shift:
        """Return the default shift, creating one from the company's ``shift_defaults`` if missing."""
        existing = (await db.execute(
            select(Shift).where(Shift.company_id == company_id, Shift.is_default.is_(True))
        )).scalars().first()
        if existing is not None:
            return existing
        named = (await db.execute(
            select(Shift).where(Shift.company_id == company_id, Shift.name == DEFAULT_SHIFT_NAME)
        )).scalars().first()
        if named is not None:
            named.is_default = True
            await db.flush()
            return named

        defaults = await get_company_setting(db, company_id, "shift_defaults")
        weekly_off = {str(d).lower() for d in defaults.get("default_weekly_off") or []}
        shift = Shift(
            company_id=company_id,
            name=DEFAULT_SHIFT_NAME,
            start_time=_parse_time(defaults.get("default_start_time"), time(9, 0)),
            end_time=_parse_time(defaults.get("default_end_time"), time(18, 0)),
            break_duration_minutes=60,
            grace_period_minutes=15,
            applicable_days=[d for d in WEEKDAYS if d not in weekly_off],
            is_default=True,
            is_active=True,
            created_by=actor_id,
        )
        db.add(shift)
        await db.flush()
        logger.info("Created default shift for company %s", company_id)
        return shift

    # ── Assignments ─────────────────────────────────────────────────

    @staticmethod
    async def _check_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: Optional[date],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(EmployeeShiftAssignment.id).where(
            EmployeeShiftAssignment.employee_id == employee_id,
            or_(EmployeeShiftAssignment.effective_to.is_(None), EmployeeShiftAssignment.effective_to >= start),
        )
        if end is not None:
            query = query.where(EmployeeShiftAssignment.effective_from <= end)
        if exclude_id is not None:
            query = query.where(EmployeeShiftAssignment.id != exclude_id)
        if (await db.execute(query.limit(1))).first():
            raise InvalidStateException("Employee already has an active shift assignment for this period.")

    @staticmethod
    async def list_assignments(
        db: AsyncSession, company_id: uuid.UUID, *, employee_id: Optional[uuid.UUID] = None,
    ) -> list[EmployeeShiftAssignment]:
        query = (
            select(EmployeeShiftAssignment)
            .where(EmployeeShiftAssignment.company_id == company_id)
            .order_by(EmployeeShiftAssignment.effective_from.desc())
        )
        if employee_id is not None:
            query = query.where(EmployeeShiftAssignment.employee_id == employee_id)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def assign_shift(
        db: AsyncSession, company_id: uuid.UUID, data: ShiftAssignmentCreate, *, actor_id: uuid.UUID,
    ) -> EmployeeShiftAssignment:
        await get_for_company(db, Employee, company_id, data.employee_id)
        shift = await ShiftService.get_shift(db, company_id, data.shift_id)
        if not shift.is_active:
            raise ValidationException({"shift_id": ["This shift is inactive."]})
        await ShiftService._check_overlap(db, data.employee_id, data.effective_from, data.effective_to)

        assignment = EmployeeShiftAssignment(company_id=company_id, assigned_by=actor_id, **data.model_dump())
        db.add(assignment)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="shift_assignment",
            entity_id=assignment.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={
                "employee_id": str(data.employee_id),
                "shift_id": str(data.shift_id),
                "effective_from": str(data.effective_from),
                "effective_to": str(data.effective_to) if data.effective_to else None,
            },
        )
        await db.refresh(assignment, ["shift"])
        return assignment

    @staticmethod
    async def end_assignment(
        db: AsyncSession, company_id: uuid.UUID, assignment_id: uuid.UUID, end_date: date, *, actor_id: uuid.UUID,
    ) -> EmployeeShiftAssignment:
        assignment = await get_for_company(db, EmployeeShiftAssignment, company_id, assignment_id, "Shift assignment")
        if end_date < assignment.effective_from:
            raise ValidationException({"effective_to": ["Cannot end an assignment before it starts."]})
        previous = assignment.effective_to
        assignment.effective_to = end_date
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="shift_assignment",
            entity_id=assignment.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"effective_to": str(previous) if previous else None},
            new_values={"effective_to": str(end_date)},
        )
        return assignment

    @staticmethod
    async def delete_assignment(
        db: AsyncSession, company_id: uuid.UUID, assignment_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        assignment = await get_for_company(db, EmployeeShiftAssignment, company_id, assignment_id, "Shift assignment")
        await db.delete(assignment)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="shift_assignment",
            entity_id=assignment_id,
            company_id=company_id,
            user_id=actor_id,
        )

    @staticmethod
    async def shift_for_date(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID, day: date,
    ) -> Optional[Shift]:
        """The shift an employee works on *day*: latest covering assignment, else the default."""
        result = await db.execute(
            select(EmployeeShiftAssignment)
            .where(
                EmployeeShiftAssignment.company_id == company_id,
                EmployeeShiftAssignment.employee_id == employee_id,
                EmployeeShiftAssignment.effective_from <= day,
                or_(EmployeeShiftAssignment.effective_to.is_(None), EmployeeShiftAssignment.effective_to >= day),
            )
            .order_by(EmployeeShiftAssignment.effective_from.desc())
            .limit(1)
        )
        assignment = result.scalars().first()
        if assignment is not None:
            return assignment.shift
        return await ShiftService.get_default_shift(db, company_id)
