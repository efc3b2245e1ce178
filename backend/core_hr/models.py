"""Core HR ORM models: Department, Employee.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations. Both
tables are tenant-scoped; numbers, codes and emails are unique per company.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import EmploymentStatus, EmploymentType
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum
from backend.database import Base


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class Department(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """Organisational department (supports hierarchy via parent_id)."""

    __tablename__ = "departments"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "name", name="uq_departments_company_name"),
        sa.UniqueConstraint("company_id", "code", name="uq_departments_company_code"),
    )

    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(sa.String(20))
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id", ondelete="SET NULL"),
    )
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="SET NULL", use_alter=True, name="fk_departments_manager"),
    )
    cost_center: Mapped[Optional[str]] = mapped_column(sa.String(50))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    # ── Relationships ───────────────────────────────────────────────
    employees: Mapped[list[Employee]] = relationship(
        back_populates="department", foreign_keys="Employee.department_id",
    )

    def __repr__(self) -> str:
        return f"<Department {self.name!r} ({self.code})>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """Core employee record — central entity for the HR platform.

    ``user_id`` links the record to a login when the employee has portal
    access; self-service endpoints resolve "my employee record" through it.
    """

    __tablename__ = "employees"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "employee_number", name="uq_employees_company_number"),
        sa.UniqueConstraint("company_id", "email", name="uq_employees_company_email"),
        sa.Index("ix_employees_user_id", "user_id"),
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    # ── Identifiers ─────────────────────────────────────────────────
    employee_number: Mapped[str] = mapped_column(sa.String(30), nullable=False)

    # ── Name / contact ──────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    personal_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    phone: Mapped[Optional[str]] = mapped_column(sa.String(30))
    date_of_birth: Mapped[Optional[date]] = mapped_column(sa.Date)
    gender: Mapped[Optional[str]] = mapped_column(sa.String(20))
    nationality: Mapped[Optional[str]] = mapped_column(sa.String(50))
    address: Mapped[Optional[dict]] = mapped_column(JSONB)
    emergency_contact: Mapped[Optional[dict]] = mapped_column(JSONB)

    # ── Employment ──────────────────────────────────────────────────
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id", ondelete="SET NULL"), index=True,
    )
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="SET NULL"), index=True,
    )
    job_title: Mapped[Optional[str]] = mapped_column(sa.String(150))
    employment_type: Mapped[EmploymentType] = mapped_column(
        str_enum(EmploymentType, "employment_type"),
        nullable=False,
        default=EmploymentType.full_time,
    )
    employment_status: Mapped[EmploymentStatus] = mapped_column(
        str_enum(EmploymentStatus, "employment_status"),
        nullable=False,
        default=EmploymentStatus.active,
    )
    hire_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    probation_end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    termination_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    termination_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    work_location: Mapped[Optional[str]] = mapped_column(sa.String(150))

    # ── Compensation ────────────────────────────────────────────────
    salary: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(12, 2))
    salary_currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")

    # ── Relationships ───────────────────────────────────────────────
    department: Mapped[Optional[Department]] = relationship(
        back_populates="employees", foreign_keys=[department_id],
    )
    manager: Mapped[Optional[Employee]] = relationship(
        remote_side="Employee.id", foreign_keys=[manager_id],
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Employee {self.employee_number} {self.full_name!r}>"
