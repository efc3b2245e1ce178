"""Core HR Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Response / *Detail → response bodies (read)
  - *Summary / *ListItem → compact read representations
"""


import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from backend.common.constants import AppRole, EmploymentStatus, EmploymentType


# ═════════════════════════════════════════════════════════════════════
# Shared / embedded
# ═════════════════════════════════════════════════════════════════════


class AddressSchema(BaseModel):
    """Reusable address block (stored as JSONB)."""

    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class EmergencyContactSchema(BaseModel):
    """Emergency contact block (stored as JSONB)."""

    name: Optional[str] = None
    relationship: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    code: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    cost_center: Optional[str] = Field(None, max_length=50)


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    code: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    cost_center: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None


class DepartmentResponse(BaseModel):
    """Full department representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    cost_center: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    # Enriched by the service layer
    employee_count: int = 0


class DepartmentBrief(BaseModel):
    """Minimal department info embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    code: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Employee — write schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Payload for creating a new employee.

    ``employee_number`` is generated from the company's
    ``employee_id_format`` setting when omitted. With ``create_account``
    a portal login is created and the credentials are emailed.
    """

    employee_number: Optional[str] = Field(None, min_length=1, max_length=30)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    personal_email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, max_length=20)
    nationality: Optional[str] = Field(None, max_length=50)
    address: Optional[AddressSchema] = None
    emergency_contact: Optional[EmergencyContactSchema] = None

    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    job_title: Optional[str] = Field(None, max_length=150)
    employment_type: EmploymentType = EmploymentType.full_time
    hire_date: date
    probation_end_date: Optional[date] = None
    work_location: Optional[str] = Field(None, max_length=150)
    salary: Optional[Decimal] = Field(None, ge=0)
    salary_currency: str = Field("USD", min_length=3, max_length=3)

    create_account: bool = False
    account_role: AppRole = AppRole.employee

    @model_validator(mode="after")
    def _check_probation(self):
        if self.probation_end_date and self.probation_end_date < self.hire_date:
            raise ValueError("probation_end_date cannot be before hire_date")
        return self


class EmployeeUpdate(BaseModel):
    """Partial update — only supplied fields change."""

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    personal_email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, max_length=20)
    nationality: Optional[str] = Field(None, max_length=50)
    address: Optional[AddressSchema] = None
    emergency_contact: Optional[EmergencyContactSchema] = None
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    job_title: Optional[str] = Field(None, max_length=150)
    employment_type: Optional[EmploymentType] = None
    employment_status: Optional[EmploymentStatus] = None
    probation_end_date: Optional[date] = None
    work_location: Optional[str] = Field(None, max_length=150)
    salary: Optional[Decimal] = Field(None, ge=0)
    salary_currency: Optional[str] = Field(None, min_length=3, max_length=3)


class EmployeeTerminate(BaseModel):
    termination_date: date
    reason: Optional[str] = Field(None, max_length=2000)


# ═════════════════════════════════════════════════════════════════════
# Employee — read schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeSummary(BaseModel):
    """Compact employee card (managers, direct reports)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_number: str
    first_name: str
    last_name: str
    email: str
    job_title: Optional[str] = None
    employment_status: EmploymentStatus


class EmployeeListItem(EmployeeSummary):
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    employment_type: EmploymentType
    hire_date: date
    user_id: Optional[uuid.UUID] = None


class EmployeeDetail(EmployeeListItem):
    """Full employee record."""

    personal_email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[dict] = None
    emergency_contact: Optional[dict] = None
    probation_end_date: Optional[date] = None
    termination_date: Optional[date] = None
    termination_reason: Optional[str] = None
    work_location: Optional[str] = None
    salary: Optional[Decimal] = None
    salary_currency: str = "USD"
    created_at: datetime
    updated_at: datetime
    # Enriched by the service layer
    department: Optional[DepartmentBrief] = None
    manager: Optional[EmployeeSummary] = None
    direct_reports_count: int = 0
