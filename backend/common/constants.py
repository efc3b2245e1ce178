"""Enums and constants for People Hub — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Roles ───────────────────────────────────────────────────────────

class AppRole(str, enum.Enum):
    super_admin = "super_admin"
    company_admin = "company_admin"
    hr_manager = "hr_manager"
    manager = "manager"
    employee = "employee"


# Higher level = more privilege; a role satisfies every role at or below it.
ROLE_HIERARCHY: dict[AppRole, int] = {
    AppRole.super_admin: 5,
    AppRole.company_admin: 4,
    AppRole.hr_manager: 3,
    AppRole.manager: 2,
    AppRole.employee: 1,
}

ADMIN_ROLES = (AppRole.super_admin, AppRole.company_admin)


# ── Permissions ─────────────────────────────────────────────────────

class PermissionModule(str, enum.Enum):
    dashboard = "dashboard"
    employees = "employees"
    departments = "departments"
    leave = "leave"
    time_tracking = "time_tracking"
    documents = "documents"
    recruitment = "recruitment"
    performance = "performance"
    payroll = "payroll"
    expenses = "expenses"
    compliance = "compliance"
    audit = "audit"
    integrations = "integrations"
    settings = "settings"
    users = "users"
    shifts = "shifts"
    attendance = "attendance"
    my_team = "my_team"


class PermissionAction(str, enum.Enum):
    read = "read"
    create = "create"
    update = "update"
    delete = "delete"
    approve = "approve"
    process = "process"
    verify = "verify"
    export = "export"
    manage = "manage"
    lock = "lock"


# Actions that never mutate tenant data; everything else hits the write guard.
READ_ONLY_ACTIONS = frozenset({PermissionAction.read, PermissionAction.export})


# ── Companies / Billing ─────────────────────────────────────────────

class SubscriptionStatus(str, enum.Enum):
    active = "active"
    past_due = "past_due"
    canceled = "canceled"
    trialing = "trialing"
    trial_expired = "trial_expired"
    paused = "paused"


class TrialExtensionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ── Employee / Core HR ──────────────────────────────────────────────

class EmploymentStatus(str, enum.Enum):
    active = "active"
    on_leave = "on_leave"
    terminated = "terminated"
    suspended = "suspended"


class EmploymentType(str, enum.Enum):
    full_time = "full_time"
    part_time = "part_time"
    contract = "contract"
    intern = "intern"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    canceled = "canceled"


# ── Time tracking ───────────────────────────────────────────────────

class TimeCorrectionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    clarification_needed = "clarification_needed"


# ── Payroll ─────────────────────────────────────────────────────────

class PayrollStatus(str, enum.Enum):
    draft = "draft"
    processing = "processing"
    completed = "completed"
    failed = "failed"


# ── Documents ───────────────────────────────────────────────────────

class VerificationStatus(str, enum.Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"
    expired = "expired"


# ── Performance ─────────────────────────────────────────────────────

class ReviewStatus(str, enum.Enum):
    draft = "draft"
    in_progress = "in_progress"
    completed = "completed"
    acknowledged = "acknowledged"


class GoalStatus(str, enum.Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"
    canceled = "canceled"


# ── Recruitment ─────────────────────────────────────────────────────

class JobStatus(str, enum.Enum):
    draft = "draft"
    open = "open"
    closed = "closed"
    on_hold = "on_hold"


class CandidateStatus(str, enum.Enum):
    applied = "applied"
    screening = "screening"
    interviewing = "interviewing"
    offered = "offered"
    hired = "hired"
    rejected = "rejected"
    withdrawn = "withdrawn"


# ── Audit / Security ────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    create = "create"
    read = "read"
    update = "update"
    delete = "delete"
    login = "login"
    logout = "logout"
    export = "export"
    import_ = "import"


class SecurityEventType(str, enum.Enum):
    login_success = "login_success"
    login_failure = "login_failure"
    password_change = "password_change"
    mfa_enabled = "mfa_enabled"
    mfa_disabled = "mfa_disabled"
    suspicious_activity = "suspicious_activity"
    permission_denied = "permission_denied"
    data_export = "data_export"


class SecuritySeverity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# ── Notifications / Email ───────────────────────────────────────────

class NotificationType(str, enum.Enum):
    leave_request = "leave_request"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"
    payroll_processed = "payroll_processed"
    document_expiring = "document_expiring"
    document_verified = "document_verified"
    document_rejected = "document_rejected"
    review_assigned = "review_assigned"
    review_reminder = "review_reminder"
    time_correction = "time_correction"
    candidate_update = "candidate_update"
    trial_expiring = "trial_expiring"
    general = "general"


class EmailStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"


class EmailProviderName(str, enum.Enum):
    console = "console"
    smtp = "smtp"
    sendgrid = "sendgrid"
    resend = "resend"
    brevo = "brevo"
    mailersend = "mailersend"


# ── Misc ────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
