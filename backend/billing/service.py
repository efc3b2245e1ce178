"""Billing service — subscription status, write guard, plan modules & limits, trials."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.models import User
from backend.billing.models import Plan, Subscription, TrialExtensionRequest
from backend.billing.plans import DEFAULT_PLANS, plan_has_module
from backend.billing.schemas import TrialInfo
from backend.common.audit import create_audit_entry
from backend.common.constants import (
    ADMIN_ROLES,
    AuditAction,
    EmploymentStatus,
    PermissionModule,
    SubscriptionStatus,
    TrialExtensionStatus,
)
from backend.common.exceptions import (
    ConflictError,
    InvalidStateException,
    LimitExceededException,
    NotFoundException,
    ValidationException,
)
from backend.common.models import as_utc, get_platform_setting, utcnow
from backend.companies.models import Company, CompanyMember
from backend.config import settings
from backend.core_hr.models import Employee
from backend.emails.service import EmailService

logger = logging.getLogger(__name__)


def effective_status(subscription: Optional[Subscription], now: Optional[datetime] = None) -> Optional[SubscriptionStatus]:
    """Stored status, except a trial past its end reads as ``trial_expired``."""
    if subscription is None:
        return None
    now = now or utcnow()
    ends = as_utc(subscription.trial_ends_at)
    if subscription.status == SubscriptionStatus.trialing and ends is not None and ends < now:
        return SubscriptionStatus.trial_expired
    return subscription.status


def days_remaining(trial_ends_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left in a trial, rounded up; 0 once it has ended."""
    if trial_ends_at is None:
        return None
    now = now or utcnow()
    seconds = (as_utc(trial_ends_at) - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


class BillingService:
    """Async billing operations."""

    # ─────────────────────────────────────────────────────────────────
    # Plans
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def ensure_default_plans(db: AsyncSession) -> list[Plan]:
        """Create the built-in plans that do not exist yet."""
        existing = {
            p.name: p for p in (await db.execute(select(Plan))).scalars().all()
        }
        for definition in DEFAULT_PLANS:
            if definition["name"] not in existing:
                plan = Plan(**definition)
                db.add(plan)
                existing[plan.name] = plan
        await db.flush()
        return list(existing.values())

    @staticmethod
    async def list_plans(db: AsyncSession) -> list[Plan]:
        result = await db.execute(
            select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.price_monthly)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_plan_by_name(db: AsyncSession, name: str) -> Plan:
        plan = (await db.execute(select(Plan).where(Plan.name == name))).scalars().first()
        if plan is None:
            await BillingService.ensure_default_plans(db)
            plan = (await db.execute(select(Plan).where(Plan.name == name))).scalars().first()
        if plan is None:
            raise NotFoundException(entity_type="Plan", entity_id=name)
        return plan

    # ─────────────────────────────────────────────────────────────────
    # Subscription state
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_subscription(db: AsyncSession, company_id: uuid.UUID) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription).where(Subscription.company_id == company_id)
        )
        return result.scalars().first()

    @staticmethod
    async def start_trial(
        db: AsyncSession, company_id: uuid.UUID, plan: Plan, trial_days: Optional[int] = None,
    ) -> Subscription:
        trial_settings = await BillingService.get_trial_settings(db)
        days = trial_days or trial_settings["default_trial_days"]
        now = utcnow()
        subscription = Subscription(
            company_id=company_id,
            plan_id=plan.id,
            status=SubscriptionStatus.trialing,
            trial_started_at=now,
            trial_ends_at=now + timedelta(days=days),
        )
        db.add(subscription)
        await db.flush()
        return subscription

    @staticmethod
    async def can_write(db: AsyncSession, company: Company) -> bool:
        """Company not frozen AND subscription active or inside a live trial."""
        if not company.is_active:
            return False
        subscription = await BillingService.get_subscription(db, company.id)
        status = effective_status(subscription)
        if status == SubscriptionStatus.active:
            return True
        return status == SubscriptionStatus.trialing

    @staticmethod
    async def has_module(db: AsyncSession, company_id: uuid.UUID, module: PermissionModule) -> bool:
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is None:
            return plan_has_module([], module)
        return plan_has_module(subscription.plan.modules, module)

    @staticmethod
    async def get_plan_feature(
        db: AsyncSession, company_id: uuid.UUID, path: str, default: Any = None,
    ) -> Any:
        """Read a dotted key (e.g. ``documents.max_storage_mb``) from plan features."""
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is None:
            return default
        node: Any = subscription.plan.features or {}
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    @staticmethod
    async def check_employee_limit(db: AsyncSession, company_id: uuid.UUID) -> None:
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is None or subscription.plan.max_employees < 0:
            return
        count = (
            await db.execute(
                select(func.count()).select_from(Employee).where(
                    Employee.company_id == company_id,
                    Employee.employment_status != EmploymentStatus.terminated,
                )
            )
        ).scalar_one()
        if count >= subscription.plan.max_employees:
            raise LimitExceededException("employee_limit_reached")

    @staticmethod
    async def change_plan(
        db: AsyncSession, company_id: uuid.UUID, plan_name: str, *, actor_id: uuid.UUID,
    ) -> Subscription:
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is None:
            raise NotFoundException(entity_type="Subscription", entity_id=company_id)
        plan = await BillingService.get_plan_by_name(db, plan_name)
        old_plan = subscription.plan.name
        subscription.plan_id = plan.id
        subscription.plan = plan
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="subscription",
            entity_id=subscription.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"plan": old_plan},
            new_values={"plan": plan.name},
        )
        return subscription

    @staticmethod
    async def activate_subscription(
        db: AsyncSession, company_id: uuid.UUID, *, period_days: int = 30, actor_id: uuid.UUID,
    ) -> Subscription:
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is None:
            raise NotFoundException(entity_type="Subscription", entity_id=company_id)
        old_status = subscription.status
        subscription.status = SubscriptionStatus.active
        subscription.current_period_end = utcnow() + timedelta(days=period_days)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="subscription",
            entity_id=subscription.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"status": old_status.value},
            new_values={"status": SubscriptionStatus.active.value},
        )
        return subscription

    # ─────────────────────────────────────────────────────────────────
    # Trials
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_trial_settings(db: AsyncSession) -> dict[str, Any]:
        stored = await get_platform_setting(db, "trial") or {}
        return {
            "default_trial_days": int(stored.get("default_trial_days", settings.TRIAL_DAYS)),
            "extend_allowed": bool(stored.get("extend_allowed", settings.TRIAL_EXTEND_ALLOWED)),
            "max_extensions": int(stored.get("max_extensions", settings.TRIAL_MAX_EXTENSIONS)),
        }

    @staticmethod
    async def _extension_counts(db: AsyncSession, company_id: uuid.UUID) -> tuple[int, bool]:
        """Return (approved extension count, has pending request)."""
        rows = (
            await db.execute(
                select(TrialExtensionRequest.status, func.count())
                .where(TrialExtensionRequest.company_id == company_id)
                .group_by(TrialExtensionRequest.status)
            )
        ).all()
        counts = {status: n for status, n in rows}
        return (
            counts.get(TrialExtensionStatus.approved, 0),
            counts.get(TrialExtensionStatus.pending, 0) > 0,
        )

    @staticmethod
    async def can_request_extension(db: AsyncSession, company_id: uuid.UUID) -> tuple[bool, bool]:
        """Return (extension allowed, has pending request)."""
        trial_settings = await BillingService.get_trial_settings(db)
        approved, pending = await BillingService._extension_counts(db, company_id)
        allowed = trial_settings["extend_allowed"] and approved < trial_settings["max_extensions"]
        return allowed, pending

    @staticmethod
    async def get_trial_info(db: AsyncSession, company_id: uuid.UUID) -> TrialInfo:
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is None:
            raise NotFoundException(entity_type="Subscription", entity_id=company_id)
        status = effective_status(subscription)
        allowed, pending = await BillingService.can_request_extension(db, company_id)
        in_trial_lifecycle = status in (SubscriptionStatus.trialing, SubscriptionStatus.trial_expired)
        return TrialInfo(
            status=status,
            plan=subscription.plan.name,
            is_trialing=status == SubscriptionStatus.trialing,
            is_expired=status == SubscriptionStatus.trial_expired,
            trial_started_at=subscription.trial_started_at,
            trial_ends_at=subscription.trial_ends_at,
            days_remaining=days_remaining(subscription.trial_ends_at) if in_trial_lifecycle else None,
            can_request_extension=allowed and in_trial_lifecycle and not pending,
            has_pending_request=pending,
        )

    @staticmethod
    async def request_trial_extension(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        requested_days: int,
        reason: Optional[str],
        user_id: uuid.UUID,
    ) -> TrialExtensionRequest:
        subscription = await BillingService.get_subscription(db, company_id)
        status = effective_status(subscription)
        if status not in (SubscriptionStatus.trialing, SubscriptionStatus.trial_expired):
            raise InvalidStateException("Trial extensions are only available during a trial.")

        allowed, pending = await BillingService.can_request_extension(db, company_id)
        if pending:
            raise ConflictError(field="status", value=TrialExtensionStatus.pending.value)
        if not allowed:
            raise ValidationException(
                {"requested_days": ["The maximum number of trial extensions has been reached."]},
            )

        request = TrialExtensionRequest(
            company_id=company_id,
            requested_by=user_id,
            requested_days=requested_days,
            reason=reason,
        )
        db.add(request)
        await db.flush()
        logger.info("Trial extension requested (%d days)", requested_days, extra={"company_id": company_id})
        return request

    @staticmethod
    async def list_extension_requests(
        db: AsyncSession, status: Optional[TrialExtensionStatus] = None,
    ) -> list[TrialExtensionRequest]:
        query = select(TrialExtensionRequest).order_by(TrialExtensionRequest.created_at.desc())
        if status is not None:
            query = query.where(TrialExtensionRequest.status == status)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def review_trial_extension(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        approve: bool,
        reviewer_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> TrialExtensionRequest:
        request = await db.get(TrialExtensionRequest, request_id)
        if request is None:
            raise NotFoundException(entity_type="TrialExtensionRequest", entity_id=request_id)
        if request.status != TrialExtensionStatus.pending:
            raise InvalidStateException(f"Request is already {request.status.value}.")

        now = utcnow()
        request.status = TrialExtensionStatus.approved if approve else TrialExtensionStatus.rejected
        request.reviewed_by = reviewer_id
        request.reviewed_at = now
        request.review_notes = notes

        company = await db.get(Company, request.company_id)
        data: dict[str, Any] = {
            "company_name": company.name if company else "",
            "requested_days": request.requested_days,
            "review_notes": notes or "",
        }
        if approve:
            subscription = await BillingService.get_subscription(db, request.company_id)
            base = max(now, as_utc(subscription.trial_ends_at) or now)
            subscription.trial_ends_at = base + timedelta(days=request.requested_days)
            subscription.status = SubscriptionStatus.trialing
            data["new_trial_end"] = subscription.trial_ends_at.strftime("%B %d, %Y")
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="trial_extension_request",
            entity_id=request.id,
            company_id=request.company_id,
            user_id=reviewer_id,
            new_values={"status": request.status.value, "requested_days": request.requested_days},
        )

        recipients = await BillingService.admin_emails(db, request.company_id)
        if recipients:
            await EmailService.send(
                db,
                email_type="trial_extension_approved" if approve else "trial_extension_rejected",
                to=recipients,
                data=data,
                company_id=request.company_id,
            )
        return request

    @staticmethod
    async def admin_emails(db: AsyncSession, company_id: uuid.UUID) -> list[str]:
        """Emails of active super_admin / company_admin members."""
        result = await db.execute(
            select(User.email)
            .join(CompanyMember, CompanyMember.user_id == User.id)
            .where(
                CompanyMember.company_id == company_id,
                CompanyMember.is_active.is_(True),
                CompanyMember.role.in_(ADMIN_ROLES),
                User.is_active.is_(True),
            )
            .order_by(User.email)
        )
        return list(result.scalars().all())
