"""Company service — onboarding, freeze, settings, members, employee numbers."""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.models import User
from backend.auth.service import get_user_by_email, hash_password
from backend.billing.service import BillingService
from backend.common.audit import create_audit_entry, log_security_event
from backend.common.constants import (
    ADMIN_ROLES,
    AppRole,
    AuditAction,
    SecurityEventType,
    SecuritySeverity,
)
from backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    TenantException,
    ValidationException,
)
from backend.common.models import utcnow
from backend.companies.models import Company, CompanyMember, CompanySetting
from backend.companies.schemas import MemberOut, MembershipOut
from backend.companies.settings import (
    DEFAULT_COMPANY_SETTINGS,
    get_company_setting,
    seed_company_settings,
)
from backend.config import settings
from backend.core_hr.models import Employee
from backend.emails.service import EmailService
from backend.permissions.service import PermissionService

logger = logging.getLogger(__name__)

_SETTING_KEY = re.compile(r"^[a-z][a-z0-9_]{1,99}$")


class CompanyService:
    """Async tenancy operations."""

    # ─────────────────────────────────────────────────────────────────
    # Companies
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_company(
        db: AsyncSession,
        *,
        name: str,
        slug: str,
        owner: User,
        subdomain: Optional[str] = None,
        plan_name: Optional[str] = None,
    ) -> Company:
        """Create a tenant owned by *owner* and start its trial."""
        slug = slug.lower()
        subdomain = (subdomain or slug).lower()
        if (await db.execute(select(Company.id).where(Company.slug == slug))).first():
            raise ConflictError(field="slug", value=slug)
        if (await db.execute(select(Company.id).where(Company.subdomain == subdomain))).first():
            raise ConflictError(field="subdomain", value=subdomain)

        plan = await BillingService.get_plan_by_name(db, plan_name or settings.DEFAULT_PLAN)

        company = Company(name=name.strip(), slug=slug, subdomain=subdomain)
        db.add(company)
        await db.flush()

        has_primary = (
            await db.execute(
                select(CompanyMember.id).where(
                    CompanyMember.user_id == owner.id, CompanyMember.is_primary.is_(True),
                )
            )
        ).first()
        db.add(CompanyMember(
            company_id=company.id,
            user_id=owner.id,
            role=AppRole.company_admin,
            is_primary=has_primary is None,
        ))
        owner.current_company_id = company.id
        await db.flush()

        await seed_company_settings(db, company.id)
        await PermissionService.initialize_company_permissions(db, company.id)
        subscription = await BillingService.start_trial(db, company.id, plan)

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="company",
            entity_id=company.id,
            company_id=company.id,
            user_id=owner.id,
            new_values={"name": company.name, "slug": slug, "plan": plan.name},
        )
        logger.info("Created company %s on %s trial", slug, plan.name, extra={"company_id": company.id})

        trial_settings = await BillingService.get_trial_settings(db)
        await EmailService.send(
            db,
            email_type="trial_started",
            to=owner.email,
            data={
                "company_name": company.name,
                "user_name": owner.full_name or owner.email,
                "trial_days": trial_settings["default_trial_days"],
                "trial_end_date": subscription.trial_ends_at.strftime("%B %d, %Y"),
                "dashboard_url": f"{settings.APP_URL}/dashboard",
                "plan_name": plan.name,
            },
            company_id=company.id,
        )
        return company

    @staticmethod
    async def get_company(db: AsyncSession, company_id: uuid.UUID) -> Company:
        company = await db.get(Company, company_id)
        if company is None:
            raise NotFoundException(entity_type="Company", entity_id=company_id)
        return company

    @staticmethod
    async def list_companies(db: AsyncSession) -> list[Company]:
        return list((await db.execute(select(Company).order_by(Company.name))).scalars().all())

    @staticmethod
    async def update_company(
        db: AsyncSession, company: Company, changes: dict[str, Any], *, actor_id: uuid.UUID,
    ) -> Company:
        if "custom_domain" in changes and changes["custom_domain"]:
            domain = changes["custom_domain"].strip().lower()
            taken = (
                await db.execute(
                    select(Company.id).where(Company.custom_domain == domain, Company.id != company.id)
                )
            ).first()
            if taken:
                raise ConflictError(field="custom_domain", value=domain)
            changes["custom_domain"] = domain

        old_values = {}
        for key, value in changes.items():
            old = getattr(company, key)
            if old != value:
                old_values[key] = str(old) if old is not None else None
                setattr(company, key, value)
        await db.flush()

        if old_values:
            await create_audit_entry(
                db,
                action=AuditAction.update,
                entity_type="company",
                entity_id=company.id,
                company_id=company.id,
                user_id=actor_id,
                old_values=old_values,
                new_values={k: str(changes[k]) if changes[k] is not None else None for k in old_values},
            )
        return company

    @staticmethod
    async def freeze_company(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        reason: str,
        actor_id: uuid.UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Company:
        company = await CompanyService.get_company(db, company_id)
        if company.is_frozen:
            raise InvalidStateException("Company is already frozen.")
        company.is_active = False
        company.frozen_at = utcnow()
        company.frozen_reason = reason
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="company",
            entity_id=company.id,
            company_id=company.id,
            user_id=actor_id,
            old_values={"is_active": True},
            new_values={"is_active": False, "frozen_reason": reason},
        )
        await log_security_event(
            db,
            event_type=SecurityEventType.suspicious_activity,
            severity=SecuritySeverity.high,
            description=f"Company frozen: {reason}",
            company_id=company.id,
            user_id=actor_id,
            details={"reason": "company_frozen", "frozen_reason": reason},
            ip_address=ip_address,
            user_agent=user_agent,
        )

        recipients = await BillingService.admin_emails(db, company.id)
        if recipients:
            await EmailService.send(
                db,
                email_type="company_frozen",
                to=recipients,
                data={
                    "company_name": company.name,
                    "reason": reason,
                    "support_email": settings.EMAIL_FROM_ADDRESS,
                },
                company_id=company.id,
            )
        return company

    @staticmethod
    async def unfreeze_company(
        db: AsyncSession, company_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> Company:
        company = await CompanyService.get_company(db, company_id)
        if not company.is_frozen:
            raise InvalidStateException("Company is not frozen.")
        company.is_active = True
        company.frozen_at = None
        company.frozen_reason = None
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="company",
            entity_id=company.id,
            company_id=company.id,
            user_id=actor_id,
            old_values={"is_active": False},
            new_values={"is_active": True},
        )
        return company

    # ─────────────────────────────────────────────────────────────────
    # Settings
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_settings(db: AsyncSession, company_id: uuid.UUID) -> dict[str, dict[str, Any]]:
        """Every setting key with stored values merged over the defaults."""
        rows = (
            await db.execute(select(CompanySetting).where(CompanySetting.company_id == company_id))
        ).scalars().all()
        result = {key: await get_company_setting(db, company_id, key) for key in DEFAULT_COMPANY_SETTINGS}
        for row in rows:
            if row.key not in result:
                result[row.key] = row.value
        return result

    @staticmethod
    async def update_setting(
        db: AsyncSession,
        company_id: uuid.UUID,
        key: str,
        value: dict[str, Any],
        *,
        actor_id: uuid.UUID,
    ) -> dict[str, Any]:
        if not _SETTING_KEY.match(key):
            raise ValidationException({"key": ["Setting keys are lowercase letters, digits and underscores."]})
        if key == "security":
            for field in ("max_failed_attempts", "lockout_duration_minutes"):
                if field in value and (not isinstance(value[field], int) or value[field] < 1):
                    raise ValidationException({field: ["Must be a positive integer."]})
            expiry = value.get("password_expiry_days")
            if expiry is not None and (not isinstance(expiry, int) or expiry < 1):
                raise ValidationException({"password_expiry_days": ["Must be a positive integer or null."]})
        if key == "employee_id_format":
            padding = value.get("padding", 4)
            if not isinstance(padding, int) or not 1 <= padding <= 10:
                raise ValidationException({"padding": ["Padding must be between 1 and 10."]})

        row = (
            await db.execute(
                select(CompanySetting).where(
                    CompanySetting.company_id == company_id, CompanySetting.key == key,
                )
            )
        ).scalars().first()
        old_value = dict(row.value) if row else None
        if row is None:
            row = CompanySetting(company_id=company_id, key=key, value=value)
            db.add(row)
        else:
            row.value = {**row.value, **value}
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="company_setting",
            company_id=company_id,
            user_id=actor_id,
            old_values=old_value,
            new_values=row.value,
            details={"key": key},
        )
        return await get_company_setting(db, company_id, key)

    # ─────────────────────────────────────────────────────────────────
    # Members
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _member_out(member: CompanyMember, user: User) -> MemberOut:
        return MemberOut(
            id=member.id,
            user_id=user.id,
            email=user.email,
            full_name=user.full_name,
            role=member.role,
            is_active=member.is_active,
            is_primary=member.is_primary,
            joined_at=member.joined_at,
        )

    @staticmethod
    async def list_members(db: AsyncSession, company_id: uuid.UUID) -> list[MemberOut]:
        result = await db.execute(
            select(CompanyMember, User)
            .join(User, User.id == CompanyMember.user_id)
            .where(CompanyMember.company_id == company_id)
            .order_by(User.full_name, User.email)
        )
        return [CompanyService._member_out(m, u) for m, u in result.all()]

    @staticmethod
    async def _get_member(db: AsyncSession, company_id: uuid.UUID, member_id: uuid.UUID) -> CompanyMember:
        member = (
            await db.execute(
                select(CompanyMember).where(
                    CompanyMember.id == member_id, CompanyMember.company_id == company_id,
                )
            )
        ).scalars().first()
        if member is None:
            raise NotFoundException(entity_type="Member", entity_id=member_id)
        return member

    @staticmethod
    async def _active_company_admins(db: AsyncSession, company_id: uuid.UUID) -> int:
        return (
            await db.execute(
                select(func.count()).select_from(CompanyMember).where(
                    CompanyMember.company_id == company_id,
                    CompanyMember.role == AppRole.company_admin,
                    CompanyMember.is_active.is_(True),
                )
            )
        ).scalar_one()

    @staticmethod
    async def add_member(
        db: AsyncSession,
        company: Company,
        *,
        email: str,
        role: AppRole,
        actor: User,
        full_name: Optional[str] = None,
    ) -> MemberOut:
        """Add (or reactivate) a member, creating the user account if needed."""
        if role == AppRole.super_admin:
            raise ForbiddenException(detail="The super_admin role cannot be granted.")

        user = await get_user_by_email(db, email)
        if user is None:
            user = User(
                email=email.strip().lower(),
                full_name=(full_name or "").strip(),
                password_hash=hash_password(secrets.token_urlsafe(24)),
            )
            db.add(user)
            await db.flush()

        member = (
            await db.execute(
                select(CompanyMember).where(
                    CompanyMember.company_id == company.id, CompanyMember.user_id == user.id,
                )
            )
        ).scalars().first()
        if member is not None and member.is_active:
            raise ConflictError(field="email", value=user.email)
        if member is None:
            member = CompanyMember(company_id=company.id, user_id=user.id, role=role)
            db.add(member)
        else:
            member.is_active = True
            member.role = role
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="company_member",
            entity_id=member.id,
            company_id=company.id,
            user_id=actor.id,
            new_values={"email": user.email, "role": role.value},
        )
        await EmailService.send(
            db,
            email_type="user_invitation",
            to=user.email,
            data={
                "inviter_name": actor.full_name or actor.email,
                "company_name": company.name,
                "invite_url": f"{settings.APP_URL}/auth?company={company.slug}",
                "role": role.value.replace("_", " "),
            },
            company_id=company.id,
        )
        return CompanyService._member_out(member, user)

    @staticmethod
    async def update_member_role(
        db: AsyncSession,
        company_id: uuid.UUID,
        member_id: uuid.UUID,
        role: AppRole,
        *,
        actor_id: uuid.UUID,
    ) -> MemberOut:
        if role == AppRole.super_admin:
            raise ForbiddenException(detail="The super_admin role cannot be granted.")
        member = await CompanyService._get_member(db, company_id, member_id)
        if member.role == AppRole.super_admin:
            raise ForbiddenException(detail="A super_admin's role cannot be changed.")
        if (
            member.role == AppRole.company_admin
            and role != AppRole.company_admin
            and member.is_active
            and await CompanyService._active_company_admins(db, company_id) <= 1
        ):
            raise ForbiddenException(detail="Cannot demote the last company admin.")

        old_role = member.role
        member.role = role
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="company_member",
            entity_id=member.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"role": old_role.value},
            new_values={"role": role.value},
        )
        user = await db.get(User, member.user_id)
        return CompanyService._member_out(member, user)

    @staticmethod
    async def deactivate_member(
        db: AsyncSession,
        company_id: uuid.UUID,
        member_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
    ) -> MemberOut:
        member = await CompanyService._get_member(db, company_id, member_id)
        if member.role == AppRole.super_admin:
            raise ForbiddenException(detail="A super_admin cannot be deactivated.")
        if (
            member.role == AppRole.company_admin
            and member.is_active
            and await CompanyService._active_company_admins(db, company_id) <= 1
        ):
            raise ForbiddenException(detail="Cannot deactivate the last company admin.")
        member.is_active = False
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="company_member",
            entity_id=member.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"is_active": False},
        )
        user = await db.get(User, member.user_id)
        return CompanyService._member_out(member, user)

    # ─────────────────────────────────────────────────────────────────
    # Current user's companies
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_memberships(db: AsyncSession, user: User) -> list[MembershipOut]:
        result = await db.execute(
            select(CompanyMember, Company)
            .join(Company, Company.id == CompanyMember.company_id)
            .where(CompanyMember.user_id == user.id, CompanyMember.is_active.is_(True))
            .order_by(Company.name)
        )
        return [
            MembershipOut(
                company_id=company.id,
                company_name=company.name,
                slug=company.slug,
                role=member.role,
                is_primary=member.is_primary,
                is_current=company.id == user.current_company_id,
            )
            for member, company in result.all()
        ]

    @staticmethod
    async def switch_company(db: AsyncSession, user: User, company_id: uuid.UUID) -> Company:
        member = (
            await db.execute(
                select(CompanyMember).where(
                    CompanyMember.company_id == company_id,
                    CompanyMember.user_id == user.id,
                    CompanyMember.is_active.is_(True),
                )
            )
        ).scalars().first()
        if member is None:
            raise TenantException("not_member")
        user.current_company_id = company_id
        await db.flush()
        return await CompanyService.get_company(db, company_id)

    # ─────────────────────────────────────────────────────────────────
    # Employee numbers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def generate_employee_number(db: AsyncSession, company_id: uuid.UUID) -> str:
        """Next ``<prefix><zero-padded n>`` where n = max existing suffix + 1."""
        fmt = await get_company_setting(db, company_id, "employee_id_format")
        prefix = str(fmt.get("prefix") or "EMP")
        padding = int(fmt.get("padding") or 4)

        numbers = (
            await db.execute(
                select(Employee.employee_number).where(
                    Employee.company_id == company_id,
                    Employee.employee_number.like(f"{prefix}%"),
                )
            )
        ).scalars().all()
        pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
        highest = 0
        for number in numbers:
            match = pattern.match(number or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}{str(highest + 1).zfill(padding)}"
