"""Auth router — registration, password login, token refresh, logout, profile."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import current_token_hash, get_current_user
from backend.auth.models import User
from backend.auth.schemas import (
    ChangePasswordRequest,
    ChangePasswordResponse,
    LoginRequest,
    MembershipBrief,
    MeResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    TokenResponse,
    UserInfo,
)
from backend.auth.service import (
    authenticate,
    change_password,
    create_session,
    password_change_required,
    refresh_access_token,
    register_user,
    revoke_session,
    unlock_account,
)
from backend.common.audit import client_info, create_audit_entry
from backend.common.constants import AuditAction, PermissionAction, PermissionModule
from backend.common.exceptions import NotFoundException
from backend.common.rate_limit import LOGIN_RATE_LIMIT, REGISTER_RATE_LIMIT, limiter
from backend.companies.models import Company, CompanyMember
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission

router = APIRouter(prefix="", tags=["auth"])


# ── POST /register — Create an account and sign in ─────────────────

@router.post("/register", response_model=TokenResponse, status_code=201)
@limiter.limit(REGISTER_RATE_LIMIT)
async def register(
    body: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    user = await register_user(db, email=body.email, password=body.password, full_name=body.full_name)
    ip, user_agent = client_info(request)
    access_token, refresh_token, expires_in = await create_session(db, user, ip, user_agent)
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        user=UserInfo.model_validate(user),
    )


# ── POST /login — Email + password ─────────────────────────────────

@router.post("/login", response_model=TokenResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    ip, user_agent = client_info(request)
    user, access_token, refresh_token, expires_in = await authenticate(
        db, email=body.email, password=body.password, ip=ip, user_agent=user_agent,
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        user=UserInfo.model_validate(user),
        password_change_required=await password_change_required(db, user, user.current_company_id),
    )


# ── POST /refresh — Rotate the token pair ──────────────────────────

@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    access_token, new_refresh, expires_in = await refresh_access_token(db, body.refresh_token)
    return RefreshResponse(access_token=access_token, refresh_token=new_refresh, expires_in=expires_in)


# ── POST /logout — Revoke current session ──────────────────────────

@router.post("/logout")
async def logout(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await revoke_session(db, current_token_hash(request))

    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action=AuditAction.logout,
        entity_type="user_session",
        entity_id=user.id,
        company_id=user.current_company_id,
        user_id=user.id,
        ip_address=ip,
        user_agent=user_agent,
    )
    return {"message": "Logged out successfully"}


# ── GET /me — Current user profile ─────────────────────────────────

@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(CompanyMember, Company)
        .join(Company, Company.id == CompanyMember.company_id)
        .where(CompanyMember.user_id == user.id, CompanyMember.is_active.is_(True))
        .order_by(CompanyMember.is_primary.desc(), Company.name)
    )
    memberships = [
        MembershipBrief(
            company_id=company.id,
            company_name=company.name,
            role=member.role,
            is_primary=member.is_primary,
        )
        for member, company in result.all()
    ]
    role = next(
        (m.role for m in memberships if m.company_id == user.current_company_id), None,
    )
    return MeResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        is_platform_admin=user.is_platform_admin,
        last_login_at=user.last_login_at,
        current_company_id=user.current_company_id,
        role=role,
        memberships=memberships,
        password_change_required=await password_change_required(db, user, user.current_company_id),
    )


# ── POST /change-password ──────────────────────────────────────────

@router.post("/change-password", response_model=ChangePasswordResponse)
async def change_my_password(
    body: ChangePasswordRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ip, user_agent = client_info(request)
    revoked = await change_password(
        db,
        user,
        current_password=body.current_password,
        new_password=body.new_password,
        current_token_hash=current_token_hash(request),
        ip=ip,
        user_agent=user_agent,
    )
    return ChangePasswordResponse(message="Password changed successfully", sessions_revoked=revoked)


# ── POST /users/{user_id}/unlock — Admin unlock ────────────────────

@router.post("/users/{user_id}/unlock", response_model=UserInfo)
async def unlock_user(
    user_id: uuid.UUID,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    member = (
        await db.execute(
            select(CompanyMember.id).where(
                CompanyMember.company_id == ctx.company_id, CompanyMember.user_id == user_id,
            )
        )
    ).first()
    if member is None:
        raise NotFoundException(entity_type="User", entity_id=user_id)
    return await unlock_account(db, user_id, actor_id=ctx.user_id, company_id=ctx.company_id)
