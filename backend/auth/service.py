"""Auth service — registration, password login with lockout, JWT sessions."""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from backend.auth.devices import device_fingerprint, device_name, parse_browser, parse_os
from backend.auth.models import User, UserDevice, UserSession
from backend.common.audit import create_audit_entry, log_security_event
from backend.common.constants import AuditAction, SecurityEventType, SecuritySeverity
from backend.common.exceptions import (
    AccountLockedException,
    ConflictError,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from backend.common.models import as_utc, utcnow
from backend.companies.settings import get_company_setting, primary_company_id
from backend.config import settings
from backend.emails.service import EmailService

logger = logging.getLogger(__name__)


# ── Passwords ───────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def validate_password_strength(password: str, field: str = "password") -> None:
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationException(
            {field: [f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters."]},
        )


# ── JWT helpers ─────────────────────────────────────────────────────

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _create_access_token(user_id: uuid.UUID) -> tuple[str, int]:
    """Return (encoded_jwt, expires_in_seconds)."""
    expires_in = settings.JWT_EXPIRY_HOURS * 3600
    payload = {
        "sub": str(user_id),
        "type": "access",
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_in


def _create_refresh_token(user_id: uuid.UUID) -> str:
    payload = {
        "sub": str(user_id),
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def create_session(
    db: AsyncSession,
    user: User,
    ip: Optional[str],
    user_agent: Optional[str],
) -> tuple[str, str, int]:
    """Create a JWT pair and persist the session. Returns (access, refresh, expires_in)."""
    access_token, expires_in = _create_access_token(user.id)
    refresh_token = _create_refresh_token(user.id)
    db.add(
        UserSession(
            user_id=user.id,
            token_hash=_hash_token(access_token),
            refresh_token_hash=_hash_token(refresh_token),
            ip_address=ip,
            user_agent=user_agent,
            expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_DAYS),
        )
    )
    await db.flush()
    return access_token, refresh_token, expires_in


# ── Registration ────────────────────────────────────────────────────

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalars().first()


async def register_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    full_name: str,
) -> User:
    validate_password_strength(password)
    if await get_user_by_email(db, email) is not None:
        raise ConflictError(field="email", value=email, code="email_exists")
    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        full_name=full_name.strip(),
        password_changed_at=utcnow(),
    )
    db.add(user)
    await db.flush()
    logger.info("Registered user %s", user.email, extra={"user_id": user.id})
    return user


# ── Login ───────────────────────────────────────────────────────────

async def _lockout_policy(db: AsyncSession, user: User) -> tuple[int, int]:
    """(max_failed_attempts, lockout_duration_minutes) from the user's company."""
    company_id = user.current_company_id or await primary_company_id(db, user.id)
    security = await get_company_setting(db, company_id, "security")
    return (
        int(security.get("max_failed_attempts") or settings.MAX_FAILED_LOGIN_ATTEMPTS),
        int(security.get("lockout_duration_minutes") or settings.LOCKOUT_DURATION_MINUTES),
    )


async def record_failed_login(
    db: AsyncSession,
    user: User,
    ip: Optional[str],
    user_agent: Optional[str],
) -> bool:
    """Count a failed attempt; lock the account at the threshold. Returns True if locked."""
    max_attempts, lockout_minutes = await _lockout_policy(db, user)
    user.failed_login_attempts = (user.failed_login_attempts or 0) + 1

    await log_security_event(
        db,
        event_type=SecurityEventType.login_failure,
        severity=SecuritySeverity.low,
        description="Invalid password",
        user_id=user.id,
        company_id=user.current_company_id,
        details={"attempts": user.failed_login_attempts},
        ip_address=ip,
        user_agent=user_agent,
    )

    if user.failed_login_attempts < max_attempts:
        await db.flush()
        return False

    user.locked_until = utcnow() + timedelta(minutes=lockout_minutes)
    await log_security_event(
        db,
        event_type=SecurityEventType.suspicious_activity,
        severity=SecuritySeverity.high,
        description=f"Account locked after {user.failed_login_attempts} failed login attempts",
        user_id=user.id,
        company_id=user.current_company_id,
        details={
            "reason": "account_locked",
            "failed_attempts": user.failed_login_attempts,
            "locked_until": user.locked_until.isoformat(),
        },
        ip_address=ip,
        user_agent=user_agent,
    )
    await db.flush()
    return True


async def authenticate(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    ip: Optional[str],
    user_agent: Optional[str],
) -> tuple[User, str, str, int]:
    """Verify credentials and open a session.

    Returns (user, access_token, refresh_token, expires_in). Failed attempts
    are committed before the exception propagates so the counter survives
    the request rollback.
    """
    user = await get_user_by_email(db, email)
    if user is None:
        await log_security_event(
            db,
            event_type=SecurityEventType.login_failure,
            description="Unknown email",
            details={"email": email.strip().lower()},
            ip_address=ip,
            user_agent=user_agent,
        )
        await db.commit()
        raise UnauthorizedException("invalid_credentials")

    if user.is_locked():
        raise AccountLockedException(as_utc(user.locked_until).isoformat())
    if user.locked_until is not None:
        # lock expired: start counting again
        user.locked_until = None
        user.failed_login_attempts = 0

    if not user.is_active:
        raise UnauthorizedException("invalid_credentials", detail="This account has been deactivated.")

    if not verify_password(user.password_hash, password):
        locked = await record_failed_login(db, user, ip, user_agent)
        await db.commit()
        if locked:
            raise AccountLockedException(as_utc(user.locked_until).isoformat())
        raise UnauthorizedException("invalid_credentials")

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = utcnow()
    if user.current_company_id is None:
        user.current_company_id = await primary_company_id(db, user.id)

    access_token, refresh_token, expires_in = await create_session(db, user, ip, user_agent)

    await log_security_event(
        db,
        event_type=SecurityEventType.login_success,
        user_id=user.id,
        company_id=user.current_company_id,
        ip_address=ip,
        user_agent=user_agent,
    )
    await create_audit_entry(
        db,
        action=AuditAction.login,
        entity_type="user_session",
        entity_id=user.id,
        company_id=user.current_company_id,
        user_id=user.id,
        ip_address=ip,
        user_agent=user_agent,
    )
    await check_suspicious_login(db, user, ip, user_agent)
    return user, access_token, refresh_token, expires_in


# ── Password policy ─────────────────────────────────────────────

async def password_change_required(db: AsyncSession, user: User, company_id: Optional[uuid.UUID]) -> bool:
    """True when *user* must set a new password before working in *company_id*.

    Either the account still carries its temporary password, or the
    company's ``security.password_expiry_days`` has passed since the last
    change (account creation when it was never changed).
    """
    if user.must_change_password:
        return True
    security = await get_company_setting(db, company_id, "security")
    expiry_days = security.get("password_expiry_days")
    if not expiry_days:
        return False
    changed_at = as_utc(user.password_changed_at or user.created_at)
    return utcnow() - changed_at > timedelta(days=int(expiry_days))


# ── New-device detection ────────────────────────────────────────────

async def check_suspicious_login(
    db: AsyncSession,
    user: User,
    ip: Optional[str],
    user_agent: Optional[str],
) -> bool:
    """Record the device; return True when it is new and others already exist."""
    fingerprint = device_fingerprint(user_agent)
    now = utcnow()

    devices = list(
        (await db.execute(select(UserDevice).where(UserDevice.user_id == user.id))).scalars().all()
    )
    known = next((d for d in devices if d.fingerprint == fingerprint), None)
    if known is not None:
        known.last_used_at = now
        known.ip_address = ip
        await db.flush()
        return False

    db.add(
        UserDevice(
            user_id=user.id,
            fingerprint=fingerprint,
            browser=parse_browser(user_agent),
            os=parse_os(user_agent),
            ip_address=ip,
            first_seen_at=now,
            last_used_at=now,
        )
    )
    await db.flush()
    if not devices:
        return False

    await log_security_event(
        db,
        event_type=SecurityEventType.suspicious_activity,
        severity=SecuritySeverity.medium,
        description=f"Login from new device: {device_name(user_agent)}",
        user_id=user.id,
        company_id=user.current_company_id,
        details={"reason": "new_device", "fingerprint": fingerprint, "known_devices": len(devices)},
        ip_address=ip,
        user_agent=user_agent,
    )
    await EmailService.send(
        db,
        email_type="suspicious_login",
        to=user.email,
        data={
            "user_name": user.full_name or user.email,
            "login_time": now.strftime("%B %d, %Y %H:%M UTC"),
            "browser": device_name(user_agent),
            "ip_address": ip,
            "secure_account_url": f"{settings.APP_URL}/settings/security",
        },
        company_id=user.current_company_id,
    )
    return True


# ── Refresh (with token rotation + reuse detection) ─────────────────

async def refresh_access_token(
    db: AsyncSession,
    refresh_token_str: str,
) -> tuple[str, str, int]:
    """Validate refresh token, rotate it, and issue a new token pair.

    Each refresh token can be used once. Presenting an already-consumed
    token revokes every session of that user.
    """
    try:
        payload = jwt.decode(
            refresh_token_str,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise UnauthorizedException("invalid_token", detail="Invalid or expired refresh token.")

    if payload.get("type") != "refresh":
        raise UnauthorizedException("invalid_token", detail="Invalid token type.")

    result = await db.execute(
        select(UserSession).where(UserSession.refresh_token_hash == _hash_token(refresh_token_str)),
    )
    session = result.scalars().first()
    if session is None:
        raise UnauthorizedException("invalid_token", detail="Invalid refresh token.")

    if session.is_revoked:
        await revoke_all_user_sessions(db, session.user_id)
        await log_security_event(
            db,
            event_type=SecurityEventType.suspicious_activity,
            severity=SecuritySeverity.high,
            description="Refresh token reuse detected; all sessions revoked",
            user_id=session.user_id,
        )
        await db.commit()
        raise UnauthorizedException(
            "invalid_token", detail="Refresh token reuse detected. All sessions revoked for security.",
        )

    session.is_revoked = True
    await db.flush()

    user = await db.get(User, uuid.UUID(payload["sub"]))
    if user is None or not user.is_active:
        raise UnauthorizedException("invalid_token", detail="User account is inactive or not found.")
    access_token, refresh_token, expires_in = await create_session(
        db, user, session.ip_address, session.user_agent,
    )
    return access_token, refresh_token, expires_in


# ── Revoke ──────────────────────────────────────────────────────────

async def revoke_all_user_sessions(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    except_token_hash: Optional[str] = None,
) -> int:
    result = await db.execute(
        select(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.is_revoked.is_(False),
        ),
    )
    count = 0
    for session in result.scalars().all():
        if except_token_hash and session.token_hash == except_token_hash:
            continue
        session.is_revoked = True
        count += 1
    await db.flush()
    return count


async def revoke_session(db: AsyncSession, token_hash: str) -> None:
    """Mark a session as revoked by its access-token hash."""
    result = await db.execute(
        select(UserSession).where(UserSession.token_hash == token_hash),
    )
    session = result.scalars().first()
    if session:
        session.is_revoked = True
        await db.flush()


# ── Account maintenance ─────────────────────────────────────────────

async def change_password(
    db: AsyncSession,
    user: User,
    *,
    current_password: str,
    new_password: str,
    current_token_hash: Optional[str],
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> int:
    """Change the password and revoke every other session. Returns revoked count."""
    if not verify_password(user.password_hash, current_password):
        raise ValidationException({"current_password": ["Current password is incorrect."]})
    validate_password_strength(new_password, "new_password")
    if current_password == new_password:
        raise ValidationException({"new_password": ["New password must differ from the current one."]})

    user.password_hash = hash_password(new_password)
    user.password_changed_at = utcnow()
    user.must_change_password = False
    revoked = await revoke_all_user_sessions(db, user.id, except_token_hash=current_token_hash)
    await log_security_event(
        db,
        event_type=SecurityEventType.password_change,
        user_id=user.id,
        company_id=user.current_company_id,
        details={"sessions_revoked": revoked},
        ip_address=ip,
        user_agent=user_agent,
    )
    return revoked


async def unlock_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    actor_id: uuid.UUID,
    company_id: Optional[uuid.UUID] = None,
) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundException(entity_type="User", entity_id=user_id)
    user.failed_login_attempts = 0
    user.locked_until = None
    await db.flush()
    await create_audit_entry(
        db,
        action=AuditAction.update,
        entity_type="user",
        entity_id=user.id,
        company_id=company_id,
        user_id=actor_id,
        details={"operation": "unlock_account"},
    )
    return user
