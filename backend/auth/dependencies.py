"""Auth dependencies — JWT validation, platform-admin gate."""

from __future__ import annotations

import hashlib
import uuid

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.models import User, UserSession
from backend.common.exceptions import ForbiddenException, UnauthorizedException
from backend.common.models import utcnow
from backend.config import settings
from backend.database import get_db


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise UnauthorizedException("invalid_token", detail="Missing or invalid Authorization header.")
    return auth_header[7:]


def current_token_hash(request: Request) -> str:
    return _hash_token(_extract_bearer(request))


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate JWT, verify the session, return the authenticated User."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise UnauthorizedException("invalid_token", detail="Token has expired.")
    except JWTError:
        raise UnauthorizedException("invalid_token", detail="Invalid token.")

    if payload.get("type") != "access":
        raise UnauthorizedException("invalid_token", detail="Invalid token type.")

    result = await db.execute(
        select(UserSession).where(
            UserSession.token_hash == _hash_token(token),
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > utcnow(),
        ),
    )
    if result.scalars().first() is None:
        raise UnauthorizedException("invalid_token", detail="Session invalid or expired.")

    user = await db.get(User, uuid.UUID(payload["sub"]))
    if user is None or not user.is_active:
        raise UnauthorizedException("invalid_token", detail="User account is inactive or not found.")

    request.state.user_id = user.id
    return user


# ── Platform administration ─────────────────────────────────────────

async def require_platform_admin(
    user: User = Depends(get_current_user),
) -> User:
    if not user.is_platform_admin:
        raise ForbiddenException(detail="Platform administrator access required.")
    return user
