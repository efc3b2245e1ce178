"""Local file storage and signed download links for employee documents.

Files live under ``settings.UPLOAD_DIR`` at
``{company_id}/{employee_id}/{document_id}/{sanitized filename}``.
Downloads go through a short-lived JWT instead of exposing the path.
"""

from __future__ import annotations

import os
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from backend.common.exceptions import UnauthorizedException, ValidationException
from backend.config import settings

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
})
MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB
DOWNLOAD_TOKEN_PURPOSE = "document_download"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", os.path.basename(name or "")) or "file"


def build_storage_path(
    company_id: uuid.UUID, employee_id: uuid.UUID, document_id: uuid.UUID, file_name: str,
) -> str:
    return f"{company_id}/{employee_id}/{document_id}/{sanitize_filename(file_name)}"


def validate_upload(
    mime_type: Optional[str],
    size: int,
    *,
    type_mime_types: Optional[list[str]] = None,
    type_max_mb: Optional[int] = None,
) -> None:
    """Reject files outside the allowed MIME types or over the size limit.

    A document type may narrow both limits but never widen them.
    """
    errors: list[str] = []
    if mime_type not in ALLOWED_MIME_TYPES or (type_mime_types and mime_type not in type_mime_types):
        errors.append(f"File type '{mime_type}' is not allowed. Accepted: PDF, JPEG, PNG, WEBP, DOC, DOCX.")

    limit = MAX_FILE_SIZE
    if type_max_mb:
        limit = min(limit, type_max_mb * 1024 * 1024)
    if size <= 0:
        errors.append("File is empty.")
    elif size > limit:
        errors.append(f"File too large. Maximum size is {limit // (1024 * 1024)} MB.")

    if errors:
        raise ValidationException({"file": errors}, detail=errors[0])


class LocalStorage:
    """Filesystem-backed object store rooted at *root*."""

    def __init__(self, root: str) -> None:
        self.root = os.path.realpath(root)

    def _resolve(self, path: str) -> str:
        full = os.path.realpath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise ValueError(f"Path escapes storage root: {path}")
        return full

    def save(self, path: str, data: bytes) -> str:
        full = self._resolve(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)
        return full

    def full_path(self, path: str) -> str:
        return self._resolve(path)

    def exists(self, path: str) -> bool:
        return os.path.isfile(self._resolve(path))

    def delete(self, path: str) -> None:
        full = self._resolve(path)
        if os.path.isfile(full):
            os.remove(full)


def get_storage() -> LocalStorage:
    return LocalStorage(settings.UPLOAD_DIR)


# ── Signed download tokens ──────────────────────────────────────────

def create_download_token(document_id: uuid.UUID, expires_in: Optional[int] = None) -> tuple[str, int]:
    """Return ``(token, expires_in_seconds)`` for one document."""
    expires_in = expires_in or settings.SIGNED_URL_EXPIRY_SECONDS
    payload = {
        "sub": str(document_id),
        "purpose": DOWNLOAD_TOKEN_PURPOSE,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM), expires_in


def verify_download_token(token: str) -> uuid.UUID:
    try:
        payload: dict[str, Any] = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedException("invalid_token", detail="Download link is invalid or has expired.")
    if payload.get("purpose") != DOWNLOAD_TOKEN_PURPOSE or "sub" not in payload:
        raise UnauthorizedException("invalid_token", detail="Download link is invalid or has expired.")
    return uuid.UUID(payload["sub"])
