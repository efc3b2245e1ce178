"""Permission Pydantic schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from backend.common.constants import AppRole, PermissionAction, PermissionModule


class EffectivePermission(BaseModel):
    module: PermissionModule
    action: PermissionAction
    granted: bool
    source: str


class PermissionCheckResponse(BaseModel):
    module: PermissionModule
    action: PermissionAction
    granted: bool
    source: str


class RolePermissionUpdate(BaseModel):
    role: AppRole
    module: PermissionModule
    action: PermissionAction
    granted: bool


class UserPermissionUpdate(BaseModel):
    module: PermissionModule
    action: PermissionAction
    # None clears the override and falls back to the role grant
    granted: Optional[bool] = None


class RolePermissionsOut(BaseModel):
    role: AppRole
    permissions: list[str]
