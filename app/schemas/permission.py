"""
Schemas para la configuración de permisos.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from app.models.permission_setting import PermissionScope, PermissionType
from app.models.user import UserRole


class PermissionSettingResponse(BaseModel):
    id: UUID
    role: UserRole
    permission_type: PermissionType
    scope: PermissionScope
    enabled: bool
    updated_by: UUID | None = None
    updated_at: datetime

    model_config = {"from_attributes": True}


class PermissionSettingUpdate(BaseModel):
    scope: PermissionScope | None = None
    enabled: bool | None = None


class PermissionCheckResponse(BaseModel):
    permission_type: PermissionType
    task_id: UUID | None = None
    allowed: bool
