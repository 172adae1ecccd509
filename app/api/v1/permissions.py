"""
Endpoints de permisos: consulta del propio rol, verificación puntual
y consola de administración de permission_settings.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import (
    get_activity_logger,
    get_current_user,
    get_permission_cache,
    get_permission_evaluator,
    require_role,
)
from app.core.exceptions import InvalidPermissionType, ValidationException
from app.database import get_db
from app.models.user import User, UserRole
from app.schemas.permission import (
    PermissionCheckResponse,
    PermissionSettingResponse,
    PermissionSettingUpdate,
)
from app.services import permission_service
from app.services.audit_service import ActivityLogger
from app.services.permission_service import PermissionCache, PermissionEvaluator

router = APIRouter()


@router.get("/me", response_model=list[PermissionSettingResponse])
async def my_permissions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Configuración de permisos del rol del usuario autenticado."""
    return await permission_service.get_user_permissions(db, user)


@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    permission_type: str = Query(..., description="edit_tasks | delete_tasks | view_tasks | assign_tasks"),
    task_id: UUID | None = Query(None, description="Tarea objetivo (chequeo fino)"),
    user: User = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """
    Sin `task_id` responde si el rol tiene el permiso habilitado;
    con `task_id` aplica el ámbito sobre esa tarea.
    """
    try:
        ptype = permission_service.parse_permission_type(permission_type)
    except InvalidPermissionType as exc:
        raise ValidationException(str(exc))

    allowed = await evaluator.evaluate(user.id, ptype, task_id)
    return PermissionCheckResponse(permission_type=ptype, task_id=task_id, allowed=allowed)


# ── Administración ───────────────────────────────────

@router.get("", response_model=list[PermissionSettingResponse])
async def list_settings(
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
):
    return await permission_service.list_settings(db)


@router.patch("/{setting_id}", response_model=PermissionSettingResponse)
async def update_setting(
    setting_id: UUID,
    data: PermissionSettingUpdate,
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    """Modifica ámbito o habilitación. Se aplica de inmediato."""
    return await permission_service.update_setting(db, user, setting_id, data, cache, activity)
