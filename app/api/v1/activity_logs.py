"""
Endpoints del activity log (solo lectura, solo administradores).
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_role
from app.database import get_db
from app.models.activity_log import ActivityAction, ActivityResourceType
from app.models.user import User, UserRole
from app.schemas.activity_log import ActivityLogResponse
from app.services import audit_service

router = APIRouter()


@router.get("", response_model=ActivityLogResponse)
async def get_activity_logs(
    page: int = Query(default=1, ge=1, description="Número de página"),
    size: int = Query(default=50, ge=1, le=200, description="Registros por página"),
    action: ActivityAction | None = Query(default=None, description="Filtrar por acción"),
    resource_type: ActivityResourceType | None = Query(default=None, description="Filtrar por tipo de recurso"),
    user_id: UUID | None = Query(default=None, description="Filtrar por usuario"),
    success: bool | None = Query(default=None, description="Filtrar por resultado"),
    date_from: datetime | None = Query(default=None, description="Desde (ISO 8601)"),
    date_to: datetime | None = Query(default=None, description="Hasta (ISO 8601)"),
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
):
    """Registro de actividad paginado, más recientes primero."""
    return await audit_service.get_activity_logs(
        db,
        page=page,
        size=size,
        action=action,
        resource_type=resource_type,
        user_id=user_id,
        success=success,
        date_from=date_from,
        date_to=date_to,
    )
