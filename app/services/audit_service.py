"""
Servicio de Activity Log: registra las operaciones relevantes del equipo.
INSERT-only, nunca se modifica ni elimina.

La escritura es best-effort: si falla se registra en el log de diagnóstico
y se descarta, sin propagar el error a la operación auditada.
"""

import enum
import logging
from datetime import date, datetime
from decimal import Decimal
from math import ceil
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityAction, ActivityLog, ActivityResourceType
from app.models.user import User

logger = logging.getLogger(__name__)


def _to_json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(k): _to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json_value(item) for item in value]
    return value


def _sanitize_for_json(data: dict | None) -> dict | None:
    """Convierte tipos no serializables (enum, date, datetime, UUID, Decimal)."""
    if data is None:
        return None
    return _to_json_value(data)


async def record(
    db: AsyncSession,
    *,
    actor: User | None,
    action: ActivityAction,
    resource_type: ActivityResourceType,
    resource_id: UUID | str | None = None,
    resource_title: str | None = None,
    old_data: dict | None = None,
    new_data: dict | None = None,
    success: bool = True,
    error_message: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> UUID | None:
    """
    Inserta una entrada de actividad inmutable dentro de un SAVEPOINT.
    Retorna el id de la entrada, o None si la escritura falló.

    Los cambios pendientes del llamador se vuelcan antes, fuera del bloque
    protegido: si fallan, el error es del llamador y se propaga.
    """
    await db.flush()
    try:
        entry = ActivityLog(
            user_id=actor.id if actor else None,
            user_name=actor.full_name if actor else None,
            user_role=actor.role.value if actor else None,
            action=ActivityAction(action),
            resource_type=ActivityResourceType(resource_type),
            resource_id=str(resource_id) if resource_id else None,
            resource_title=resource_title[:255] if resource_title else None,
            old_data=_sanitize_for_json(old_data),
            new_data=_sanitize_for_json(new_data),
            success=success,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        async with db.begin_nested():
            db.add(entry)
        return entry.id
    except Exception:
        logger.exception(
            "No se pudo registrar la actividad %s/%s (resource_id=%s)",
            action, resource_type, resource_id,
        )
        return None


class ActivityLogger:
    """
    Atajos tipados por evento de dominio, ligados al contexto de la request
    (sesión, actor, IP, user agent).
    """

    def __init__(
        self,
        db: AsyncSession,
        actor: User | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ):
        self.db = db
        self.actor = actor
        self.ip_address = ip_address
        self.user_agent = user_agent

    async def log(
        self,
        action: ActivityAction,
        resource_type: ActivityResourceType,
        resource_id: UUID | str | None = None,
        resource_title: str | None = None,
        old_data: dict | None = None,
        new_data: dict | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> UUID | None:
        return await record(
            self.db,
            actor=self.actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_title=resource_title,
            old_data=old_data,
            new_data=new_data,
            success=success,
            error_message=error_message,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )

    # ── Tareas ───────────────────────────────────────
    async def task_created(self, task_id, task_title: str, task_data: dict | None, *, success: bool = True, error_message: str | None = None):
        return await self.log(
            ActivityAction.CREATE, ActivityResourceType.TASK, task_id, task_title,
            None, task_data, success, error_message,
        )

    async def task_updated(self, task_id, task_title: str, old_data: dict, new_data: dict):
        return await self.log(
            ActivityAction.UPDATE, ActivityResourceType.TASK, task_id, task_title,
            old_data, new_data,
        )

    async def task_deleted(self, task_id, task_title: str, task_data: dict):
        return await self.log(
            ActivityAction.DELETE, ActivityResourceType.TASK, task_id, task_title,
            task_data, None,
        )

    async def task_status_changed(self, task_id, task_title: str, old_status, new_status):
        return await self.log(
            ActivityAction.STATUS_CHANGE, ActivityResourceType.TASK, task_id, task_title,
            {"status": old_status}, {"status": new_status},
        )

    async def task_assigned(self, task_id, task_title: str, assignments: dict):
        return await self.log(
            ActivityAction.ASSIGN, ActivityResourceType.TASK, task_id, task_title,
            None, assignments,
        )

    async def task_viewed(self, task_id, task_title: str):
        return await self.log(
            ActivityAction.VIEW, ActivityResourceType.TASK, task_id, task_title,
        )

    # ── Comentarios ──────────────────────────────────
    async def comment_added(self, comment_id, task_title: str, comment_data: dict):
        return await self.log(
            ActivityAction.CREATE, ActivityResourceType.COMMENT, comment_id,
            f"Comentario en: {task_title}", None, comment_data,
        )

    async def comment_deleted(self, comment_id, task_title: str, comment_data: dict):
        return await self.log(
            ActivityAction.DELETE, ActivityResourceType.COMMENT, comment_id,
            f"Comentario en: {task_title}", comment_data, None,
        )

    # ── Seguridad y administración ───────────────────
    async def login_attempt(self, success: bool, error: str | None = None):
        return await self.log(
            ActivityAction.LOGIN, ActivityResourceType.AUTH,
            success=success, error_message=error,
        )

    async def permission_changed(self, setting_id, old_data: dict, new_data: dict):
        return await self.log(
            ActivityAction.UPDATE, ActivityResourceType.PERMISSION_SETTING, setting_id,
            "Configuración de permisos", old_data, new_data,
        )

    async def user_role_changed(self, user_id, user_name: str, old_role, new_role):
        return await self.log(
            ActivityAction.ROLE_CHANGE, ActivityResourceType.USER, user_id, user_name,
            {"role": old_role}, {"role": new_role},
        )


async def get_activity_logs(
    db: AsyncSession,
    *,
    page: int = 1,
    size: int = 50,
    action: ActivityAction | None = None,
    resource_type: ActivityResourceType | None = None,
    user_id: UUID | None = None,
    success: bool | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict:
    """Consulta paginada del activity log, más recientes primero."""
    filters = []
    if action:
        filters.append(ActivityLog.action == action)
    if resource_type:
        filters.append(ActivityLog.resource_type == resource_type)
    if user_id:
        filters.append(ActivityLog.user_id == user_id)
    if success is not None:
        filters.append(ActivityLog.success.is_(success))
    if date_from:
        filters.append(ActivityLog.created_at >= date_from)
    if date_to:
        filters.append(ActivityLog.created_at <= date_to)

    count_query = select(func.count(ActivityLog.id)).where(*filters)
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    offset = (page - 1) * size
    query = (
        select(ActivityLog)
        .where(*filters)
        .order_by(ActivityLog.created_at.desc())
        .offset(offset)
        .limit(size)
    )
    result = await db.execute(query)
    items = result.scalars().all()

    return {
        "items": items,
        "total": total,
        "page": page,
        "size": size,
        "pages": ceil(total / size) if total else 1,
    }
