"""
Servicio de permisos: evalúa si un usuario puede realizar una acción
sobre una tarea según su rol y el ámbito configurado en permission_settings.

Falla cerrado: cualquier error de lectura se traduce en denegación.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import Subject, resolve_scope
from app.core.exceptions import InvalidPermissionType, NotFoundException
from app.models.group import GroupMember
from app.models.permission_setting import PermissionScope, PermissionSetting, PermissionType
from app.models.task import Task, TaskRecipient
from app.models.user import User, UserRole
from app.schemas.permission import PermissionSettingUpdate
from app.services.audit_service import ActivityLogger

logger = logging.getLogger(__name__)


class DecisionReason(str, Enum):
    ALLOWED = "allowed"
    NO_SETTING = "no_setting"
    DISABLED = "disabled"
    OUT_OF_SCOPE = "out_of_scope"
    UNKNOWN_ACTOR = "unknown_actor"
    UNKNOWN_RESOURCE = "unknown_resource"
    ERROR = "error"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: DecisionReason

    def __bool__(self) -> bool:
        return self.allowed


def _deny(reason: DecisionReason) -> PermissionDecision:
    return PermissionDecision(allowed=False, reason=reason)


@dataclass(frozen=True)
class CachedSetting:
    """Copia inmutable de una fila de permission_settings."""
    scope: PermissionScope
    enabled: bool


def parse_permission_type(value: PermissionType | str) -> PermissionType:
    """Valida el tipo de permiso antes de cualquier consulta."""
    if isinstance(value, PermissionType):
        return value
    try:
        return PermissionType(value)
    except ValueError:
        raise InvalidPermissionType(value) from None


# ── Caché de configuración ───────────────────────────
class PermissionCache:
    """
    Caché en memoria de permission_settings por (rol, permiso).

    Vive en `app.state` (una instancia por proceso). Debe invalidarse
    explícitamente cuando se modifica una configuración.

    Cada invalidación incrementa `generation`. Un lector que consultó la DB
    antes de una invalidación no puede guardar su resultado después.
    """

    MISSING = object()

    def __init__(self, ttl: int = 60):
        self.ttl = ttl
        self._entries: dict[tuple[UserRole, PermissionType], tuple[object, float]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, role: UserRole, permission_type: PermissionType):
        """Devuelve el CachedSetting, None (sin fila) o `MISSING` si no hay dato."""
        if self.ttl <= 0:
            return self.MISSING
        entry = self._entries.get((role, permission_type))
        if entry is None:
            return self.MISSING
        value, expiry = entry
        if time.monotonic() >= expiry:
            del self._entries[(role, permission_type)]
            return self.MISSING
        return value

    def set(
        self,
        role: UserRole,
        permission_type: PermissionType,
        value: CachedSetting | None,
        generation: int | None = None,
    ) -> None:
        if self.ttl <= 0:
            return
        # Leído antes de la última invalidación: puede ser la fila vieja
        if generation is not None and generation != self._generation:
            return
        self._entries[(role, permission_type)] = (value, time.monotonic() + self.ttl)

    def invalidate(self, role: UserRole | None = None) -> None:
        """Invalida todo, o solo las entradas de un rol."""
        self._generation += 1
        if role is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == role]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


# ── Evaluador ────────────────────────────────────────
class PermissionEvaluator:
    """
    Decide si `actor_id` puede ejercer `permission_type`:

    - sin `target_task_id`: chequeo grueso (¿el rol tiene el permiso habilitado?)
    - con `target_task_id`: chequeo fino aplicando el ámbito sobre la tarea
    """

    def __init__(self, db: AsyncSession, cache: PermissionCache | None = None):
        self.db = db
        self.cache = cache

    async def evaluate(
        self,
        actor_id: UUID,
        permission_type: PermissionType | str,
        target_task_id: UUID | None = None,
    ) -> bool:
        decision = await self.explain(actor_id, permission_type, target_task_id)
        return decision.allowed

    async def explain(
        self,
        actor_id: UUID,
        permission_type: PermissionType | str,
        target_task_id: UUID | None = None,
    ) -> PermissionDecision:
        """Como `evaluate`, pero devuelve también el motivo de la decisión."""
        ptype = parse_permission_type(permission_type)
        try:
            decision = await self._decide(actor_id, ptype, target_task_id)
        except Exception:
            logger.warning(
                "Verificación de permisos fallida (deny): actor=%s permiso=%s tarea=%s",
                actor_id, ptype.value, target_task_id, exc_info=True,
            )
            return _deny(DecisionReason.ERROR)

        if not decision.allowed:
            logger.debug(
                "Permiso denegado: actor=%s permiso=%s tarea=%s motivo=%s",
                actor_id, ptype.value, target_task_id, decision.reason.value,
            )
        return decision

    async def check_task_actions(self, actor_id: UUID, task_id: UUID) -> dict[str, bool]:
        """Acciones disponibles sobre una tarea. Cambiar estado sigue a editar."""
        can_edit = await self.evaluate(actor_id, PermissionType.EDIT_TASKS, task_id)
        can_delete = await self.evaluate(actor_id, PermissionType.DELETE_TASKS, task_id)
        return {
            "can_edit": can_edit,
            "can_delete": can_delete,
            "can_change_status": can_edit,
        }

    # ── Internos ─────────────────────────────────────
    async def _decide(
        self,
        actor_id: UUID,
        ptype: PermissionType,
        target_task_id: UUID | None,
    ) -> PermissionDecision:
        actor = await self._load_user(actor_id)
        if actor is None or not actor.is_active:
            return _deny(DecisionReason.UNKNOWN_ACTOR)

        setting = await self._load_setting(actor.role, ptype)
        if setting is None:
            return _deny(DecisionReason.NO_SETTING)
        if not setting.enabled:
            return _deny(DecisionReason.DISABLED)

        if target_task_id is None:
            return PermissionDecision(allowed=True, reason=DecisionReason.ALLOWED)

        task = await self.db.get(Task, target_task_id)
        if task is None:
            return _deny(DecisionReason.UNKNOWN_RESOURCE)
        owner = await self._load_user(task.created_by)
        if owner is None:
            return _deny(DecisionReason.UNKNOWN_RESOURCE)

        scope = setting.scope
        actor_subject = Subject(actor.id, actor.role, await self._group_ids(actor.id))
        owner_subject = Subject(owner.id, owner.role, await self._group_ids(owner.id))
        resource_groups = owner_subject.group_ids | await self._recipient_group_ids(task.id)

        if resolve_scope(scope, actor_subject, owner_subject, resource_groups):
            return PermissionDecision(allowed=True, reason=DecisionReason.ALLOWED)
        return _deny(DecisionReason.OUT_OF_SCOPE)

    async def _load_user(self, user_id: UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def _load_setting(self, role: UserRole, ptype: PermissionType):
        if self.cache is not None:
            cached = self.cache.get(role, ptype)
            if cached is not PermissionCache.MISSING:
                return cached
            generation = self.cache.generation

        result = await self.db.execute(
            select(PermissionSetting).where(
                PermissionSetting.role == role,
                PermissionSetting.permission_type == ptype,
            )
        )
        row = result.scalar_one_or_none()
        value = CachedSetting(scope=row.scope, enabled=row.enabled) if row else None
        if self.cache is not None:
            self.cache.set(role, ptype, value, generation=generation)
        return value

    async def _group_ids(self, user_id: UUID) -> frozenset[UUID]:
        result = await self.db.execute(
            select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        )
        return frozenset(result.scalars().all())

    async def _recipient_group_ids(self, task_id: UUID) -> frozenset[UUID]:
        result = await self.db.execute(
            select(TaskRecipient.group_id).where(
                TaskRecipient.task_id == task_id,
                TaskRecipient.group_id.is_not(None),
            )
        )
        return frozenset(result.scalars().all())


# ── Consultas de configuración ───────────────────────
async def get_user_permissions(db: AsyncSession, user: User) -> list[PermissionSetting]:
    """Configuraciones del rol del usuario. Lista vacía si falla la lectura."""
    try:
        result = await db.execute(
            select(PermissionSetting)
            .where(PermissionSetting.role == user.role)
            .order_by(PermissionSetting.permission_type)
        )
        return list(result.scalars().all())
    except Exception:
        logger.warning("No se pudieron cargar los permisos de user_id=%s", user.id, exc_info=True)
        return []


def has_permission(settings: list[PermissionSetting], permission_type: PermissionType) -> bool:
    """Chequeo grueso sobre una lista ya cargada de configuraciones."""
    ptype = parse_permission_type(permission_type)
    for setting in settings:
        if setting.permission_type == ptype:
            return bool(setting.enabled)
    return False


# ── Administración ───────────────────────────────────
async def list_settings(db: AsyncSession) -> list[PermissionSetting]:
    result = await db.execute(
        select(PermissionSetting).order_by(
            PermissionSetting.role, PermissionSetting.permission_type
        )
    )
    return list(result.scalars().all())


async def update_setting(
    db: AsyncSession,
    admin: User,
    setting_id: UUID,
    data: PermissionSettingUpdate,
    cache: PermissionCache,
    activity: ActivityLogger,
) -> PermissionSetting:
    """
    Modifica ámbito y/o habilitación de una configuración y registra el cambio.

    Confirma la transacción antes de invalidar la caché del rol: otra request
    que recargue la fila después de la invalidación ya ve el valor nuevo.
    """
    setting = await db.get(PermissionSetting, setting_id)
    if setting is None:
        raise NotFoundException("Configuración de permisos", detail="Configuración de permisos no encontrada")

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        return setting

    old_data = setting.snapshot()
    for field, value in changes.items():
        setattr(setting, field, value)
    setting.updated_by = admin.id
    await db.flush()
    await activity.permission_changed(setting.id, old_data, setting.snapshot())
    await db.commit()

    cache.invalidate(setting.role)
    logger.info(
        "Permiso actualizado: %s/%s por user_id=%s",
        setting.role.value, setting.permission_type.value, admin.id,
    )
    return setting
