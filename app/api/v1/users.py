"""
Endpoints de gestion de usuarios del estudio.
Solo el administrador puede crear usuarios, cambiar roles o deshabilitarlos.
El directorio (id, nombre, rol) está abierto a cualquier usuario autenticado.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_activity_logger, get_current_user, require_role
from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.core.security import hash_password
from app.database import get_db
from app.models.user import User, UserRole
from app.schemas.user import (
    ActiveToggle,
    UserCreate,
    UserDirectoryItem,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from app.services.audit_service import ActivityLogger

router = APIRouter()

# Valores usados como "rol nuevo" al registrar altas y bajas
ROLE_DISABLED = "disabled"
ROLE_ENABLED = "enabled"


async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    target = await db.get(User, user_id)
    if target is None:
        raise NotFoundException("Usuario")
    return target


@router.get("/directory", response_model=list[UserDirectoryItem])
async def user_directory(
    role: UserRole | None = Query(None, description="Filtrar por rol"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Usuarios activos que pueden recibir tareas."""
    query = select(User).where(User.is_active.is_(True))
    if role:
        query = query.where(User.role == role)
    result = await db.execute(query.order_by(User.full_name.asc()))
    return result.scalars().all()


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    role: UserRole | None = Query(None, description="Filtrar por rol"),
    active_only: bool = Query(False, description="Solo usuarios activos"),
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
):
    """Lista usuarios con filtros opcionales por rol y estado."""
    query = select(User)
    count_query = select(func.count()).select_from(User)

    if role:
        query = query.where(User.role == role)
        count_query = count_query.where(User.role == role)
    if active_only:
        query = query.where(User.is_active.is_(True))
        count_query = count_query.where(User.is_active.is_(True))

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(User.full_name.asc())
    query = query.offset((page - 1) * size).limit(size)

    result = await db.execute(query)
    users = result.scalars().all()

    pages = (total + size - 1) // size if total > 0 else 1

    return UserListResponse(
        items=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        size=size,
        pages=pages,
    )


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    data: UserCreate,
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    """Da de alta un usuario con su rol inicial."""
    existing = await db.execute(select(User.id).where(User.email == data.email))
    if existing.scalar_one_or_none():
        raise ConflictException("Ya existe un usuario con ese email")

    new_user = User(
        email=data.email,
        full_name=data.full_name.strip(),
        role=data.role,
        hashed_password=hash_password(data.password),
    )
    db.add(new_user)
    await db.flush()

    await activity.user_role_changed(new_user.id, new_user.full_name, None, new_user.role)
    return UserResponse.model_validate(new_user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    data: UserUpdate,
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    """Actualiza nombre y/o rol. Los cambios de rol quedan en el activity log."""
    target = await _get_user_or_404(db, user_id)

    if data.role is not None and target.id == user.id and data.role != user.role:
        raise ValidationException("No puede cambiar su propio rol")

    old_role = target.role
    if data.full_name is not None:
        target.full_name = data.full_name.strip()
    if data.role is not None:
        target.role = data.role
    await db.flush()

    if target.role != old_role:
        await activity.user_role_changed(target.id, target.full_name, old_role, target.role)
    return UserResponse.model_validate(target)


@router.patch("/{user_id}/active", response_model=UserResponse)
async def toggle_active(
    user_id: UUID,
    data: ActiveToggle,
    user: User = Depends(require_role(UserRole.ADMINISTRATOR)),
    db: AsyncSession = Depends(get_db),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    """Deshabilita o rehabilita un usuario (no se eliminan usuarios)."""
    target = await _get_user_or_404(db, user_id)

    if target.id == user.id and not data.is_active:
        raise ValidationException("No puede deshabilitar su propia cuenta")
    if target.is_active == data.is_active:
        return UserResponse.model_validate(target)

    target.is_active = data.is_active
    await db.flush()

    await activity.user_role_changed(
        target.id,
        target.full_name,
        target.role,
        ROLE_ENABLED if data.is_active else ROLE_DISABLED,
    )
    return UserResponse.model_validate(target)
