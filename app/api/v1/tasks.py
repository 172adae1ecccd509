"""
Endpoints de tareas: listado, CRUD, estado, permisos por tarjeta,
comentarios y lecturas.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import (
    get_activity_logger,
    get_current_user,
    get_permission_evaluator,
)
from app.database import get_db
from app.models.task import TaskStatus
from app.models.user import User
from app.schemas.task import (
    CommentCreate,
    CommentResponse,
    TaskActions,
    TaskCreate,
    TaskDetailResponse,
    TaskListResponse,
    TaskReadResponse,
    TaskResponse,
    TaskUpdate,
)
from app.services import task_service
from app.services.audit_service import ActivityLogger
from app.services.permission_service import PermissionEvaluator

router = APIRouter()


class TaskStatusChange(BaseModel):
    status: TaskStatus


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    status: TaskStatus | None = Query(None, description="Filtrar por estado"),
    scope: str | None = Query(None, pattern="^(assigned|created)$", description="assigned | created"),
    search: str | None = Query(None, description="Buscar en título y descripción"),
    sort: str = Query("created_at", description="created_at | due_at | title | status"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Lista las tareas visibles con estadísticas por estado."""
    return await task_service.list_tasks(
        db, user, status=status, scope=scope, search=search, sort=sort,
    )


@router.post("", response_model=TaskDetailResponse, status_code=201)
async def create_task(
    data: TaskCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    """Crea una tarea para todo el equipo o para destinatarios concretos."""
    return await task_service.create_task(db, user, data, evaluator, activity)


@router.get("/{task_id}", response_model=TaskDetailResponse)
async def get_task(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    """Detalle de la tarea. Marca la tarea como leída por el usuario."""
    return await task_service.view_task(db, user, task_id, evaluator, activity)


@router.patch("/{task_id}", response_model=TaskDetailResponse)
async def update_task(
    task_id: UUID,
    data: TaskUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    return await task_service.update_task(db, user, task_id, data, evaluator, activity)


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    await task_service.delete_task(db, user, task_id, evaluator, activity)
    return Response(status_code=204)


# ── Estado ───────────────────────────────────────────

@router.post("/{task_id}/status", response_model=TaskResponse)
async def change_status(
    task_id: UUID,
    data: TaskStatusChange,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    return await task_service.change_status(db, user, task_id, data.status, evaluator, activity)


@router.post("/{task_id}/done", response_model=TaskResponse)
async def mark_done(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    return await task_service.change_status(db, user, task_id, TaskStatus.DONE, evaluator, activity)


@router.post("/{task_id}/reopen", response_model=TaskResponse)
async def reopen(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    return await task_service.change_status(db, user, task_id, TaskStatus.TODO, evaluator, activity)


@router.get("/{task_id}/permissions", response_model=TaskActions)
async def task_permissions(
    task_id: UUID,
    user: User = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """Acciones que el usuario puede realizar sobre la tarea (para la UI)."""
    return TaskActions(**await evaluator.check_task_actions(user.id, task_id))


# ── Lecturas ─────────────────────────────────────────

@router.post("/{task_id}/read", status_code=204)
async def mark_read(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    await task_service.mark_read(db, user, task_id, evaluator)
    return Response(status_code=204)


@router.get("/{task_id}/reads", response_model=list[TaskReadResponse])
async def list_reads(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    return await task_service.list_reads(db, user, task_id, evaluator)


# ── Comentarios ──────────────────────────────────────

@router.get("/{task_id}/comments", response_model=list[CommentResponse])
async def list_comments(
    task_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    return await task_service.list_comments(db, user, task_id, evaluator)


@router.post("/{task_id}/comments", response_model=CommentResponse, status_code=201)
async def add_comment(
    task_id: UUID,
    data: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    return await task_service.add_comment(db, user, task_id, data, evaluator, activity)


@router.delete("/{task_id}/comments/{comment_id}", status_code=204)
async def delete_comment(
    task_id: UUID,
    comment_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    await task_service.delete_comment(db, user, task_id, comment_id, activity)
    return Response(status_code=204)
