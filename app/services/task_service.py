"""
Servicio de tareas: listado con visibilidad, CRUD, cambio de estado,
destinatarios, comentarios y marcas de lectura.

Cada mutación consulta primero al PermissionEvaluator y, si se ejecuta,
queda registrada en el activity log.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, exists, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenException, NotFoundException, ValidationException
from app.models.group import Group, GroupMember
from app.models.permission_setting import PermissionType
from app.models.task import Task, TaskComment, TaskRead, TaskRecipient, TaskStatus
from app.models.user import User, UserRole
from app.schemas.task import (
    CommentCreate,
    CommentResponse,
    TaskCreate,
    TaskDetailResponse,
    TaskListResponse,
    TaskReadResponse,
    TaskResponse,
    TaskUpdate,
)
from app.services.audit_service import ActivityLogger
from app.services.permission_service import PermissionEvaluator

logger = logging.getLogger(__name__)

SORT_FIELDS = ("created_at", "due_at", "title", "status")


def _aware(value: datetime | None) -> datetime | None:
    # SQLite devuelve datetimes naive; se interpretan como UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_overdue(task: Task, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    due_at = _aware(task.due_at)
    return due_at is not None and due_at < now and task.status != TaskStatus.DONE


# ── Helpers ──────────────────────────────────────────
async def _user_group_ids(db: AsyncSession, user_id: UUID) -> list[UUID]:
    result = await db.execute(
        select(GroupMember.group_id).where(GroupMember.user_id == user_id)
    )
    return list(result.scalars().all())


def _visible_clause(user_id: UUID, group_ids: list[UUID]):
    """Visible si es para todos, si la creó el usuario o si es destinatario."""
    recipient_match = exists().where(
        TaskRecipient.task_id == Task.id,
        or_(
            TaskRecipient.user_id == user_id,
            TaskRecipient.group_id.in_(group_ids),
        ),
    )
    return or_(
        Task.visible_to_all.is_(True),
        Task.created_by == user_id,
        recipient_match,
    )


async def _get_task_or_404(db: AsyncSession, task_id: UUID) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFoundException("Tarea", detail="Tarea no encontrada")
    return task


async def _is_visible(db: AsyncSession, user: User, task: Task) -> bool:
    if task.visible_to_all or task.created_by == user.id:
        return True
    group_ids = await _user_group_ids(db, user.id)
    result = await db.execute(
        select(Task.id).where(Task.id == task.id, _visible_clause(user.id, group_ids))
    )
    return result.scalar_one_or_none() is not None


async def _ensure_can_view(
    db: AsyncSession, user: User, task: Task, evaluator: PermissionEvaluator
) -> None:
    if await _is_visible(db, user, task):
        return
    if await evaluator.evaluate(user.id, PermissionType.VIEW_TASKS, task.id):
        return
    raise ForbiddenException("No tiene acceso a esta tarea")


async def _ensure_permission(
    evaluator: PermissionEvaluator,
    user: User,
    permission_type: PermissionType,
    task: Task,
    detail: str,
) -> None:
    if not await evaluator.evaluate(user.id, permission_type, task.id):
        raise ForbiddenException(detail)


async def _log_failed_create(
    db: AsyncSession, activity: ActivityLogger, title: str, error_message: str
) -> None:
    """Registra el intento fallido y lo confirma antes de propagar el error."""
    await activity.task_created(None, title, None, success=False, error_message=error_message)
    await db.commit()


async def _validate_recipients(
    db: AsyncSession, user_ids: list[UUID], group_ids: list[UUID]
) -> None:
    """Verifica que existan los usuarios activos y grupos destinatarios."""
    if user_ids:
        result = await db.execute(
            select(func.count(User.id)).where(
                User.id.in_(user_ids), User.is_active.is_(True)
            )
        )
        if (result.scalar() or 0) != len(set(user_ids)):
            raise ValidationException("Uno o más usuarios destinatarios no existen")
    if group_ids:
        result = await db.execute(
            select(func.count(Group.id)).where(Group.id.in_(group_ids))
        )
        if (result.scalar() or 0) != len(set(group_ids)):
            raise ValidationException("Uno o más grupos destinatarios no existen")


async def _get_recipients(db: AsyncSession, task_id: UUID) -> tuple[list[UUID], list[UUID]]:
    result = await db.execute(
        select(TaskRecipient.user_id, TaskRecipient.group_id).where(
            TaskRecipient.task_id == task_id
        )
    )
    user_ids, group_ids = [], []
    for user_id, group_id in result.all():
        if user_id is not None:
            user_ids.append(user_id)
        if group_id is not None:
            group_ids.append(group_id)
    return user_ids, group_ids


async def _replace_recipients(
    db: AsyncSession, task_id: UUID, user_ids: list[UUID], group_ids: list[UUID]
) -> int:
    await db.execute(delete(TaskRecipient).where(TaskRecipient.task_id == task_id))
    rows = [TaskRecipient(task_id=task_id, user_id=uid) for uid in dict.fromkeys(user_ids)]
    rows += [TaskRecipient(task_id=task_id, group_id=gid) for gid in dict.fromkeys(group_ids)]
    db.add_all(rows)
    await db.flush()
    return len(rows)


# ── Listado ──────────────────────────────────────────
async def list_tasks(
    db: AsyncSession,
    user: User,
    *,
    status: TaskStatus | None = None,
    scope: str | None = None,
    search: str | None = None,
    sort: str = "created_at",
) -> TaskListResponse:
    """
    Lista las tareas visibles para el usuario.
    `scope="created"` limita a las creadas por él; `scope="assigned"` a las
    que lo tienen como destinatario (directo o por grupo) o son para todos.
    Las estadísticas se calculan sin el filtro de estado.
    """
    group_ids = await _user_group_ids(db, user.id)
    query = select(Task)
    if scope == "created":
        query = query.where(Task.created_by == user.id)
    elif scope == "assigned":
        query = query.where(
            or_(
                Task.visible_to_all.is_(True),
                exists().where(
                    TaskRecipient.task_id == Task.id,
                    or_(
                        TaskRecipient.user_id == user.id,
                        TaskRecipient.group_id.in_(group_ids),
                    ),
                ),
            )
        )
    else:
        query = query.where(_visible_clause(user.id, group_ids))

    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Task.title.ilike(pattern), Task.body.ilike(pattern)))

    if sort not in SORT_FIELDS:
        raise ValidationException(f"Orden no válido: {sort}")
    if sort == "due_at":
        query = query.order_by(Task.due_at.asc().nulls_last(), Task.created_at.desc())
    elif sort == "title":
        query = query.order_by(Task.title.asc())
    elif sort == "status":
        query = query.order_by(Task.status.asc(), Task.created_at.desc())
    else:
        query = query.order_by(Task.created_at.desc())

    result = await db.execute(query)
    tasks = list(result.scalars().all())

    now = datetime.now(timezone.utc)
    items = [t for t in tasks if status is None or t.status == status]
    return TaskListResponse(
        items=[TaskResponse.model_validate(t) for t in items],
        total=len(tasks),
        todo=sum(1 for t in tasks if t.status == TaskStatus.TODO),
        doing=sum(1 for t in tasks if t.status == TaskStatus.DOING),
        done=sum(1 for t in tasks if t.status == TaskStatus.DONE),
        overdue=sum(1 for t in tasks if is_overdue(t, now)),
    )


# ── CRUD ─────────────────────────────────────────────
async def create_task(
    db: AsyncSession,
    user: User,
    data: TaskCreate,
    evaluator: PermissionEvaluator,
    activity: ActivityLogger,
) -> TaskDetailResponse:
    """
    Crea una tarea y, si no es para todos, sus destinatarios.
    Asignar destinatarios requiere el permiso assign_tasks sobre la tarea.
    Los intentos fallidos quedan registrados con success=False.
    """
    title = data.title.strip()
    assigns = not data.visible_to_all

    try:
        if assigns:
            await _validate_recipients(db, data.user_ids, data.group_ids)
    except ValidationException as exc:
        await _log_failed_create(db, activity, title, exc.detail)
        raise

    task = Task(
        title=title,
        body=(data.body or "").strip() or None,
        due_at=data.due_at,
        visible_to_all=data.visible_to_all,
        created_by=user.id,
    )
    savepoint = await db.begin_nested()
    try:
        db.add(task)
        await db.flush()
    except SQLAlchemyError as exc:
        await savepoint.rollback()
        logger.exception("Error creando tarea para user_id=%s", user.id)
        await _log_failed_create(db, activity, title, str(exc))
        raise ValidationException("No se pudo crear la tarea")

    # El ámbito de assign_tasks se evalúa sobre la tarea ya insertada
    if assigns:
        try:
            await _ensure_permission(
                evaluator, user, PermissionType.ASSIGN_TASKS, task,
                "No tiene permisos para asignar esta tarea",
            )
        except ForbiddenException as exc:
            await savepoint.rollback()
            await _log_failed_create(db, activity, title, exc.detail)
            raise
    await savepoint.commit()

    await activity.task_created(task.id, title, task.snapshot())

    if assigns:
        count = await _replace_recipients(db, task.id, data.user_ids, data.group_ids)
        await activity.task_assigned(task.id, title, {
            "users": data.user_ids,
            "groups": data.group_ids,
            "assignments_count": count,
        })

    return await get_task_detail(db, user, task.id, evaluator)


async def get_task_detail(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    evaluator: PermissionEvaluator,
) -> TaskDetailResponse:
    task = await _get_task_or_404(db, task_id)
    await _ensure_can_view(db, user, task, evaluator)

    creator = await db.get(User, task.created_by)
    user_ids, group_ids = await _get_recipients(db, task.id)
    comments_count = await db.execute(
        select(func.count(TaskComment.id)).where(TaskComment.task_id == task.id)
    )
    seen_at = await db.execute(
        select(TaskRead.seen_at).where(
            TaskRead.task_id == task.id, TaskRead.user_id == user.id
        )
    )

    return TaskDetailResponse(
        **TaskResponse.model_validate(task).model_dump(),
        creator_name=creator.full_name if creator else None,
        user_ids=user_ids,
        group_ids=group_ids,
        comments_count=comments_count.scalar() or 0,
        seen_at=seen_at.scalar_one_or_none(),
    )


async def view_task(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    evaluator: PermissionEvaluator,
    activity: ActivityLogger,
) -> TaskDetailResponse:
    """Detalle de la tarea: marca la lectura y registra la visualización."""
    detail = await get_task_detail(db, user, task_id, evaluator)
    await mark_read(db, user, task_id, evaluator)
    await activity.task_viewed(task_id, detail.title)
    detail.seen_at = await _seen_at(db, task_id, user.id)
    return detail


async def update_task(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    data: TaskUpdate,
    evaluator: PermissionEvaluator,
    activity: ActivityLogger,
) -> TaskDetailResponse:
    task = await _get_task_or_404(db, task_id)
    await _ensure_permission(
        evaluator, user, PermissionType.EDIT_TASKS, task,
        "No tiene permisos para modificar esta tarea",
    )

    changes = data.model_dump(exclude_unset=True, exclude={"user_ids", "group_ids"})
    # title y visible_to_all no admiten null
    for field in ("title", "visible_to_all"):
        if changes.get(field) is None:
            changes.pop(field, None)
    if "title" in changes:
        changes["title"] = changes["title"].strip()

    reassign = data.user_ids is not None or data.group_ids is not None
    old_users, old_groups = await _get_recipients(db, task.id)
    new_users = data.user_ids if data.user_ids is not None else old_users
    new_groups = data.group_ids if data.group_ids is not None else old_groups
    visible_to_all = changes.get("visible_to_all", task.visible_to_all)
    if not visible_to_all and not new_users and not new_groups:
        raise ValidationException(
            "Si la tarea no es visible para todos, seleccione al menos un usuario o un grupo"
        )

    old_data = task.snapshot()
    for field, value in changes.items():
        setattr(task, field, value)
    await db.flush()

    if changes:
        await activity.task_updated(task.id, task.title, old_data, task.snapshot())

    if reassign:
        await _ensure_permission(
            evaluator, user, PermissionType.ASSIGN_TASKS, task,
            "No tiene permisos para asignar esta tarea",
        )
        await _validate_recipients(db, new_users, new_groups)
        count = await _replace_recipients(db, task.id, new_users, new_groups)
        await activity.task_assigned(task.id, task.title, {
            "users": new_users,
            "groups": new_groups,
            "assignments_count": count,
        })

    return await get_task_detail(db, user, task.id, evaluator)


async def change_status(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    new_status: TaskStatus,
    evaluator: PermissionEvaluator,
    activity: ActivityLogger,
) -> TaskResponse:
    """Cambia el estado. Quien puede editar la tarea puede cambiar su estado."""
    task = await _get_task_or_404(db, task_id)
    await _ensure_permission(
        evaluator, user, PermissionType.EDIT_TASKS, task,
        "No tiene permisos para cambiar el estado de esta tarea",
    )

    old_status = task.status
    if old_status == new_status:
        return TaskResponse.model_validate(task)

    task.status = new_status
    task.done_at = datetime.now(timezone.utc) if new_status == TaskStatus.DONE else None
    await db.flush()

    await activity.task_status_changed(task.id, task.title, old_status, new_status)
    return TaskResponse.model_validate(task)


async def delete_task(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    evaluator: PermissionEvaluator,
    activity: ActivityLogger,
) -> None:
    task = await _get_task_or_404(db, task_id)
    await _ensure_permission(
        evaluator, user, PermissionType.DELETE_TASKS, task,
        "No tiene permisos para eliminar esta tarea",
    )

    task_data = task.snapshot()
    title = task.title
    await db.execute(delete(TaskRecipient).where(TaskRecipient.task_id == task_id))
    await db.execute(delete(TaskComment).where(TaskComment.task_id == task_id))
    await db.execute(delete(TaskRead).where(TaskRead.task_id == task_id))
    await db.delete(task)
    await db.flush()

    await activity.task_deleted(task_id, title, task_data)


# ── Comentarios ──────────────────────────────────────
def _comment_to_response(comment: TaskComment, author: User | None) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        task_id=comment.task_id,
        author_id=comment.author_id,
        author_name=author.full_name if author else None,
        body=comment.body,
        created_at=comment.created_at,
    )


async def list_comments(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    evaluator: PermissionEvaluator,
) -> list[CommentResponse]:
    task = await _get_task_or_404(db, task_id)
    await _ensure_can_view(db, user, task, evaluator)

    result = await db.execute(
        select(TaskComment, User)
        .outerjoin(User, User.id == TaskComment.author_id)
        .where(TaskComment.task_id == task_id)
        .order_by(TaskComment.created_at.asc())
    )
    return [_comment_to_response(comment, author) for comment, author in result.all()]


async def add_comment(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    data: CommentCreate,
    evaluator: PermissionEvaluator,
    activity: ActivityLogger,
) -> CommentResponse:
    task = await _get_task_or_404(db, task_id)
    await _ensure_can_view(db, user, task, evaluator)

    comment = TaskComment(task_id=task.id, author_id=user.id, body=data.body.strip())
    db.add(comment)
    await db.flush()

    await activity.comment_added(comment.id, task.title, {
        "task_id": task.id,
        "body": comment.body,
    })
    return _comment_to_response(comment, user)


async def delete_comment(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    comment_id: UUID,
    activity: ActivityLogger,
) -> None:
    """Solo el autor o un administrador pueden eliminar un comentario."""
    task = await _get_task_or_404(db, task_id)
    comment = await db.get(TaskComment, comment_id)
    if comment is None or comment.task_id != task.id:
        raise NotFoundException("Comentario")
    if comment.author_id != user.id and user.role != UserRole.ADMINISTRATOR:
        raise ForbiddenException("Solo el autor puede eliminar este comentario")

    comment_data = {"task_id": task.id, "author_id": comment.author_id, "body": comment.body}
    await db.delete(comment)
    await db.flush()

    await activity.comment_deleted(comment_id, task.title, comment_data)


# ── Lecturas ─────────────────────────────────────────
async def _seen_at(db: AsyncSession, task_id: UUID, user_id: UUID) -> datetime | None:
    result = await db.execute(
        select(TaskRead.seen_at).where(
            TaskRead.task_id == task_id, TaskRead.user_id == user_id
        )
    )
    return result.scalar_one_or_none()


async def mark_read(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    evaluator: PermissionEvaluator,
) -> None:
    """Inserta o actualiza la marca de lectura (task, user)."""
    task = await _get_task_or_404(db, task_id)
    await _ensure_can_view(db, user, task, evaluator)

    result = await db.execute(
        select(TaskRead).where(TaskRead.task_id == task_id, TaskRead.user_id == user.id)
    )
    read = result.scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if read is None:
        db.add(TaskRead(task_id=task_id, user_id=user.id, seen_at=now))
    else:
        read.seen_at = now
    await db.flush()


async def list_reads(
    db: AsyncSession,
    user: User,
    task_id: UUID,
    evaluator: PermissionEvaluator,
) -> list[TaskReadResponse]:
    task = await _get_task_or_404(db, task_id)
    await _ensure_can_view(db, user, task, evaluator)

    result = await db.execute(
        select(TaskRead.user_id, User.full_name, TaskRead.seen_at)
        .outerjoin(User, User.id == TaskRead.user_id)
        .where(TaskRead.task_id == task_id)
        .order_by(TaskRead.seen_at.desc())
    )
    return [
        TaskReadResponse(user_id=user_id, full_name=full_name, seen_at=seen_at)
        for user_id, full_name, seen_at in result.all()
    ]
