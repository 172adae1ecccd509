"""
Schemas para tareas, destinatarios, comentarios y lecturas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.task import TaskStatus


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    body: str | None = None
    due_at: datetime | None = None
    visible_to_all: bool = True
    user_ids: list[UUID] = Field(default_factory=list, description="Usuarios destinatarios")
    group_ids: list[UUID] = Field(default_factory=list, description="Grupos destinatarios")

    @model_validator(mode="after")
    def _require_recipients(self):
        if not self.visible_to_all and not self.user_ids and not self.group_ids:
            raise ValueError(
                "Si la tarea no es visible para todos, seleccione al menos un usuario o un grupo"
            )
        return self


class TaskUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    body: str | None = None
    due_at: datetime | None = None
    visible_to_all: bool | None = None
    user_ids: list[UUID] | None = None
    group_ids: list[UUID] | None = None


class TaskResponse(BaseModel):
    id: UUID
    title: str
    body: str | None = None
    status: TaskStatus
    due_at: datetime | None = None
    done_at: datetime | None = None
    visible_to_all: bool
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TaskDetailResponse(TaskResponse):
    creator_name: str | None = None
    user_ids: list[UUID] = Field(default_factory=list)
    group_ids: list[UUID] = Field(default_factory=list)
    comments_count: int = 0
    seen_at: datetime | None = None


class TaskListResponse(BaseModel):
    items: list[TaskResponse]
    total: int
    todo: int
    doing: int
    done: int
    overdue: int


class TaskActions(BaseModel):
    can_edit: bool
    can_delete: bool
    can_change_status: bool


# ── Comentarios ──────────────────────────────────────
class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    id: UUID
    task_id: UUID
    author_id: UUID
    author_name: str | None = None
    body: str
    created_at: datetime


# ── Lecturas ─────────────────────────────────────────
class TaskReadResponse(BaseModel):
    user_id: UUID
    full_name: str | None = None
    seen_at: datetime
