"""
Modelo ActivityLog: Registro de actividad INMUTABLE.
INSERT-only: ninguna ruta de la aplicación actualiza ni elimina filas.
La retención la gestiona una política externa.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, enum_type, utcnow


class ActivityAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"
    LOGIN = "login"
    ASSIGN = "assign"
    STATUS_CHANGE = "status_change"
    ROLE_CHANGE = "role_change"


class ActivityResourceType(str, enum.Enum):
    TASK = "task"
    COMMENT = "comment"
    AUTH = "auth"
    PERMISSION_SETTING = "permission_setting"
    USER = "user"


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("idx_activity_logs_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # ── Actor (snapshot) ─────────────────────────────
    # Sin FK: la entrada debe sobrevivir a cambios del perfil
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), index=True
    )
    user_name: Mapped[str | None] = mapped_column(String(200))
    user_role: Mapped[str | None] = mapped_column(String(50))

    # ── Datos del evento ─────────────────────────────
    action: Mapped[ActivityAction] = mapped_column(
        enum_type(ActivityAction, "activityaction"), nullable=False, index=True
    )
    resource_type: Mapped[ActivityResourceType] = mapped_column(
        enum_type(ActivityResourceType, "activityresourcetype"),
        nullable=False,
        index=True,
    )
    resource_id: Mapped[str | None] = mapped_column(
        String(36), comment="UUID del registro afectado"
    )
    resource_title: Mapped[str | None] = mapped_column(String(255))

    # ── Datos del cambio ─────────────────────────────
    old_data: Mapped[dict | None] = mapped_column(
        JSONType, comment="Snapshot antes del cambio"
    )
    new_data: Mapped[dict | None] = mapped_column(
        JSONType, comment="Snapshot después del cambio"
    )

    # ── Resultado ────────────────────────────────────
    success: Mapped[bool] = mapped_column(default=True, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)

    # ── Metadata de la request ───────────────────────
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    # ── Timestamp inmutable ──────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action.value} on {self.resource_type.value} {self.resource_id}>"
