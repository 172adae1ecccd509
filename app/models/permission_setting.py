"""
Modelo PermissionSetting: configuración (rol, tipo de permiso) → ámbito.

A lo sumo una fila por (role, permission_type). Se crean en el seed y solo
se modifican desde la consola de administración; nunca se eliminan, se
deshabilitan con `enabled=False`.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, enum_type, utcnow
from app.models.user import UserRole


class PermissionType(str, enum.Enum):
    EDIT_TASKS = "edit_tasks"
    DELETE_TASKS = "delete_tasks"
    VIEW_TASKS = "view_tasks"
    ASSIGN_TASKS = "assign_tasks"


class PermissionScope(str, enum.Enum):
    """Amplitud de recursos sobre los que aplica un permiso."""
    OWN = "own"
    SAME_ROLE = "same_role"
    SAME_GROUP = "same_group"
    LOWER_ROLES = "lower_roles"
    ALL = "all"


class PermissionSetting(Base):
    __tablename__ = "permission_settings"
    __table_args__ = (
        UniqueConstraint("role", "permission_type", name="uq_permission_role_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    role: Mapped[UserRole] = mapped_column(
        enum_type(UserRole, "userrole"), nullable=False
    )
    permission_type: Mapped[PermissionType] = mapped_column(
        enum_type(PermissionType, "permissiontype"), nullable=False
    )
    scope: Mapped[PermissionScope] = mapped_column(
        enum_type(PermissionScope, "permissionscope"),
        nullable=False,
        default=PermissionScope.OWN,
    )
    enabled: Mapped[bool] = mapped_column(default=True)

    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    def snapshot(self) -> dict:
        return {
            "role": self.role,
            "permission_type": self.permission_type,
            "scope": self.scope,
            "enabled": self.enabled,
        }

    def __repr__(self) -> str:
        state = "on" if self.enabled else "off"
        return f"<PermissionSetting {self.role.value}/{self.permission_type.value} {self.scope.value} {state}>"
