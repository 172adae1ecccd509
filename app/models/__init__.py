"""
Modelos SQLAlchemy: exportar todos para que Alembic los detecte.
"""

from app.models.user import User, UserRole
from app.models.group import Group, GroupMember
from app.models.task import Task, TaskComment, TaskRead, TaskRecipient, TaskStatus
from app.models.permission_setting import (
    PermissionScope,
    PermissionSetting,
    PermissionType,
)
from app.models.activity_log import (
    ActivityAction,
    ActivityLog,
    ActivityResourceType,
)

__all__ = [
    "User",
    "UserRole",
    "Group",
    "GroupMember",
    "Task",
    "TaskComment",
    "TaskRead",
    "TaskRecipient",
    "TaskStatus",
    "PermissionScope",
    "PermissionSetting",
    "PermissionType",
    "ActivityAction",
    "ActivityLog",
    "ActivityResourceType",
]
