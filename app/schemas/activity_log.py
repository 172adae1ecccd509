"""
Schemas del activity log.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from app.models.activity_log import ActivityAction, ActivityResourceType


class ActivityLogItem(BaseModel):
    """Un registro individual del activity log."""
    id: UUID
    user_id: UUID | None = None
    user_name: str | None = None
    user_role: str | None = None
    action: ActivityAction
    resource_type: ActivityResourceType
    resource_id: str | None = None
    resource_title: str | None = None
    old_data: dict | None = None
    new_data: dict | None = None
    success: bool
    error_message: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ActivityLogResponse(BaseModel):
    """Respuesta paginada del activity log."""
    items: list[ActivityLogItem]
    total: int
    page: int
    size: int
    pages: int
