"""
Schemas para grupos.
"""

from uuid import UUID

from pydantic import BaseModel


class GroupResponse(BaseModel):
    id: UUID
    name: str
    member_ids: list[UUID] = []

    model_config = {"from_attributes": True}
