"""
Schemas para User.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.models.user import UserRole


class UserUpdate(BaseModel):
    full_name: str | None = Field(None, min_length=2, max_length=200)
    role: UserRole | None = None


class ActiveToggle(BaseModel):
    is_active: bool


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: str
    role: UserRole
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int
    page: int
    size: int
    pages: int


class UserMe(BaseModel):
    """Respuesta para el endpoint /me."""
    id: UUID
    email: str
    full_name: str
    role: UserRole

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=2, max_length=200)
    role: UserRole = UserRole.RECEPTIONIST
    password: str = Field(..., min_length=8, max_length=128)


class UserDirectoryItem(BaseModel):
    """Ficha pública de un compañero: visible para cualquier usuario autenticado."""
    id: UUID
    full_name: str
    role: UserRole

    model_config = {"from_attributes": True}
