"""
Modelo User: Miembros del equipo del estudio con un único rol.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, enum_type, utcnow


class UserRole(str, enum.Enum):
    """Roles del estudio, del más privilegiado al menos privilegiado."""
    ADMINISTRATOR = "administrator"
    CONSULTANTS = "consultants"
    DOCTORS = "doctors"
    HYGIENISTS = "hygienists"
    ASSISTANTS = "assistants"
    RECEPTIONIST = "receptionist"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # ── Datos de acceso ──────────────────────────────
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        enum_type(UserRole, "userrole"),
        nullable=False,
        default=UserRole.RECEPTIONIST,
    )

    # ── Perfil ───────────────────────────────────────
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # ── Estado ───────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(default=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"
