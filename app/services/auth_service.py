"""
Servicio de autenticación: login con email y contraseña, y refresh de tokens.
Cada intento de login, exitoso o no, queda en el activity log.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.jwt import TokenType, create_access_token, create_refresh_token, decode_token
from app.core.exceptions import CredentialsException
from app.core.security import verify_password
from app.models.user import User
from app.schemas.auth import LoginRequest, LoginResponse, TokenData, UserLoginData
from app.services.audit_service import ActivityLogger

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Email o contraseña incorrectos"


async def _reject_login(
    db: AsyncSession,
    user: User | None,
    reason: str,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    """Registra el intento fallido y lo confirma antes de responder 401."""
    activity = ActivityLogger(db, user, ip_address=ip_address, user_agent=user_agent)
    await activity.login_attempt(False, reason)
    await db.commit()
    raise CredentialsException(INVALID_CREDENTIALS)


async def login(
    db: AsyncSession,
    data: LoginRequest,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> LoginResponse:
    """Autentica un usuario activo con email y contraseña."""
    result = await db.execute(select(User).where(User.email == data.email))
    user = result.scalar_one_or_none()

    if user is None:
        logger.warning("Login fallido: usuario no encontrado para email=%s", data.email)
        await _reject_login(db, None, f"Usuario no encontrado: {data.email}", ip_address, user_agent)

    if not user.is_active:
        logger.warning("Login fallido: usuario inactivo user_id=%s", user.id)
        await _reject_login(db, user, "Usuario deshabilitado", ip_address, user_agent)

    if not verify_password(data.password, user.hashed_password):
        logger.warning(
            "Login fallido: contraseña incorrecta para user_id=%s email=%s",
            user.id, user.email,
        )
        await _reject_login(db, user, "Contraseña incorrecta", ip_address, user_agent)

    user.last_login = datetime.now(timezone.utc)
    await db.flush()

    activity = ActivityLogger(db, user, ip_address=ip_address, user_agent=user_agent)
    await activity.login_attempt(True)

    return LoginResponse(
        user=UserLoginData(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            role=user.role,
        ),
        tokens=TokenData(
            access_token=create_access_token(user.id, user.role.value),
            refresh_token=create_refresh_token(user.id),
        ),
    )


async def refresh_tokens(db: AsyncSession, refresh_token: str) -> TokenData:
    """
    Emite un nuevo par de tokens a partir de un refresh token válido.
    El rol del nuevo access token se toma de la DB, no del token anterior.
    """
    try:
        payload = decode_token(refresh_token)
        user_id = UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise CredentialsException("Refresh token inválido o expirado")

    if payload.get("type") != TokenType.REFRESH:
        raise CredentialsException("Token no es un refresh token")

    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active.is_(True))
    )
    user = result.scalar_one_or_none()
    if user is None:
        logger.warning("Refresh rechazado: usuario inexistente o inactivo user_id=%s", user_id)
        raise CredentialsException("Usuario no encontrado o inactivo")

    return TokenData(
        access_token=create_access_token(user.id, user.role.value),
        refresh_token=create_refresh_token(user.id),
    )
