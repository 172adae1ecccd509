"""
Fixtures compartidas para Pytest.
Configura claves JWT de test, base de datos SQLite y clientes HTTP.
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# ── Claves RSA de test (antes de importar la app) ────
_keys_dir = Path(tempfile.mkdtemp(prefix="studio-tasks-keys-"))
_private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
(_keys_dir / "private.pem").write_bytes(
    _private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
)
(_keys_dir / "public.pem").write_bytes(
    _private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
)
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{_keys_dir / 'test.db'}"

os.environ["JWT_PRIVATE_KEY_PATH"] = str(_keys_dir / "private.pem")
os.environ["JWT_PUBLIC_KEY_PATH"] = str(_keys_dir / "public.pem")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["DEBUG"] = "false"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.auth.jwt import create_access_token  # noqa: E402
from app.auth.rbac import DEFAULT_PERMISSION_MATRIX  # noqa: E402
from app.core.security import hash_password  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.group import Group, GroupMember  # noqa: E402
from app.models.permission_setting import PermissionSetting  # noqa: E402
from app.models.task import Task, TaskRecipient  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402

# ── Engine de test (SQLite async) ────────────────────
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


# pysqlite/aiosqlite no emiten BEGIN por su cuenta; sin esto los SAVEPOINT
# (begin_nested) no funcionan sobre SQLite.
@event.listens_for(test_engine.sync_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine.sync_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TEST_PASSWORD = "TestPass123"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.permission_cache.invalidate()
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test."""

    async def _get_test_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def permission_settings(db_session: AsyncSession) -> dict:
    """Siembra la matriz de permisos por defecto. Clave: (rol, permiso)."""
    rows = {}
    for role, permissions in DEFAULT_PERMISSION_MATRIX.items():
        for permission_type, (scope, enabled) in permissions.items():
            setting = PermissionSetting(
                role=role,
                permission_type=permission_type,
                scope=scope,
                enabled=enabled,
            )
            db_session.add(setting)
            rows[(role, permission_type)] = setting
    await db_session.commit()
    return rows


@pytest.fixture
def user_password() -> str:
    """Contraseña en claro de todos los usuarios creados con make_user."""
    return TEST_PASSWORD


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory de usuarios con rol y grupos opcionales."""
    counter = {"n": 0}

    async def _make_user(
        role: UserRole = UserRole.RECEPTIONIST,
        *,
        name: str | None = None,
        is_active: bool = True,
        groups: list[Group] = (),
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=f"{role.value}{n}@example.com",
            hashed_password=_PASSWORD_HASH,
            role=role,
            full_name=name or f"{role.value.title()} {n}",
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.flush()
        for group in groups:
            db_session.add(GroupMember(group_id=group.id, user_id=user.id))
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_group(db_session: AsyncSession):
    async def _make_group(name: str) -> Group:
        group = Group(name=name)
        db_session.add(group)
        await db_session.commit()
        return group

    return _make_group


@pytest.fixture
def make_task(db_session: AsyncSession):
    """Factory de tareas creadas directamente en la DB (sin pasar por la API)."""

    async def _make_task(
        owner: User,
        title: str = "Reponer guantes",
        *,
        visible_to_all: bool = True,
        user_ids: list = (),
        group_ids: list = (),
        **fields,
    ) -> Task:
        task = Task(
            title=title,
            created_by=owner.id,
            visible_to_all=visible_to_all,
            **fields,
        )
        db_session.add(task)
        await db_session.flush()
        for user_id in user_ids:
            db_session.add(TaskRecipient(task_id=task.id, user_id=user_id))
        for group_id in group_ids:
            db_session.add(TaskRecipient(task_id=task.id, group_id=group_id))
        await db_session.commit()
        return task

    return _make_task


@pytest.fixture
def auth_headers():
    """
    Header Authorization con un access token válido para el usuario.
    Calcularlo antes de las requests: un rollback expira los objetos ORM.
    """

    def _auth_headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def session_factory():
    """Sesiones independientes de db_session, para simular requests concurrentes."""
    return test_session_factory
