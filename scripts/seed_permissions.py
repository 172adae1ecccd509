"""
Seed de la matriz de permisos por defecto y del usuario administrador.

Uso:
    python scripts/seed_permissions.py <admin_email> <admin_password> [nombre]

Crea las filas de permission_settings que falten (una por rol y tipo de
permiso). Las existentes no se tocan: se administran desde la consola.
Si no existe el email indicado, crea el usuario con rol administrator.
"""

import asyncio
import sys
from pathlib import Path

from sqlalchemy import select

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.auth.rbac import DEFAULT_PERMISSION_MATRIX  # noqa: E402
from app.core.security import hash_password  # noqa: E402
from app.database import async_session_factory  # noqa: E402
from app.models.permission_setting import PermissionSetting  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402


async def seed_permissions(admin_email: str, admin_password: str, admin_name: str) -> None:
    async with async_session_factory() as db:
        result = await db.execute(
            select(PermissionSetting.role, PermissionSetting.permission_type)
        )
        existing = set(result.all())

        created = 0
        for role, permissions in DEFAULT_PERMISSION_MATRIX.items():
            for permission_type, (scope, enabled) in permissions.items():
                if (role, permission_type) in existing:
                    continue
                db.add(PermissionSetting(
                    role=role,
                    permission_type=permission_type,
                    scope=scope,
                    enabled=enabled,
                ))
                created += 1

        admin = await db.execute(select(User).where(User.email == admin_email))
        if admin.scalar_one_or_none() is None:
            db.add(User(
                email=admin_email,
                full_name=admin_name,
                role=UserRole.ADMINISTRATOR,
                hashed_password=hash_password(admin_password),
            ))
            print(f"Administrador creado: {admin_email}")

        await db.commit()
        print(f"Permisos creados: {created}, existentes: {len(existing)}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)
    name = sys.argv[3] if len(sys.argv) > 3 else "Amministratore"
    asyncio.run(seed_permissions(sys.argv[1], sys.argv[2], name))
