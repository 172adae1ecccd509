"""
Reglas RBAC por ámbito (scope).

Funciones puras: deciden si un actor alcanza a un recurso según el ámbito
configurado para su rol. No consultan la base de datos; el servicio de
permisos resuelve actor, dueño y grupos y delega aquí la decisión.
"""

from dataclasses import dataclass, field
from uuid import UUID

from app.models.permission_setting import PermissionScope, PermissionType
from app.models.user import UserRole

# ── Jerarquía de roles ───────────────────────────────
# Mayor número = más privilegios.
ROLE_RANK: dict[UserRole, int] = {
    UserRole.ADMINISTRATOR: 6,
    UserRole.CONSULTANTS: 5,
    UserRole.DOCTORS: 4,
    UserRole.HYGIENISTS: 3,
    UserRole.ASSISTANTS: 2,
    UserRole.RECEPTIONIST: 1,
}


@dataclass(frozen=True)
class Subject:
    """Usuario reducido a lo que necesitan las reglas de ámbito."""
    id: UUID
    role: UserRole
    group_ids: frozenset[UUID] = field(default_factory=frozenset)


def is_lower_role(role: UserRole, than: UserRole) -> bool:
    """True si `role` está estrictamente por debajo de `than`."""
    return ROLE_RANK[role] < ROLE_RANK[than]


def resolve_scope(
    scope: PermissionScope,
    actor: Subject,
    owner: Subject,
    resource_group_ids: frozenset[UUID] = frozenset(),
) -> bool:
    """
    Aplica la regla de ámbito sobre un recurso concreto.

    - own: el dueño del recurso es el actor
    - same_role: el dueño tiene el mismo rol que el actor
    - same_group: el actor comparte al menos un grupo con el recurso
      (`resource_group_ids` = grupos del dueño + grupos destinatarios)
    - lower_roles: el rol del dueño está estrictamente por debajo
    - all: siempre
    """
    if scope is PermissionScope.OWN:
        return owner.id == actor.id
    if scope is PermissionScope.SAME_ROLE:
        return owner.role == actor.role
    if scope is PermissionScope.SAME_GROUP:
        return not actor.group_ids.isdisjoint(resource_group_ids)
    if scope is PermissionScope.LOWER_ROLES:
        return is_lower_role(owner.role, actor.role)
    if scope is PermissionScope.ALL:
        return True
    return False


# ── Matriz por defecto (seed) ────────────────────────
# Formato: {rol: {permiso: (ámbito, habilitado)}}
DEFAULT_PERMISSION_MATRIX: dict[UserRole, dict[PermissionType, tuple[PermissionScope, bool]]] = {
    UserRole.ADMINISTRATOR: {
        PermissionType.EDIT_TASKS: (PermissionScope.ALL, True),
        PermissionType.DELETE_TASKS: (PermissionScope.ALL, True),
        PermissionType.VIEW_TASKS: (PermissionScope.ALL, True),
        PermissionType.ASSIGN_TASKS: (PermissionScope.ALL, True),
    },
    UserRole.CONSULTANTS: {
        PermissionType.EDIT_TASKS: (PermissionScope.ALL, True),
        PermissionType.DELETE_TASKS: (PermissionScope.SAME_ROLE, True),
        PermissionType.VIEW_TASKS: (PermissionScope.ALL, True),
        PermissionType.ASSIGN_TASKS: (PermissionScope.ALL, True),
    },
    UserRole.DOCTORS: {
        PermissionType.EDIT_TASKS: (PermissionScope.SAME_ROLE, True),
        PermissionType.DELETE_TASKS: (PermissionScope.OWN, True),
        PermissionType.VIEW_TASKS: (PermissionScope.ALL, True),
        PermissionType.ASSIGN_TASKS: (PermissionScope.ALL, True),
    },
    UserRole.HYGIENISTS: {
        PermissionType.EDIT_TASKS: (PermissionScope.SAME_ROLE, True),
        PermissionType.DELETE_TASKS: (PermissionScope.OWN, True),
        PermissionType.VIEW_TASKS: (PermissionScope.SAME_GROUP, True),
        PermissionType.ASSIGN_TASKS: (PermissionScope.SAME_ROLE, True),
    },
    UserRole.ASSISTANTS: {
        PermissionType.EDIT_TASKS: (PermissionScope.SAME_ROLE, True),
        PermissionType.DELETE_TASKS: (PermissionScope.OWN, True),
        PermissionType.VIEW_TASKS: (PermissionScope.SAME_GROUP, True),
        PermissionType.ASSIGN_TASKS: (PermissionScope.OWN, True),
    },
    UserRole.RECEPTIONIST: {
        PermissionType.EDIT_TASKS: (PermissionScope.OWN, True),
        PermissionType.DELETE_TASKS: (PermissionScope.OWN, True),
        PermissionType.VIEW_TASKS: (PermissionScope.SAME_GROUP, True),
        PermissionType.ASSIGN_TASKS: (PermissionScope.OWN, True),
    },
}
