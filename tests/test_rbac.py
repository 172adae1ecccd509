"""
Reglas de ámbito puras (sin base de datos).
"""

from uuid import uuid4

import pytest

from app.auth.rbac import (
    DEFAULT_PERMISSION_MATRIX,
    ROLE_RANK,
    Subject,
    is_lower_role,
    resolve_scope,
)
from app.models.permission_setting import PermissionScope, PermissionType
from app.models.user import UserRole

ROLES_BY_PRIVILEGE = [
    UserRole.ADMINISTRATOR,
    UserRole.CONSULTANTS,
    UserRole.DOCTORS,
    UserRole.HYGIENISTS,
    UserRole.ASSISTANTS,
    UserRole.RECEPTIONIST,
]


def subject(role: UserRole, *group_ids) -> Subject:
    return Subject(id=uuid4(), role=role, group_ids=frozenset(group_ids))


def test_role_rank_follows_privilege_order():
    ranks = [ROLE_RANK[role] for role in ROLES_BY_PRIVILEGE]
    assert ranks == sorted(ranks, reverse=True)
    assert len(set(ranks)) == len(ranks)


def test_is_lower_role_is_strict():
    assert is_lower_role(UserRole.RECEPTIONIST, UserRole.ADMINISTRATOR)
    assert is_lower_role(UserRole.HYGIENISTS, UserRole.DOCTORS)
    assert not is_lower_role(UserRole.DOCTORS, UserRole.DOCTORS)
    assert not is_lower_role(UserRole.CONSULTANTS, UserRole.ASSISTANTS)


# ── own ──────────────────────────────────────────────

def test_own_only_matches_the_owner():
    actor = subject(UserRole.RECEPTIONIST)
    other = subject(UserRole.RECEPTIONIST)
    assert resolve_scope(PermissionScope.OWN, actor, actor)
    assert not resolve_scope(PermissionScope.OWN, actor, other)


# ── same_role ────────────────────────────────────────

def test_same_role_compares_roles():
    actor = subject(UserRole.HYGIENISTS)
    assert resolve_scope(PermissionScope.SAME_ROLE, actor, subject(UserRole.HYGIENISTS))
    assert not resolve_scope(PermissionScope.SAME_ROLE, actor, subject(UserRole.DOCTORS))


# ── same_group ───────────────────────────────────────

def test_same_group_requires_shared_group():
    reception, surgery = uuid4(), uuid4()
    actor = subject(UserRole.ASSISTANTS, reception)
    owner = subject(UserRole.DOCTORS, surgery)

    assert not resolve_scope(PermissionScope.SAME_GROUP, actor, owner, owner.group_ids)
    assert resolve_scope(
        PermissionScope.SAME_GROUP, actor, owner, owner.group_ids | {reception}
    )


def test_same_group_without_groups_denies():
    actor = subject(UserRole.ASSISTANTS)
    owner = subject(UserRole.ASSISTANTS)
    assert not resolve_scope(PermissionScope.SAME_GROUP, actor, owner, frozenset())


# ── lower_roles ──────────────────────────────────────

@pytest.mark.parametrize("actor_role", ROLES_BY_PRIVILEGE)
@pytest.mark.parametrize("owner_role", ROLES_BY_PRIVILEGE)
def test_lower_roles_iff_owner_ranks_strictly_below(actor_role, owner_role):
    expected = ROLE_RANK[owner_role] < ROLE_RANK[actor_role]
    assert resolve_scope(
        PermissionScope.LOWER_ROLES, subject(actor_role), subject(owner_role)
    ) is expected


# ── all ──────────────────────────────────────────────

@pytest.mark.parametrize("owner_role", ROLES_BY_PRIVILEGE)
def test_all_matches_every_owner(owner_role):
    assert resolve_scope(
        PermissionScope.ALL, subject(UserRole.RECEPTIONIST), subject(owner_role)
    )


def test_default_matrix_covers_every_role_and_permission():
    assert set(DEFAULT_PERMISSION_MATRIX) == set(UserRole)
    for permissions in DEFAULT_PERMISSION_MATRIX.values():
        assert set(permissions) == set(PermissionType)
    admin = DEFAULT_PERMISSION_MATRIX[UserRole.ADMINISTRATOR]
    assert all(scope is PermissionScope.ALL and enabled for scope, enabled in admin.values())
