"""
Tests del evaluador de permisos, la caché y la administración de
permission_settings.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import InvalidPermissionType, NotFoundException
from app.models.activity_log import ActivityAction, ActivityLog, ActivityResourceType
from app.models.permission_setting import PermissionScope, PermissionType
from app.models.user import UserRole
from app.schemas.permission import PermissionSettingUpdate
from app.services import permission_service
from app.services.audit_service import ActivityLogger
from app.services.permission_service import (
    DecisionReason,
    PermissionCache,
    PermissionEvaluator,
)


class BrokenSession:
    """Sesión cuyo acceso a datos siempre falla."""

    async def get(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("conexión perdida"))

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("conexión perdida"))


@pytest.fixture
def evaluator(db_session):
    return PermissionEvaluator(db_session, PermissionCache(ttl=0))


# ── Sin configuración / deshabilitado ────────────────

async def test_no_setting_denies(evaluator, make_user, make_task):
    user = await make_user(UserRole.DOCTORS)
    task = await make_task(user)

    assert await evaluator.evaluate(user.id, PermissionType.EDIT_TASKS) is False
    decision = await evaluator.explain(user.id, PermissionType.EDIT_TASKS, task.id)
    assert not decision
    assert decision.reason is DecisionReason.NO_SETTING


async def test_disabled_denies_regardless_of_scope(
    db_session, evaluator, permission_settings, make_user, make_task
):
    admin = await make_user(UserRole.ADMINISTRATOR)
    task = await make_task(admin)
    setting = permission_settings[(UserRole.ADMINISTRATOR, PermissionType.EDIT_TASKS)]
    setting.enabled = False
    await db_session.commit()

    assert setting.scope is PermissionScope.ALL
    assert await evaluator.evaluate(admin.id, PermissionType.EDIT_TASKS) is False
    decision = await evaluator.explain(admin.id, PermissionType.EDIT_TASKS, task.id)
    assert decision.allowed is False
    assert decision.reason is DecisionReason.DISABLED


async def test_coarse_check_allows_enabled_setting(evaluator, permission_settings, make_user):
    user = await make_user(UserRole.RECEPTIONIST)
    decision = await evaluator.explain(user.id, "delete_tasks")
    assert decision.allowed
    assert decision.reason is DecisionReason.ALLOWED


# ── Ámbitos sobre una tarea ──────────────────────────

async def test_receptionist_can_delete_only_own_tasks(
    evaluator, permission_settings, make_user, make_task
):
    receptionist = await make_user(UserRole.RECEPTIONIST)
    colleague = await make_user(UserRole.RECEPTIONIST)
    own_task = await make_task(receptionist, "Confirmar citas")
    other_task = await make_task(colleague, "Archivar fichas")

    assert await evaluator.evaluate(receptionist.id, PermissionType.DELETE_TASKS, own_task.id)
    decision = await evaluator.explain(
        receptionist.id, PermissionType.DELETE_TASKS, other_task.id
    )
    assert decision.allowed is False
    assert decision.reason is DecisionReason.OUT_OF_SCOPE


async def test_administrator_can_edit_any_task(
    evaluator, permission_settings, make_user, make_task
):
    admin = await make_user(UserRole.ADMINISTRATOR)
    for role in UserRole:
        owner = await make_user(role)
        task = await make_task(owner)
        assert await evaluator.evaluate(admin.id, PermissionType.EDIT_TASKS, task.id)


async def test_same_role_scope(evaluator, permission_settings, make_user, make_task):
    doctor = await make_user(UserRole.DOCTORS)
    other_doctor = await make_user(UserRole.DOCTORS)
    hygienist = await make_user(UserRole.HYGIENISTS)

    doctors_task = await make_task(other_doctor)
    hygienist_task = await make_task(hygienist)

    assert await evaluator.evaluate(doctor.id, PermissionType.EDIT_TASKS, doctors_task.id)
    assert not await evaluator.evaluate(doctor.id, PermissionType.EDIT_TASKS, hygienist_task.id)


async def test_lower_roles_scope(
    db_session, evaluator, permission_settings, make_user, make_task
):
    setting = permission_settings[(UserRole.HYGIENISTS, PermissionType.EDIT_TASKS)]
    setting.scope = PermissionScope.LOWER_ROLES
    await db_session.commit()

    hygienist = await make_user(UserRole.HYGIENISTS)
    assistant_task = await make_task(await make_user(UserRole.ASSISTANTS))
    hygienist_task = await make_task(await make_user(UserRole.HYGIENISTS))
    doctor_task = await make_task(await make_user(UserRole.DOCTORS))

    assert await evaluator.evaluate(hygienist.id, PermissionType.EDIT_TASKS, assistant_task.id)
    assert not await evaluator.evaluate(hygienist.id, PermissionType.EDIT_TASKS, hygienist_task.id)
    assert not await evaluator.evaluate(hygienist.id, PermissionType.EDIT_TASKS, doctor_task.id)


async def test_same_group_scope_uses_owner_and_recipient_groups(
    evaluator, permission_settings, make_group, make_user, make_task
):
    reception = await make_group("Recepción")
    surgery = await make_group("Quirófano")
    sterilization = await make_group("Esterilización")

    assistant = await make_user(UserRole.ASSISTANTS, groups=[reception])
    same_group_owner = await make_user(UserRole.DOCTORS, groups=[reception])
    other_owner = await make_user(UserRole.DOCTORS, groups=[surgery])

    by_owner_group = await make_task(same_group_owner, visible_to_all=False, group_ids=[surgery.id])
    by_recipient_group = await make_task(other_owner, visible_to_all=False, group_ids=[reception.id])
    unrelated = await make_task(other_owner, visible_to_all=False, group_ids=[sterilization.id])

    assert await evaluator.evaluate(assistant.id, PermissionType.VIEW_TASKS, by_owner_group.id)
    assert await evaluator.evaluate(assistant.id, PermissionType.VIEW_TASKS, by_recipient_group.id)
    assert not await evaluator.evaluate(assistant.id, PermissionType.VIEW_TASKS, unrelated.id)


# ── Recursos y actores desconocidos ──────────────────

async def test_unknown_task_denies_without_raising(evaluator, permission_settings, make_user):
    admin = await make_user(UserRole.ADMINISTRATOR)
    decision = await evaluator.explain(admin.id, PermissionType.EDIT_TASKS, uuid4())
    assert decision.allowed is False
    assert decision.reason is DecisionReason.UNKNOWN_RESOURCE


async def test_unknown_or_inactive_actor_denies(evaluator, permission_settings, make_user):
    inactive = await make_user(UserRole.ADMINISTRATOR, is_active=False)

    for actor_id in (uuid4(), inactive.id):
        decision = await evaluator.explain(actor_id, PermissionType.VIEW_TASKS)
        assert decision.allowed is False
        assert decision.reason is DecisionReason.UNKNOWN_ACTOR


# ── Errores ──────────────────────────────────────────

async def test_invalid_permission_type_raises_before_store_access():
    evaluator = PermissionEvaluator(BrokenSession(), PermissionCache(ttl=0))
    with pytest.raises(InvalidPermissionType):
        await evaluator.evaluate(uuid4(), "approve_tasks")


async def test_store_failure_fails_closed(caplog):
    evaluator = PermissionEvaluator(BrokenSession(), PermissionCache(ttl=0))

    decision = await evaluator.explain(uuid4(), PermissionType.VIEW_TASKS, uuid4())

    assert decision.allowed is False
    assert decision.reason is DecisionReason.ERROR
    assert any(r.levelname == "WARNING" for r in caplog.records)


# ── check_task_actions ───────────────────────────────

async def test_check_task_actions_status_follows_edit(
    evaluator, permission_settings, make_user, make_task
):
    receptionist = await make_user(UserRole.RECEPTIONIST)
    own_task = await make_task(receptionist)
    other_task = await make_task(await make_user(UserRole.DOCTORS))

    assert await evaluator.check_task_actions(receptionist.id, own_task.id) == {
        "can_edit": True,
        "can_delete": True,
        "can_change_status": True,
    }
    assert await evaluator.check_task_actions(receptionist.id, other_task.id) == {
        "can_edit": False,
        "can_delete": False,
        "can_change_status": False,
    }


# ── Caché ────────────────────────────────────────────

async def test_cache_serves_until_invalidated(db_session, permission_settings, make_user):
    cache = PermissionCache(ttl=60)
    evaluator = PermissionEvaluator(db_session, cache)
    user = await make_user(UserRole.RECEPTIONIST)

    assert await evaluator.evaluate(user.id, PermissionType.EDIT_TASKS)
    assert len(cache) == 1

    setting = permission_settings[(UserRole.RECEPTIONIST, PermissionType.EDIT_TASKS)]
    setting.enabled = False
    await db_session.commit()
    assert await evaluator.evaluate(user.id, PermissionType.EDIT_TASKS)

    cache.invalidate(UserRole.RECEPTIONIST)
    assert len(cache) == 0
    assert not await evaluator.evaluate(user.id, PermissionType.EDIT_TASKS)


async def test_cache_also_remembers_missing_settings(db_session, make_user):
    cache = PermissionCache(ttl=60)
    evaluator = PermissionEvaluator(db_session, cache)
    user = await make_user(UserRole.DOCTORS)

    assert not await evaluator.evaluate(user.id, PermissionType.VIEW_TASKS)
    assert cache.get(UserRole.DOCTORS, PermissionType.VIEW_TASKS) is None


def test_cache_disabled_with_zero_ttl():
    cache = PermissionCache(ttl=0)
    cache.set(UserRole.DOCTORS, PermissionType.VIEW_TASKS, None)
    assert len(cache) == 0
    assert cache.get(UserRole.DOCTORS, PermissionType.VIEW_TASKS) is PermissionCache.MISSING


def test_cache_invalidate_by_role_keeps_other_roles():
    cache = PermissionCache(ttl=60)
    cache.set(UserRole.DOCTORS, PermissionType.VIEW_TASKS, None)
    cache.set(UserRole.ASSISTANTS, PermissionType.VIEW_TASKS, None)

    cache.invalidate(UserRole.DOCTORS)

    assert cache.get(UserRole.DOCTORS, PermissionType.VIEW_TASKS) is PermissionCache.MISSING
    assert cache.get(UserRole.ASSISTANTS, PermissionType.VIEW_TASKS) is None


def test_cache_ignores_values_read_before_invalidation():
    cache = PermissionCache(ttl=60)
    generation = cache.generation
    cache.invalidate(UserRole.DOCTORS)

    cache.set(UserRole.DOCTORS, PermissionType.VIEW_TASKS, None, generation=generation)
    assert cache.get(UserRole.DOCTORS, PermissionType.VIEW_TASKS) is PermissionCache.MISSING

    cache.set(UserRole.DOCTORS, PermissionType.VIEW_TASKS, None, generation=cache.generation)
    assert cache.get(UserRole.DOCTORS, PermissionType.VIEW_TASKS) is None


# ── Consultas de configuración ───────────────────────

async def test_get_user_permissions_and_has_permission(
    db_session, permission_settings, make_user
):
    user = await make_user(UserRole.HYGIENISTS)
    settings = await permission_service.get_user_permissions(db_session, user)

    assert len(settings) == len(PermissionType)
    assert {s.role for s in settings} == {UserRole.HYGIENISTS}
    assert permission_service.has_permission(settings, PermissionType.ASSIGN_TASKS)
    assert not permission_service.has_permission([], PermissionType.ASSIGN_TASKS)
    with pytest.raises(InvalidPermissionType):
        permission_service.has_permission(settings, "approve_tasks")


async def test_get_user_permissions_empty_on_error(make_user):
    user = await make_user(UserRole.HYGIENISTS)
    assert await permission_service.get_user_permissions(BrokenSession(), user) == []


# ── Administración ───────────────────────────────────

async def test_update_setting_invalidates_cache_and_logs(
    db_session, permission_settings, make_user
):
    admin = await make_user(UserRole.ADMINISTRATOR)
    cache = PermissionCache(ttl=60)
    evaluator = PermissionEvaluator(db_session, cache)
    receptionist = await make_user(UserRole.RECEPTIONIST)
    assert await evaluator.evaluate(receptionist.id, PermissionType.EDIT_TASKS)

    setting = permission_settings[(UserRole.RECEPTIONIST, PermissionType.EDIT_TASKS)]
    updated = await permission_service.update_setting(
        db_session,
        admin,
        setting.id,
        PermissionSettingUpdate(enabled=False),
        cache,
        ActivityLogger(db_session, admin),
    )

    assert updated.enabled is False
    assert updated.updated_by == admin.id
    assert not await evaluator.evaluate(receptionist.id, PermissionType.EDIT_TASKS)

    result = await db_session.execute(select(ActivityLog))
    entry = result.scalar_one()
    assert entry.action is ActivityAction.UPDATE
    assert entry.resource_type is ActivityResourceType.PERMISSION_SETTING
    assert entry.resource_title == "Configuración de permisos"
    assert entry.old_data["enabled"] is True
    assert entry.new_data["enabled"] is False


async def test_update_setting_not_found(db_session, make_user):
    admin = await make_user(UserRole.ADMINISTRATOR)
    with pytest.raises(NotFoundException):
        await permission_service.update_setting(
            db_session,
            admin,
            uuid4(),
            PermissionSettingUpdate(scope=PermissionScope.ALL),
            PermissionCache(ttl=60),
            ActivityLogger(db_session, admin),
        )


class _LoadedRow:
    def __init__(self, row):
        self._row = row

    def scalar_one_or_none(self):
        return self._row


class InterleavedSession:
    """
    Sesión de lectura: tras la primera consulta ejecuta `between`
    (otra request) antes de devolver el resultado al evaluador.
    """

    def __init__(self, session, between):
        self._session = session
        self._between = between
        self._done = False

    def __getattr__(self, name):
        return getattr(self._session, name)

    async def execute(self, statement, *args, **kwargs):
        result = await self._session.execute(statement, *args, **kwargs)
        if self._done:
            return result
        self._done = True
        row = result.scalar_one_or_none()
        # Libera el lock de lectura de SQLite antes de que escriba la otra sesión
        await self._session.commit()
        await self._between()
        return _LoadedRow(row)


async def test_update_setting_is_visible_to_other_sessions(
    session_factory, permission_settings, make_user
):
    admin = await make_user(UserRole.ADMINISTRATOR)
    receptionist = await make_user(UserRole.RECEPTIONIST)
    setting_id = permission_settings[(UserRole.RECEPTIONIST, PermissionType.EDIT_TASKS)].id
    cache = PermissionCache(ttl=60)

    async with session_factory() as session:
        assert await PermissionEvaluator(session, cache).evaluate(
            receptionist.id, PermissionType.EDIT_TASKS
        )

    async with session_factory() as admin_session:
        await permission_service.update_setting(
            admin_session,
            admin,
            setting_id,
            PermissionSettingUpdate(enabled=False),
            cache,
            ActivityLogger(admin_session, admin),
        )

    async with session_factory() as session:
        assert not await PermissionEvaluator(session, cache).evaluate(
            receptionist.id, PermissionType.EDIT_TASKS
        )


async def test_read_racing_an_update_does_not_recache_old_row(
    session_factory, permission_settings, make_user
):
    admin = await make_user(UserRole.ADMINISTRATOR)
    receptionist = await make_user(UserRole.RECEPTIONIST)
    setting_id = permission_settings[(UserRole.RECEPTIONIST, PermissionType.EDIT_TASKS)].id
    cache = PermissionCache(ttl=60)

    async def disable_receptionist_edit():
        async with session_factory() as admin_session:
            await permission_service.update_setting(
                admin_session,
                admin,
                setting_id,
                PermissionSettingUpdate(enabled=False),
                cache,
                ActivityLogger(admin_session, admin),
            )

    async with session_factory() as session:
        racing = PermissionEvaluator(InterleavedSession(session, disable_receptionist_edit), cache)
        # Leyó la fila antes del cambio: decide con el valor viejo pero no lo guarda
        assert await racing.evaluate(receptionist.id, PermissionType.EDIT_TASKS)

    assert cache.get(UserRole.RECEPTIONIST, PermissionType.EDIT_TASKS) is PermissionCache.MISSING
    async with session_factory() as session:
        assert not await PermissionEvaluator(session, cache).evaluate(
            receptionist.id, PermissionType.EDIT_TASKS
        )
