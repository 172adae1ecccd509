"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from app.api.v1.activity_logs import router as activity_logs_router
from app.api.v1.auth import router as auth_router
from app.api.v1.groups import router as groups_router
from app.api.v1.permissions import router as permissions_router
from app.api.v1.tasks import router as tasks_router
from app.api.v1.users import router as users_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    auth_router,
    prefix="/auth",
    tags=["Autenticación"],
)

api_v1_router.include_router(
    tasks_router,
    prefix="/tasks",
    tags=["Tareas"],
)

api_v1_router.include_router(
    permissions_router,
    prefix="/permissions",
    tags=["Permisos"],
)

api_v1_router.include_router(
    users_router,
    prefix="/users",
    tags=["Usuarios"],
)

api_v1_router.include_router(
    groups_router,
    prefix="/groups",
    tags=["Grupos"],
)

api_v1_router.include_router(
    activity_logs_router,
    prefix="/activity-logs",
    tags=["Activity Log"],
)
