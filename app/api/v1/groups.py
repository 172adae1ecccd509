"""
Endpoints de grupos de trabajo y sus miembros.
"""

from collections import defaultdict
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.core.exceptions import NotFoundException
from app.database import get_db
from app.models.group import Group, GroupMember
from app.models.user import User
from app.schemas.group import GroupResponse
from app.schemas.user import UserDirectoryItem

router = APIRouter()


@router.get("", response_model=list[GroupResponse])
async def list_groups(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Grupos disponibles como destinatarios de tareas, con sus miembros."""
    result = await db.execute(select(Group).order_by(Group.name))
    groups = result.scalars().all()

    members = await db.execute(select(GroupMember.group_id, GroupMember.user_id))
    by_group: dict[UUID, list[UUID]] = defaultdict(list)
    for group_id, member_id in members.all():
        by_group[group_id].append(member_id)

    return [
        GroupResponse(id=g.id, name=g.name, member_ids=by_group.get(g.id, []))
        for g in groups
    ]


@router.get("/{group_id}/members", response_model=list[UserDirectoryItem])
async def list_group_members(
    group_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Miembros activos de un grupo, ordenados por nombre."""
    if await db.get(Group, group_id) is None:
        raise NotFoundException("Grupo")

    result = await db.execute(
        select(User)
        .join(GroupMember, GroupMember.user_id == User.id)
        .where(GroupMember.group_id == group_id, User.is_active.is_(True))
        .order_by(User.full_name.asc())
    )
    return result.scalars().all()
