from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.admin.utils import list_response
from app.api.deps import get_identity
from app.core.database import get_session
from app.models.agent_profile import AgentProfile
from app.models.user import User
from app.schemas.admin.support_ticket import AgentProfileOut, AgentProfileUpdate, AgentPromote
from app.services.access import Identity
from app.services.agents import list_agents, promote_to_staff, update_agent_profile

router = APIRouter(prefix="/admin/support/agents", tags=["admin"])


def _profile_out(profile: AgentProfile, user: User | None) -> AgentProfileOut:
    out = AgentProfileOut.model_validate(profile)
    if user is not None:
        out.display_name = user.display_name or user.username
    return out


@router.get("", response_model=dict)
async def agents(
    department: str | None = None,
    available: bool | None = None,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> dict:
    rows = await list_agents(session, identity, department=department, available=available)
    items = [_profile_out(profile, user) for profile, user in rows]
    return list_response(items, len(items))


@router.post("", response_model=AgentProfileOut, status_code=status.HTTP_201_CREATED)
async def promote_agent(
    payload: AgentPromote,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> AgentProfileOut:
    profile = await promote_to_staff(
        session,
        identity,
        payload.user_id,
        role=payload.role,
        department=payload.department,
        specialties=payload.specialties,
        max_active_tickets=payload.max_active_tickets,
        notes=payload.notes,
    )
    await session.commit()
    return _profile_out(profile, await session.get(User, profile.user_id))


@router.patch("/{user_id}", response_model=AgentProfileOut)
async def update_agent(
    user_id: int,
    payload: AgentProfileUpdate,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> AgentProfileOut:
    profile = await update_agent_profile(
        session, identity, user_id, payload.model_dump(exclude_unset=True)
    )
    await session.commit()
    return _profile_out(profile, await session.get(User, profile.user_id))
