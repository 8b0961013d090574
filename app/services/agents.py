from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.agent_profile import AgentProfile, Department
from app.models.user import StaffRole, User
from app.services.access import Identity, require_admin, require_staff
from app.services.audit import record_audit, snapshot
from app.services.errors import Forbidden, NotFound, ValidationError
from app.services.support_tickets import parse_enum

logger = structlog.get_logger(__name__)

PROFILE_FIELDS = (
    "department",
    "specialties",
    "max_active_tickets",
    "is_available",
    "notes",
)
SELF_SERVICE_FIELDS = {"is_available"}
MAX_ACTIVE_TICKETS_RANGE = (1, 100)


def _check_capacity(value: Any) -> int:
    low, high = MAX_ACTIVE_TICKETS_RANGE
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(f"max_active_tickets must be between {low} and {high}")
    return value


def _clean_specialties(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple, set)) or not all(isinstance(v, str) for v in value):
        raise ValidationError("specialties must be a list of tags")
    return sorted({tag.strip().lower() for tag in value if tag.strip()})


async def get_agent_profile(session: AsyncSession, user_id: int) -> AgentProfile:
    result = await session.execute(
        select(AgentProfile).where(AgentProfile.user_id == user_id)
    )
    profile = result.scalars().first()
    if profile is None:
        raise NotFound(f"No agent profile for user {user_id}")
    return profile


async def promote_user(
    session: AsyncSession,
    user_id: int,
    *,
    role: StaffRole | str = StaffRole.agent,
    department: Department | str = Department.general,
    specialties: list[str] | None = None,
    max_active_tickets: int | None = None,
    notes: str | None = None,
) -> AgentProfile:
    """Make ``user_id`` support staff and give them an agent profile.

    Promoting someone who already has a profile updates role and profile in
    place.
    """
    parsed_role = parse_enum(StaffRole, role, "staff role")
    parsed_department = parse_enum(Department, department, "department")
    capacity = _check_capacity(
        max_active_tickets if max_active_tickets is not None
        else settings.DEFAULT_MAX_ACTIVE_TICKETS
    )
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")

    user.staff_role = parsed_role
    result = await session.execute(
        select(AgentProfile).where(AgentProfile.user_id == user_id)
    )
    profile = result.scalars().first()
    if profile is None:
        profile = AgentProfile(user_id=user_id)
        session.add(profile)
    profile.department = parsed_department
    # Re-promoting keeps the specialties and capacity already on file unless given.
    if specialties is not None or profile.specialties is None:
        profile.specialties = _clean_specialties(specialties or [])
    if max_active_tickets is not None or profile.max_active_tickets is None:
        profile.max_active_tickets = capacity
    if profile.is_available is None:
        profile.is_available = True
    if notes is not None:
        profile.notes = notes
    await session.flush()
    logger.info(
        "agent_promoted",
        user_id=user_id,
        role=parsed_role.value,
        department=parsed_department.value,
    )
    return profile


async def promote_to_staff(
    session: AsyncSession,
    identity: Identity | None,
    user_id: int,
    **options: Any,
) -> AgentProfile:
    identity = require_admin(identity)
    profile = await promote_user(session, user_id, **options)
    await record_audit(
        session,
        identity.user_id,
        entity="agent_profile",
        action="promote",
        before=None,
        after=snapshot(profile, PROFILE_FIELDS),
        entity_id=profile.id,
    )
    return profile


async def update_agent_profile(
    session: AsyncSession,
    identity: Identity | None,
    user_id: int,
    changes: dict[str, Any],
) -> AgentProfile:
    """Edit an agent profile.

    Admins may change any profile field; agents may only toggle their own
    availability.
    """
    identity = require_staff(identity)
    unknown = set(changes) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
    if not identity.is_admin:
        if user_id != identity.user_id or set(changes) - SELF_SERVICE_FIELDS:
            raise Forbidden("Agents may only change their own availability")

    profile = await get_agent_profile(session, user_id)
    before = snapshot(profile, PROFILE_FIELDS)
    for key, value in changes.items():
        if key == "department":
            value = parse_enum(Department, value, "department")
        elif key == "specialties":
            value = _clean_specialties(value)
        elif key == "max_active_tickets":
            value = _check_capacity(value)
        elif key == "is_available":
            if not isinstance(value, bool):
                raise ValidationError("is_available must be true or false")
        setattr(profile, key, value)
    await session.flush()
    await record_audit(
        session,
        identity.user_id,
        entity="agent_profile",
        action="update",
        before=before,
        after=snapshot(profile, PROFILE_FIELDS),
        entity_id=profile.id,
    )
    return profile


async def list_agents(
    session: AsyncSession,
    identity: Identity | None,
    *,
    department: Department | str | None = None,
    available: bool | None = None,
) -> list[tuple[AgentProfile, User]]:
    require_staff(identity)
    query = select(AgentProfile, User).join(User, User.id == AgentProfile.user_id)
    parsed_department = parse_enum(Department, department, "department")
    if parsed_department is not None:
        query = query.where(AgentProfile.department == parsed_department)
    if available is not None:
        query = query.where(AgentProfile.is_available.is_(available))
    result = await session.execute(query.order_by(AgentProfile.id))
    return [(profile, user) for profile, user in result.all()]
