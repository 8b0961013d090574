from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.agent_profile import AgentProfile, Department
from app.models.support_ticket import SupportTicket, TicketCategory
from app.models.ticket_assignment import AssignmentType, TicketAssignment
from app.services.access import Identity, require_staff
from app.services.app_log_store import EVENT_TICKET_ASSIGNED, log_event
from app.services.errors import AgentNotEligible, InvalidState
from app.services.ticket_store import get_ticket
from app.utils.time import parse_timestamp, utc_now

logger = structlog.get_logger(__name__)

CATEGORY_DEPARTMENTS: dict[TicketCategory, Department] = {
    TicketCategory.account: Department.general,
    TicketCategory.technical: Department.technical,
    TicketCategory.payment: Department.billing,
    TicketCategory.trust_safety: Department.trust_safety,
    TicketCategory.content: Department.content,
    TicketCategory.feature_request: Department.general,
    TicketCategory.bug_report: Department.general,
    TicketCategory.other: Department.general,
}

AUTO_ASSIGN_REASON = "Automatic assignment based on availability and department"

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def department_for(category: TicketCategory | str) -> Department:
    return CATEGORY_DEPARTMENTS[TicketCategory(category)]


async def get_active_assignment(
    session: AsyncSession, ticket_id: int
) -> TicketAssignment | None:
    result = await session.execute(
        select(TicketAssignment)
        .where(TicketAssignment.ticket_id == ticket_id)
        .where(TicketAssignment.is_active.is_(True))
    )
    return result.scalars().first()


async def assignment_history(
    session: AsyncSession, ticket_id: int
) -> list[TicketAssignment]:
    result = await session.execute(
        select(TicketAssignment)
        .where(TicketAssignment.ticket_id == ticket_id)
        .order_by(TicketAssignment.id.asc())
    )
    return list(result.scalars().all())


async def active_assignment_counts(
    session: AsyncSession, user_ids: list[int]
) -> dict[int, int]:
    if not user_ids:
        return {}
    result = await session.execute(
        select(TicketAssignment.assigned_to_id, func.count(TicketAssignment.id))
        .where(TicketAssignment.assigned_to_id.in_(user_ids))
        .where(TicketAssignment.is_active.is_(True))
        .group_by(TicketAssignment.assigned_to_id)
    )
    return {user_id: count for user_id, count in result.all()}


def pick_agent(
    profiles: list[AgentProfile], active_counts: dict[int, int]
) -> AgentProfile | None:
    """Least-loaded agent with spare capacity; oldest ``last_assigned_at`` breaks ties."""
    candidates = [
        profile
        for profile in profiles
        if active_counts.get(profile.user_id, 0) < profile.max_active_tickets
    ]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda profile: (
            active_counts.get(profile.user_id, 0),
            parse_timestamp(profile.last_assigned_at) or _NEVER,
            profile.id,
        ),
    )


async def _activate(
    session: AsyncSession,
    ticket: SupportTicket,
    *,
    assignee_id: int,
    assigner_id: int,
    assignment_type: AssignmentType,
    reason: str | None,
    previous_assignee_id: int | None,
    current: TicketAssignment | None,
    now: datetime,
) -> TicketAssignment:
    if current is not None:
        current.is_active = False
        current.completed_at = now
        # The partial unique index only admits the new row once this is written.
        await session.flush()

    assignment = TicketAssignment(
        ticket_id=ticket.id,
        assigned_to_id=assignee_id,
        assigned_by_id=assigner_id,
        assignment_type=assignment_type,
        previous_assignee_id=previous_assignee_id,
        reason=reason,
        is_active=True,
    )
    session.add(assignment)
    await session.flush()
    await log_event(
        session,
        level="info",
        event_type=EVENT_TICKET_ASSIGNED,
        message=f"{ticket.ticket_number} assigned ({assignment_type.value})",
        data={
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "assignment_id": assignment.id,
            "assigned_to_id": assignee_id,
            "assigned_by_id": assigner_id,
            "assignment_type": assignment_type.value,
            "previous_assignee_id": previous_assignee_id,
        },
    )
    return assignment


async def auto_assign(
    session: AsyncSession,
    ticket: SupportTicket,
    *,
    now: datetime | None = None,
) -> TicketAssignment | None:
    """Route ``ticket`` to the least-loaded available agent of its department.

    Returns ``None`` when nobody in the department has spare capacity; the
    ticket then stays unassigned until someone assigns it by hand.

    The department's roster rows are locked before the load is counted, so
    two tickets created at the same time cannot both take an agent's last
    free slot.
    """
    now = now or utc_now()
    department = department_for(ticket.category)
    result = await session.execute(
        select(AgentProfile)
        .where(AgentProfile.department == department)
        .where(AgentProfile.is_available.is_(True))
        .order_by(AgentProfile.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    profiles = list(result.scalars().all())
    counts = await active_assignment_counts(session, [p.user_id for p in profiles])
    chosen = pick_agent(profiles, counts)
    if chosen is None:
        logger.info(
            "ticket_left_unassigned",
            ticket_number=ticket.ticket_number,
            department=department.value,
            roster_size=len(profiles),
        )
        return None

    current = await get_active_assignment(session, ticket.id)
    chosen.last_assigned_at = now
    assignment = await _activate(
        session,
        ticket,
        assignee_id=chosen.user_id,
        assigner_id=chosen.user_id,
        assignment_type=AssignmentType.auto,
        reason=AUTO_ASSIGN_REASON,
        previous_assignee_id=current.assigned_to_id if current else None,
        current=current,
        now=now,
    )
    logger.info(
        "ticket_auto_assigned",
        ticket_number=ticket.ticket_number,
        department=department.value,
        assigned_to_id=chosen.user_id,
        active_before=counts.get(chosen.user_id, 0),
    )
    return assignment


async def _reassign(
    session: AsyncSession,
    ticket_id: int,
    target_user_id: int,
    identity: Identity | None,
    reason: str | None,
    assignment_type: AssignmentType,
) -> TicketAssignment:
    identity = require_staff(identity)
    # Profile row before ticket row, the order status changes use as well.
    result = await session.execute(
        select(AgentProfile)
        .where(AgentProfile.user_id == target_user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    profile = result.scalars().first()
    if profile is None:
        raise AgentNotEligible(f"User {target_user_id} is not a support team member")
    ticket = await get_ticket(session, ticket_id, for_update=True)

    current = await get_active_assignment(session, ticket.id)
    if assignment_type == AssignmentType.transfer:
        if current is None:
            raise InvalidState("Ticket has no active assignment to transfer")
        if current.assigned_to_id == target_user_id:
            raise InvalidState("Ticket is already assigned to this agent")

    now = utc_now()
    profile.last_assigned_at = now
    return await _activate(
        session,
        ticket,
        assignee_id=target_user_id,
        assigner_id=identity.user_id,
        assignment_type=assignment_type,
        reason=reason,
        previous_assignee_id=current.assigned_to_id if current else None,
        current=current,
        now=now,
    )


async def manual_assign(
    session: AsyncSession,
    ticket_id: int,
    target_user_id: int,
    identity: Identity | None,
    reason: str | None = None,
) -> TicketAssignment:
    # Capacity is not checked: a person made this call.
    return await _reassign(
        session, ticket_id, target_user_id, identity, reason, AssignmentType.manual
    )


async def transfer(
    session: AsyncSession,
    ticket_id: int,
    target_user_id: int,
    identity: Identity | None,
    reason: str | None = None,
) -> TicketAssignment:
    return await _reassign(
        session, ticket_id, target_user_id, identity, reason, AssignmentType.transfer
    )


async def escalate(
    session: AsyncSession,
    ticket_id: int,
    target_user_id: int,
    identity: Identity | None,
    reason: str | None = None,
) -> TicketAssignment:
    return await _reassign(
        session, ticket_id, target_user_id, identity, reason, AssignmentType.escalation
    )
