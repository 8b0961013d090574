from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.agent_profile import AgentProfile
from app.models.support_ticket import FINISHED_STATUSES, SupportTicket, TicketStatus
from app.models.ticket_assignment import TicketAssignment
from app.models.ticket_response import TicketResponse
from app.services.access import (
    Identity,
    require_identity,
    require_staff,
    require_ticket_access,
)
from app.services.app_log_store import (
    EVENT_RESPONSE_CREATED,
    EVENT_STATUS_CHANGED,
    EVENT_TICKET_RATED,
    log_event,
)
from app.services.assignment import get_active_assignment
from app.services.errors import (
    AlreadyRated,
    EmptyMessage,
    Forbidden,
    InvalidState,
    NotFound,
    TransientConflict,
    ValidationError,
)
from app.services.ticket_store import get_ticket, get_ticket_by_number
from app.utils.time import minutes_between, utc_now

logger = structlog.get_logger(__name__)

MAX_MESSAGE_LENGTH = 5000
EXCERPT_LENGTH = 200
STATS_RECORDED_KEY = "stats_recorded_for"


@dataclass(frozen=True)
class StatusChange:
    ticket: SupportTicket
    previous_status: TicketStatus
    new_status: TicketStatus
    note: TicketResponse | None = None


def parse_status(value: TicketStatus | str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown status: {value!r}") from exc


def incremental_mean(old_avg: float | None, value: float, new_count: int) -> float:
    old = old_avg or 0.0
    return old + (value - old) / new_count


def _excerpt(message: str) -> str:
    if len(message) <= EXCERPT_LENGTH:
        return message
    return message[:EXCERPT_LENGTH] + "..."


def clean_message(message: str | None) -> str:
    text = (message or "").strip()
    if not text:
        raise EmptyMessage()
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    return text


def apply_transition(ticket: SupportTicket, new_status: TicketStatus, now: datetime) -> None:
    """Move ``ticket`` to ``new_status`` and stamp the timing fields.

    Any of the five statuses may follow any other (reopening included). A
    request for the current status only touches ``updated_at``; the
    resolution and close stamps keep their first values.
    """
    ticket.updated_at = now
    if ticket.status == new_status:
        return
    ticket.status = new_status
    if new_status == TicketStatus.resolved:
        ticket.resolved_at = now
        if ticket.resolution_time_minutes is None:
            ticket.resolution_time_minutes = minutes_between(ticket.created_at, now)
    elif new_status == TicketStatus.closed:
        ticket.closed_at = now


def _assignee_id(assignment: TicketAssignment | None) -> int | None:
    return assignment.assigned_to_id if assignment is not None else None


async def _lock_profile(session: AsyncSession, user_id: int) -> AgentProfile | None:
    result = await session.execute(
        select(AgentProfile)
        .where(AgentProfile.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _lock_with_serving_profile(
    session: AsyncSession,
    load_ticket: Callable[[bool], Awaitable[SupportTicket]],
) -> tuple[SupportTicket, AgentProfile | None]:
    """Lock the serving agent's profile row, then the ticket row.

    Assignment changes take the profile before the ticket too, so two
    transactions touching the same pair always queue in the same order.
    """
    ticket = await load_ticket(False)
    serving = await get_active_assignment(session, ticket.id)
    profile = None
    if serving is not None:
        profile = await _lock_profile(session, serving.assigned_to_id)
    ticket = await load_ticket(True)
    current = await get_active_assignment(session, ticket.id)
    if _assignee_id(current) != _assignee_id(serving):
        raise TransientConflict("Ticket was reassigned concurrently, please retry")
    return ticket, profile


def record_agent_stats(
    ticket: SupportTicket, profile: AgentProfile | None
) -> AgentProfile | None:
    """Fold a finished ticket into its serving agent's running averages.

    Each agent counts a ticket once, even if it is resolved, closed and
    reopened several times.
    """
    if profile is None or ticket.status not in FINISHED_STATUSES:
        return None
    if ticket.response_time_minutes is None or ticket.resolution_time_minutes is None:
        return None
    recorded = list((ticket.meta or {}).get(STATS_RECORDED_KEY, []))
    if profile.user_id in recorded:
        return None

    count = (profile.total_tickets_handled or 0) + 1
    profile.avg_response_time = incremental_mean(
        profile.avg_response_time, ticket.response_time_minutes, count
    )
    profile.avg_resolution_time = incremental_mean(
        profile.avg_resolution_time, ticket.resolution_time_minutes, count
    )
    profile.total_tickets_handled = count
    if ticket.satisfaction is not None:
        _fold_satisfaction(profile, ticket.satisfaction)
    ticket.meta = {**(ticket.meta or {}), STATS_RECORDED_KEY: recorded + [profile.user_id]}
    logger.info(
        "agent_stats_updated",
        ticket_number=ticket.ticket_number,
        agent_id=profile.user_id,
        total_tickets_handled=count,
    )
    return profile


def _fold_satisfaction(profile: AgentProfile, rating: int) -> None:
    rated = (profile.rated_tickets or 0) + 1
    profile.avg_satisfaction = incremental_mean(profile.avg_satisfaction, rating, rated)
    profile.rated_tickets = rated


async def _transition(
    session: AsyncSession,
    ticket: SupportTicket,
    new_status: TicketStatus,
    actor_id: int,
    now: datetime,
    profile: AgentProfile | None = None,
) -> TicketStatus:
    previous = ticket.status
    apply_transition(ticket, new_status, now)
    await session.flush()
    if previous != new_status:
        record_agent_stats(ticket, profile)
    await log_event(
        session,
        level="info",
        event_type=EVENT_STATUS_CHANGED,
        message=f"{ticket.ticket_number}: {previous.value} -> {new_status.value}",
        data={
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "from": previous.value,
            "to": new_status.value,
            "actor_id": actor_id,
        },
    )
    return previous


async def change_status(
    session: AsyncSession,
    ticket_id: int,
    identity: Identity | None,
    new_status: TicketStatus | str,
    internal_note: str | None = None,
) -> StatusChange:
    identity = require_staff(identity)
    target = parse_status(new_status)

    async def load(for_update: bool) -> SupportTicket:
        return await get_ticket(session, ticket_id, for_update=for_update)

    if target in FINISHED_STATUSES:
        ticket, profile = await _lock_with_serving_profile(session, load)
    else:
        ticket, profile = await load(True), None
    now = utc_now()
    previous = await _transition(session, ticket, target, identity.user_id, now, profile)

    note = None
    if internal_note and internal_note.strip():
        note = TicketResponse(
            ticket_id=ticket.id,
            user_id=identity.user_id,
            message=(
                f"Status changed from {previous.value} to {target.value}. "
                f"{internal_note.strip()}"
            ),
            is_internal=True,
            meta={"status_change": {"from": previous.value, "to": target.value}},
        )
        session.add(note)
        await session.flush()
    return StatusChange(ticket=ticket, previous_status=previous, new_status=target, note=note)


async def submit_response(
    session: AsyncSession,
    ticket_number: str,
    identity: Identity | None,
    message: str | None,
    *,
    is_internal: bool = False,
    attachments: list[str] | None = None,
    meta: dict | None = None,
) -> TicketResponse:
    identity = require_identity(identity)
    text = clean_message(message)
    ticket = await get_ticket_by_number(session, ticket_number, for_update=True)
    require_ticket_access(identity, ticket)
    if is_internal and not identity.is_staff:
        raise Forbidden("Only support staff can add internal notes")

    now = utc_now()
    response = TicketResponse(
        ticket_id=ticket.id,
        user_id=identity.user_id,
        message=text,
        is_internal=is_internal,
        attachments=list(attachments or []),
        meta=dict(meta or {}),
    )
    session.add(response)

    if not is_internal:
        if identity.is_staff and ticket.response_time_minutes is None:
            ticket.response_time_minutes = minutes_between(ticket.created_at, now)
        if identity.is_staff and ticket.status == TicketStatus.open:
            await _transition(session, ticket, TicketStatus.in_progress, identity.user_id, now)
        elif (
            not identity.is_staff
            and ticket.status == TicketStatus.waiting_customer
        ):
            await _transition(session, ticket, TicketStatus.in_progress, identity.user_id, now)
        ticket.updated_at = now
    await session.flush()

    if not is_internal:
        await _log_response_event(session, ticket, response, identity)
    return response


async def _log_response_event(
    session: AsyncSession,
    ticket: SupportTicket,
    response: TicketResponse,
    identity: Identity,
) -> None:
    from_owner = ticket.user_id == identity.user_id and not identity.is_staff
    if from_owner:
        assignment = await get_active_assignment(session, ticket.id)
        recipient_id = assignment.assigned_to_id if assignment else None
    else:
        recipient_id = ticket.user_id
    await log_event(
        session,
        level="info",
        event_type=EVENT_RESPONSE_CREATED,
        message=f"New response on ticket {ticket.ticket_number}",
        data={
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "response_id": response.id,
            "author_id": identity.user_id,
            "recipient_id": recipient_id,
            "is_customer_response": from_owner,
            "excerpt": _excerpt(response.message),
        },
    )


async def add_internal_note(
    session: AsyncSession,
    ticket_id: int,
    identity: Identity | None,
    message: str | None,
) -> TicketResponse:
    identity = require_staff(identity)
    text = clean_message(message)
    ticket = await get_ticket(session, ticket_id)
    note = TicketResponse(
        ticket_id=ticket.id,
        user_id=identity.user_id,
        message=text,
        is_internal=True,
        meta={"type": "internal_note"},
    )
    session.add(note)
    await session.flush()
    return note


async def rate_satisfaction(
    session: AsyncSession,
    ticket_number: str,
    identity: Identity | None,
    rating: int,
) -> SupportTicket:
    identity = require_identity(identity)
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    async def load(for_update: bool) -> SupportTicket:
        return await get_ticket_by_number(session, ticket_number, for_update=for_update)

    ticket, profile = await _lock_with_serving_profile(session, load)
    require_ticket_access(identity, ticket, owner_only=True)
    if ticket.status not in FINISHED_STATUSES:
        raise InvalidState("Can only rate resolved or closed tickets")
    if ticket.satisfaction is not None:
        raise AlreadyRated()

    ticket.satisfaction = rating
    ticket.updated_at = utc_now()
    recorded = (ticket.meta or {}).get(STATS_RECORDED_KEY, [])
    if profile is not None and profile.user_id in recorded:
        _fold_satisfaction(profile, rating)
    await log_event(
        session,
        level="info",
        event_type=EVENT_TICKET_RATED,
        message=f"{ticket.ticket_number} rated {rating}",
        data={
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "rating": rating,
        },
    )
    await session.flush()
    return ticket


async def mark_response_notified(
    session: AsyncSession,
    response_id: int,
    identity: Identity | None,
) -> TicketResponse:
    require_staff(identity)
    response = await session.get(TicketResponse, response_id)
    if response is None:
        raise NotFound(f"Response {response_id} not found")
    if not response.notification_sent:
        response.notification_sent = True
        response.notification_sent_at = utc_now()
        await session.flush()
    return response
