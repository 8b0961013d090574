from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.admin.utils import list_response, parse_date
from app.api.deps import get_identity, get_request_ip
from app.core.database import get_session
from app.models.support_ticket import TicketCategory, TicketPriority, TicketStatus
from app.schemas.admin.support_ticket import (
    AssignRequest,
    BulkUpdateOut,
    BulkUpdateRequest,
    EscalateRequest,
    EventOut,
    InternalNoteCreate,
    PriorityChangeOut,
    PriorityUpdate,
    StatusChangeOut,
    StatusUpdate,
)
from app.schemas.support_ticket import AssignmentOut, ResponseOut, TicketOut
from app.services.access import Identity, require_staff
from app.services.app_log_store import list_events
from app.services.assignment import assignment_history, escalate, manual_assign, transfer
from app.services.bulk_update import bulk_update
from app.services.lifecycle import add_internal_note, change_status, mark_response_notified
from app.services.support_stats import dashboard_stats
from app.services.support_tickets import (
    TicketFilters,
    change_priority,
    list_tickets,
    parse_enum,
)
from app.services.ticket_store import get_ticket

router = APIRouter(prefix="/admin/support", tags=["admin"])


@router.get("/stats", response_model=dict)
async def support_stats(
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> dict:
    stats = await dashboard_stats(session, identity)
    return stats.as_dict()


@router.get("/tickets", response_model=dict)
async def support_tickets(
    status: str | None = None,
    category: str | None = None,
    priority: str | None = None,
    assigned_to: int | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int | None = None,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> dict:
    require_staff(identity)
    filters = TicketFilters(
        status=parse_enum(TicketStatus, status, "status"),
        category=parse_enum(TicketCategory, category, "category"),
        priority=parse_enum(TicketPriority, priority, "priority"),
        assigned_to=assigned_to,
        date_from=parse_date(date_from, "date_from"),
        date_to=parse_date(date_to, "date_to", inclusive_end=True),
        search=search,
    )
    result = await list_tickets(
        session,
        identity,
        filters,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    items = [TicketOut.model_validate(item) for item in result.items]
    return list_response(items, result.total, pagination=result.pagination())


@router.put("/tickets/{ticket_id}/assign", response_model=AssignmentOut)
async def assign_ticket(
    ticket_id: int,
    payload: AssignRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> AssignmentOut:
    assignment = await manual_assign(
        session, ticket_id, payload.agent_id, identity, payload.reason
    )
    await session.commit()
    return AssignmentOut.model_validate(assignment)


@router.put("/tickets/{ticket_id}/transfer", response_model=AssignmentOut)
async def transfer_ticket(
    ticket_id: int,
    payload: AssignRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> AssignmentOut:
    assignment = await transfer(session, ticket_id, payload.agent_id, identity, payload.reason)
    await session.commit()
    return AssignmentOut.model_validate(assignment)


@router.put("/tickets/{ticket_id}/escalate", response_model=AssignmentOut)
async def escalate_ticket(
    ticket_id: int,
    payload: EscalateRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
    ip: str | None = Depends(get_request_ip),
) -> AssignmentOut:
    assignment = await escalate(session, ticket_id, payload.agent_id, identity, payload.reason)
    if payload.priority:
        # Raising priority is an admin action; an agent's escalation fails as a whole.
        ticket = await get_ticket(session, ticket_id)
        if ticket.priority != parse_enum(TicketPriority, payload.priority, "priority"):
            await change_priority(
                session,
                ticket_id,
                payload.priority,
                identity,
                ip=ip,
                user_agent=request.headers.get("user-agent"),
            )
    await session.commit()
    return AssignmentOut.model_validate(assignment)


@router.put("/tickets/{ticket_id}/status", response_model=StatusChangeOut)
async def update_status(
    ticket_id: int,
    payload: StatusUpdate,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> StatusChangeOut:
    change = await change_status(
        session, ticket_id, identity, payload.status, payload.internal_note
    )
    await session.commit()
    return StatusChangeOut(
        ticket=TicketOut.model_validate(change.ticket),
        previous_status=change.previous_status,
        new_status=change.new_status,
        note=ResponseOut.model_validate(change.note) if change.note else None,
    )


@router.put("/tickets/{ticket_id}/priority", response_model=PriorityChangeOut)
async def update_priority(
    ticket_id: int,
    payload: PriorityUpdate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
    ip: str | None = Depends(get_request_ip),
) -> PriorityChangeOut:
    ticket, previous = await change_priority(
        session,
        ticket_id,
        payload.priority,
        identity,
        ip=ip,
        user_agent=request.headers.get("user-agent"),
    )
    await session.commit()
    return PriorityChangeOut(
        ticket=TicketOut.model_validate(ticket),
        previous_priority=previous,
        new_priority=ticket.priority,
    )


@router.post("/tickets/{ticket_id}/internal-note", response_model=ResponseOut, status_code=201)
async def internal_note(
    ticket_id: int,
    payload: InternalNoteCreate,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> ResponseOut:
    note = await add_internal_note(session, ticket_id, identity, payload.message)
    await session.commit()
    return ResponseOut.model_validate(note)


@router.get("/tickets/{ticket_id}/assignments", response_model=dict)
async def ticket_assignments(
    ticket_id: int,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> dict:
    require_staff(identity)
    ticket = await get_ticket(session, ticket_id)
    history = await assignment_history(session, ticket.id)
    items = [AssignmentOut.model_validate(item) for item in history]
    return list_response(items, len(items))


@router.post("/tickets/bulk-update", response_model=BulkUpdateOut)
async def bulk_update_tickets(
    payload: BulkUpdateRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> BulkUpdateOut:
    result = await bulk_update(
        session, payload.ticket_ids, payload.action, payload.payload, identity
    )
    await session.commit()
    return BulkUpdateOut(
        action=result.action.value,
        updated_count=result.updated_count,
        updated_ids=result.updated_ids,
        errors=[item.as_dict() for item in result.errors],
    )


@router.get("/events", response_model=dict)
async def notification_events(
    after_id: int | None = None,
    since: str | None = None,
    limit: int = 100,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> dict:
    require_staff(identity)
    events = await list_events(
        session,
        after_id=after_id,
        since=parse_date(since, "since"),
        limit=max(1, min(limit, 500)),
    )
    items = [EventOut.model_validate(item) for item in events]
    return list_response(items, len(items))


@router.post("/responses/{response_id}/notified", response_model=ResponseOut)
async def response_notified(
    response_id: int,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> ResponseOut:
    response = await mark_response_notified(session, response_id, identity)
    await session.commit()
    return ResponseOut.model_validate(response)
