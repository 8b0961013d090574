from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.admin.utils import list_response
from app.api.deps import get_identity, get_request_ip, request_meta
from app.core.database import get_session
from app.schemas.support_ticket import (
    AssignmentOut,
    RatingCreate,
    RatingOut,
    ResponseCreate,
    ResponseOut,
    TicketCreate,
    TicketCreatedOut,
    TicketDetailOut,
    TicketOut,
)
from app.services.access import Identity
from app.services.lifecycle import rate_satisfaction, submit_response
from app.services.support_tickets import create_ticket, get_ticket_detail, list_user_tickets

router = APIRouter(prefix="/support", tags=["support"])


@router.post("/tickets", response_model=TicketCreatedOut, status_code=status.HTTP_201_CREATED)
async def open_ticket(
    payload: TicketCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
    ip: str | None = Depends(get_request_ip),
) -> TicketCreatedOut:
    created = await create_ticket(
        session,
        identity,
        category=payload.category,
        subject=payload.subject,
        description=payload.description,
        attachments=payload.attachments,
        meta=request_meta(request, ip),
    )
    await session.commit()
    return TicketCreatedOut(
        ticket=TicketOut.model_validate(created.ticket),
        assignment=(
            AssignmentOut.model_validate(created.assignment) if created.assignment else None
        ),
    )


@router.get("/tickets/user/{user_id}", response_model=dict)
async def user_tickets(
    user_id: int,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> dict:
    result = await list_user_tickets(
        session, identity, user_id, status=status, page=page, limit=limit
    )
    items = [TicketOut.model_validate(item) for item in result.items]
    return list_response(items, result.total, pagination=result.pagination())


@router.get("/tickets/{ticket_number}", response_model=TicketDetailOut)
async def ticket_detail(
    ticket_number: str,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> TicketDetailOut:
    detail = await get_ticket_detail(session, ticket_number, identity)
    return TicketDetailOut(
        ticket=TicketOut.model_validate(detail.ticket),
        responses=[ResponseOut.model_validate(item) for item in detail.responses],
        assignment=(
            AssignmentOut.model_validate(detail.assignment) if detail.assignment else None
        ),
    )


@router.post(
    "/tickets/{ticket_number}/responses",
    response_model=ResponseOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_response(
    ticket_number: str,
    payload: ResponseCreate,
    request: Request,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
    ip: str | None = Depends(get_request_ip),
) -> ResponseOut:
    response = await submit_response(
        session,
        ticket_number,
        identity,
        payload.message,
        attachments=payload.attachments,
        meta=request_meta(request, ip),
    )
    await session.commit()
    return ResponseOut.model_validate(response)


@router.post("/tickets/{ticket_number}/satisfaction", response_model=RatingOut)
async def rate_ticket(
    ticket_number: str,
    payload: RatingCreate,
    session: AsyncSession = Depends(get_session),
    identity: Identity | None = Depends(get_identity),
) -> RatingOut:
    ticket = await rate_satisfaction(session, ticket_number, identity, payload.rating)
    await session.commit()
    return RatingOut(ticket_number=ticket.ticket_number, rating=ticket.satisfaction)
