from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.support_ticket import SupportTicket
from app.services.errors import NotFound, ValidationError
from app.services.ticket_sequence import is_ticket_number


async def get_ticket(
    session: AsyncSession,
    ticket_id: int,
    *,
    for_update: bool = False,
) -> SupportTicket:
    query = select(SupportTicket).where(SupportTicket.id == ticket_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    ticket = result.scalars().first()
    if ticket is None:
        raise NotFound(f"Ticket {ticket_id} not found")
    return ticket


async def get_ticket_by_number(
    session: AsyncSession,
    ticket_number: str,
    *,
    for_update: bool = False,
) -> SupportTicket:
    if not is_ticket_number(ticket_number):
        raise ValidationError(f"Malformed ticket number: {ticket_number!r}")
    query = select(SupportTicket).where(SupportTicket.ticket_number == ticket_number)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    ticket = result.scalars().first()
    if ticket is None:
        raise NotFound(f"Ticket {ticket_number} not found")
    return ticket
