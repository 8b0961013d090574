from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.support_ticket import (
    SupportTicket,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)
from app.models.ticket_assignment import TicketAssignment
from app.models.ticket_response import TicketResponse
from app.models.user import User
from app.services.access import (
    Identity,
    require_admin,
    require_identity,
    require_staff,
    require_ticket_access,
)
from app.services.app_log_store import (
    EVENT_PRIORITY_CHANGED,
    EVENT_TICKET_CREATED,
    log_event,
)
from app.services.assignment import auto_assign, get_active_assignment
from app.services.audit import record_audit
from app.services.errors import (
    Forbidden,
    InvalidState,
    TransientConflict,
    Unauthenticated,
    ValidationError,
)
from app.services.ticket_sequence import next_ticket_number
from app.services.ticket_store import get_ticket, get_ticket_by_number
from app.utils.time import utc_now

logger = structlog.get_logger(__name__)

SUBJECT_MAX = 200
DESCRIPTION_MIN = 10
DESCRIPTION_MAX = 5000

SORTABLE_COLUMNS = {
    "created_at": SupportTicket.created_at,
    "updated_at": SupportTicket.updated_at,
    "priority": SupportTicket.priority,
    "status": SupportTicket.status,
    "ticket_number": SupportTicket.ticket_number,
}


@dataclass(frozen=True)
class CreatedTicket:
    ticket: SupportTicket
    assignment: TicketAssignment | None


@dataclass(frozen=True)
class TicketDetail:
    ticket: SupportTicket
    responses: list[TicketResponse]
    assignment: TicketAssignment | None


@dataclass
class TicketFilters:
    status: TicketStatus | None = None
    category: TicketCategory | None = None
    priority: TicketPriority | None = None
    user_id: int | None = None
    assigned_to: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None


@dataclass
class TicketPage:
    items: list[SupportTicket] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 25

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "pages": self.pages,
        }


def parse_enum(enum_cls, value, label: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {label}: {value!r}") from exc


def _clean_attachments(attachments: list[str] | None) -> list[str]:
    if attachments is None:
        return []
    if not isinstance(attachments, list) or not all(
        isinstance(item, str) and item.strip() for item in attachments
    ):
        raise ValidationError("Attachments must be a list of URLs")
    return [item.strip() for item in attachments]


def _validate_new_ticket(
    category: TicketCategory | str,
    subject: str | None,
    description: str | None,
) -> tuple[TicketCategory, str, str]:
    parsed_category = parse_enum(TicketCategory, category, "category")
    if parsed_category is None:
        raise ValidationError("Category is required")
    clean_subject = (subject or "").strip()
    if not clean_subject or len(clean_subject) > SUBJECT_MAX:
        raise ValidationError(
            f"Subject is required and must be at most {SUBJECT_MAX} characters"
        )
    clean_description = (description or "").strip()
    if not DESCRIPTION_MIN <= len(clean_description) <= DESCRIPTION_MAX:
        raise ValidationError(
            f"Description must be between {DESCRIPTION_MIN} and {DESCRIPTION_MAX} characters"
        )
    return parsed_category, clean_subject, clean_description


async def create_ticket(
    session: AsyncSession,
    identity: Identity | None,
    *,
    category: TicketCategory | str,
    subject: str | None,
    description: str | None,
    attachments: list[str] | None = None,
    meta: dict | None = None,
) -> CreatedTicket:
    """Open a ticket for the caller and route it to an agent when one is free.

    Everything is validated before the first row is written.
    """
    identity = require_identity(identity)
    parsed_category, clean_subject, clean_description = _validate_new_ticket(
        category, subject, description
    )
    clean_attachments = _clean_attachments(attachments)

    user = await session.get(User, identity.user_id)
    if user is None:
        raise Unauthenticated("Unknown user")

    now = utc_now()
    ticket = None
    for attempt in range(1, settings.SEQUENCE_MAX_RETRIES + 1):
        ticket_number = await next_ticket_number(session, now.date())
        candidate = SupportTicket(
            ticket_number=ticket_number,
            user_id=user.id,
            name=(user.display_name or user.username or "User")[:100],
            email=user.email,
            category=parsed_category,
            subject=clean_subject,
            description=clean_description,
            status=TicketStatus.open,
            priority=TicketPriority.medium,
            attachments=clean_attachments,
            meta={**(meta or {}), "created_via": (meta or {}).get("created_via", "web")},
            created_at=now,
            updated_at=now,
        )
        try:
            async with session.begin_nested():
                session.add(candidate)
        except IntegrityError:
            # A row already holds this number (imported or hand-made); take the next one.
            logger.warning(
                "ticket_number_taken", ticket_number=ticket_number, attempt=attempt
            )
            continue
        ticket = candidate
        break
    if ticket is None:
        logger.error("errors", stage="create_ticket", user_id=user.id)
        raise TransientConflict("Could not allocate a unique ticket number")

    await log_event(
        session,
        level="info",
        event_type=EVENT_TICKET_CREATED,
        message=f"Support ticket created: {ticket.ticket_number}",
        data={
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "user_id": user.id,
            "email": user.email,
            "category": parsed_category.value,
            "subject": clean_subject,
        },
    )

    assignment = None
    if settings.AUTO_ASSIGN_ENABLED:
        assignment = await auto_assign(session, ticket, now=now)

    logger.info(
        "ticket_created",
        ticket_number=ticket.ticket_number,
        category=parsed_category.value,
        assigned=assignment is not None,
    )
    return CreatedTicket(ticket=ticket, assignment=assignment)


async def get_ticket_detail(
    session: AsyncSession,
    ticket_number: str,
    identity: Identity | None,
) -> TicketDetail:
    identity = require_identity(identity)
    ticket = await get_ticket_by_number(session, ticket_number)
    require_ticket_access(identity, ticket)

    query = (
        select(TicketResponse)
        .where(TicketResponse.ticket_id == ticket.id)
        .order_by(TicketResponse.created_at.asc(), TicketResponse.id.asc())
    )
    if not identity.is_staff:
        query = query.where(TicketResponse.is_internal.is_(False))
    responses = list((await session.execute(query)).scalars().all())
    assignment = await get_active_assignment(session, ticket.id)
    return TicketDetail(ticket=ticket, responses=responses, assignment=assignment)


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("Page must be at least 1")
    if not 1 <= limit <= settings.LIST_MAX_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {settings.LIST_MAX_LIMIT}")


def _apply_filters(query, filters: TicketFilters):
    if filters.status is not None:
        query = query.where(SupportTicket.status == filters.status)
    if filters.category is not None:
        query = query.where(SupportTicket.category == filters.category)
    if filters.priority is not None:
        query = query.where(SupportTicket.priority == filters.priority)
    if filters.user_id is not None:
        query = query.where(SupportTicket.user_id == filters.user_id)
    if filters.date_from is not None:
        query = query.where(SupportTicket.created_at >= filters.date_from)
    if filters.date_to is not None:
        query = query.where(SupportTicket.created_at <= filters.date_to)
    if filters.assigned_to is not None:
        query = query.join(
            TicketAssignment,
            (TicketAssignment.ticket_id == SupportTicket.id)
            & TicketAssignment.is_active.is_(True),
        ).where(TicketAssignment.assigned_to_id == filters.assigned_to)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        query = query.where(
            or_(
                SupportTicket.subject.ilike(pattern),
                SupportTicket.ticket_number.ilike(pattern),
            )
        )
    return query


async def _paginate(
    session: AsyncSession,
    query,
    page: int,
    limit: int,
) -> TicketPage:
    total = await session.scalar(select(func.count()).select_from(query.subquery()))
    result = await session.execute(query.offset((page - 1) * limit).limit(limit))
    return TicketPage(
        items=list(result.scalars().all()),
        total=total or 0,
        page=page,
        limit=limit,
    )


async def list_tickets(
    session: AsyncSession,
    identity: Identity | None,
    filters: TicketFilters | None = None,
    *,
    page: int = 1,
    limit: int | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> TicketPage:
    require_staff(identity)
    limit = limit or settings.LIST_DEFAULT_LIMIT
    _check_paging(page, limit)
    sort_col = SORTABLE_COLUMNS.get(sort_by)
    if sort_col is None:
        raise ValidationError(f"Cannot sort by {sort_by!r}")
    if sort_order.lower() not in {"asc", "desc"}:
        raise ValidationError("Sort order must be asc or desc")

    query = _apply_filters(select(SupportTicket), filters or TicketFilters())
    if sort_order.lower() == "desc":
        query = query.order_by(sort_col.desc(), SupportTicket.id.desc())
    else:
        query = query.order_by(sort_col.asc(), SupportTicket.id.asc())
    return await _paginate(session, query, page, limit)


async def list_user_tickets(
    session: AsyncSession,
    identity: Identity | None,
    user_id: int,
    *,
    status: TicketStatus | str | None = None,
    page: int = 1,
    limit: int = 10,
) -> TicketPage:
    identity = require_identity(identity)
    if user_id != identity.user_id and not identity.is_staff:
        raise Forbidden()
    _check_paging(page, limit)
    filters = TicketFilters(
        user_id=user_id,
        status=parse_enum(TicketStatus, status, "status"),
    )
    query = _apply_filters(select(SupportTicket), filters).order_by(
        SupportTicket.created_at.desc(), SupportTicket.id.desc()
    )
    return await _paginate(session, query, page, limit)


async def change_priority(
    session: AsyncSession,
    ticket_id: int,
    priority: TicketPriority | str,
    identity: Identity | None,
    *,
    ip: str | None = None,
    user_agent: str | None = None,
) -> tuple[SupportTicket, TicketPriority]:
    identity = require_admin(identity)
    new_priority = parse_enum(TicketPriority, priority, "priority")
    if new_priority is None:
        raise ValidationError("Priority is required")
    ticket = await get_ticket(session, ticket_id, for_update=True)
    previous = ticket.priority
    if previous == new_priority:
        raise InvalidState(f"Ticket priority is already {new_priority.value}")

    ticket.priority = new_priority
    ticket.updated_at = utc_now()
    await record_audit(
        session,
        identity.user_id,
        entity="support_ticket",
        action="priority",
        before={"priority": previous},
        after={"priority": new_priority},
        entity_id=ticket.id,
        ip=ip,
        user_agent=user_agent,
    )
    await log_event(
        session,
        level="info",
        event_type=EVENT_PRIORITY_CHANGED,
        message=f"{ticket.ticket_number}: priority {previous.value} -> {new_priority.value}",
        data={
            "ticket_id": ticket.id,
            "ticket_number": ticket.ticket_number,
            "from": previous.value,
            "to": new_priority.value,
            "actor_id": identity.user_id,
        },
    )
    await session.flush()
    return ticket, previous
