from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.app_log import AppLog

EVENT_TICKET_CREATED = "ticket_created"
EVENT_RESPONSE_CREATED = "ticket_response_created"
EVENT_TICKET_ASSIGNED = "ticket_assigned"
EVENT_STATUS_CHANGED = "ticket_status_changed"
EVENT_PRIORITY_CHANGED = "ticket_priority_changed"
EVENT_TICKET_RATED = "ticket_rated"

NOTIFICATION_EVENTS = (
    EVENT_TICKET_CREATED,
    EVENT_RESPONSE_CREATED,
    EVENT_TICKET_ASSIGNED,
)


async def log_event(
    session: AsyncSession,
    level: str,
    event_type: str,
    message: str | None = None,
    data: dict | None = None,
) -> AppLog:
    log = AppLog(
        level=level,
        event_type=event_type,
        message=message,
        data=data,
    )
    session.add(log)
    return log


async def list_events(
    session: AsyncSession,
    *,
    event_types: tuple[str, ...] = NOTIFICATION_EVENTS,
    after_id: int | None = None,
    since: datetime | None = None,
    limit: int = 100,
) -> list[AppLog]:
    query = select(AppLog).where(AppLog.event_type.in_(event_types))
    if after_id is not None:
        query = query.where(AppLog.id > after_id)
    if since is not None:
        query = query.where(AppLog.created_at >= since)
    query = query.order_by(AppLog.id.asc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())
