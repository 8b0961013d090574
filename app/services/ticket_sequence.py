from __future__ import annotations

import re
from datetime import date

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.ticket_sequence import TicketSequence
from app.services.errors import TransientConflict

logger = structlog.get_logger(__name__)


def format_ticket_number(day: date, value: int, prefix: str | None = None) -> str:
    return f"{prefix or settings.TICKET_NUMBER_PREFIX}-{day:%Y%m%d}-{value:04d}"


def ticket_number_pattern(prefix: str | None = None) -> re.Pattern[str]:
    escaped = re.escape(prefix or settings.TICKET_NUMBER_PREFIX)
    return re.compile(rf"{escaped}-\d{{8}}-\d{{4,}}")


def is_ticket_number(value: str) -> bool:
    return bool(ticket_number_pattern().fullmatch(value or ""))


async def _increment(session: AsyncSession, day: date) -> int | None:
    stmt = (
        update(TicketSequence)
        .where(TicketSequence.day == day)
        .values(last_value=TicketSequence.last_value + 1)
        .returning(TicketSequence.last_value)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def next_ticket_number(
    session: AsyncSession,
    creation_date: date,
    *,
    max_retries: int | None = None,
) -> str:
    """Allocate the next ticket number for ``creation_date``.

    The per-day row is incremented in place, so concurrent callers queue on
    the row lock instead of racing on ``max(existing) + 1``. The first caller
    of a day inserts the row; losing that insert race retries the increment.
    """
    attempts = max(1, max_retries or settings.SEQUENCE_MAX_RETRIES)
    for attempt in range(1, attempts + 1):
        value = await _increment(session, creation_date)
        if value is None:
            try:
                async with session.begin_nested():
                    session.add(TicketSequence(day=creation_date, last_value=1))
            except IntegrityError:
                logger.info(
                    "sequence_conflict",
                    day=creation_date.isoformat(),
                    attempt=attempt,
                )
                continue
            value = 1
        return format_ticket_number(creation_date, value)

    logger.error(
        "errors",
        stage="ticket_sequence",
        day=creation_date.isoformat(),
        attempts=attempts,
    )
    raise TransientConflict(
        f"Could not allocate a ticket number for {creation_date.isoformat()}"
    )
