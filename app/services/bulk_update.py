"""Apply one change to many tickets, isolating each ticket's failure.

Every ticket runs in its own savepoint: a missing ticket, an ineligible agent
or a lost lock race (deadlock, serialization failure) rolls back that ticket
only and is reported in ``errors``. Tickets are visited once each, by ascending
id. Problems with the request as a whole (unknown action, bad payload,
caller not allowed) are raised before any ticket is touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.support_ticket import TicketPriority, TicketStatus
from app.services.access import Identity, require_admin, require_staff
from app.services.assignment import manual_assign
from app.services.errors import (
    SupportError,
    TransientConflict,
    ValidationError,
    is_transient_db_error,
)
from app.services.lifecycle import change_status
from app.services.support_tickets import change_priority, parse_enum

logger = structlog.get_logger(__name__)


class BulkAction(str, Enum):
    assign = "assign"
    status = "status"
    priority = "priority"


@dataclass
class BulkItemError:
    ticket_id: int
    error: str
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"ticket_id": self.ticket_id, "error": self.error, "message": self.message}


@dataclass
class BulkResult:
    action: BulkAction
    updated_count: int = 0
    updated_ids: list[int] = field(default_factory=list)
    errors: list[BulkItemError] = field(default_factory=list)


def _validated_payload(
    action: BulkAction, payload: dict[str, Any], identity: Identity
) -> dict[str, Any]:
    reason = payload.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("Reason must be text")

    if action == BulkAction.assign:
        agent_id = payload.get("agent_id")
        if isinstance(agent_id, bool) or not isinstance(agent_id, int):
            raise ValidationError("agent_id is required for bulk assignment")
        return {
            "agent_id": agent_id,
            "reason": reason or f"Bulk assignment by user {identity.user_id}",
        }
    if action == BulkAction.status:
        status = parse_enum(TicketStatus, payload.get("status"), "status")
        if status is None:
            raise ValidationError("status is required for bulk status changes")
        return {"status": status, "reason": reason}

    require_admin(identity)
    priority = parse_enum(TicketPriority, payload.get("priority"), "priority")
    if priority is None:
        raise ValidationError("priority is required for bulk priority changes")
    return {"priority": priority}


async def _apply(
    session: AsyncSession,
    ticket_id: int,
    action: BulkAction,
    values: dict[str, Any],
    identity: Identity,
) -> None:
    if action == BulkAction.assign:
        await manual_assign(session, ticket_id, values["agent_id"], identity, values["reason"])
    elif action == BulkAction.status:
        await change_status(session, ticket_id, identity, values["status"], values["reason"])
    else:
        await change_priority(session, ticket_id, values["priority"], identity)


def _item_failure(exc: SupportError | DBAPIError) -> SupportError:
    if isinstance(exc, SupportError):
        return exc
    if isinstance(exc, IntegrityError) or is_transient_db_error(exc):
        return TransientConflict()
    raise exc


async def bulk_update(
    session: AsyncSession,
    ticket_ids: list[int],
    action: BulkAction | str,
    payload: dict[str, Any] | None,
    identity: Identity | None,
) -> BulkResult:
    identity = require_staff(identity)
    parsed_action = parse_enum(BulkAction, action, "bulk action")
    if parsed_action is None:
        raise ValidationError("Action is required")
    if not ticket_ids:
        raise ValidationError("ticket_ids must not be empty")
    if len(ticket_ids) > settings.BULK_MAX_ITEMS:
        raise ValidationError(f"At most {settings.BULK_MAX_ITEMS} tickets per bulk update")
    values = _validated_payload(parsed_action, payload or {}, identity)

    result = BulkResult(action=parsed_action)
    # Each ticket once, ascending id.
    for ticket_id in sorted(set(ticket_ids)):
        try:
            async with session.begin_nested():
                await _apply(session, ticket_id, parsed_action, values, identity)
        except (SupportError, DBAPIError) as exc:
            failure = _item_failure(exc)
            result.errors.append(
                BulkItemError(ticket_id=ticket_id, error=failure.code, message=str(failure))
            )
            logger.info(
                "bulk_item_failed",
                ticket_id=ticket_id,
                action=parsed_action.value,
                error=failure.code,
            )
            continue
        result.updated_ids.append(ticket_id)
    result.updated_count = len(result.updated_ids)
    logger.info(
        "bulk_update_completed",
        action=parsed_action.value,
        requested=len(ticket_ids),
        updated=result.updated_count,
        failed=len(result.errors),
    )
    return result
