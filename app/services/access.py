from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.models.support_ticket import SupportTicket
from app.models.user import StaffRole
from app.services.errors import Forbidden, Unauthenticated


@dataclass(frozen=True)
class Identity:
    """Caller identity as handed over by the authentication gateway."""

    user_id: int
    staff_role: StaffRole | None = None

    @property
    def is_staff(self) -> bool:
        return self.staff_role is not None

    @property
    def is_admin(self) -> bool:
        return self.staff_role == StaffRole.admin


class TicketAccess(str, Enum):
    owner = "owner"
    staff_agent = "staff_agent"
    staff_admin = "staff_admin"
    none = "none"


def ticket_access(identity: Identity | None, ticket: SupportTicket) -> TicketAccess:
    if identity is None:
        return TicketAccess.none
    if identity.staff_role == StaffRole.admin:
        return TicketAccess.staff_admin
    if identity.staff_role == StaffRole.agent:
        return TicketAccess.staff_agent
    if ticket.user_id == identity.user_id:
        return TicketAccess.owner
    return TicketAccess.none


def require_identity(identity: Identity | None) -> Identity:
    if identity is None:
        raise Unauthenticated()
    return identity


def require_staff(identity: Identity | None) -> Identity:
    identity = require_identity(identity)
    if not identity.is_staff:
        raise Forbidden("Support staff only")
    return identity


def require_admin(identity: Identity | None) -> Identity:
    identity = require_identity(identity)
    if not identity.is_admin:
        raise Forbidden("Support admins only")
    return identity


def require_ticket_access(
    identity: Identity | None,
    ticket: SupportTicket,
    *,
    owner_only: bool = False,
) -> TicketAccess:
    access = ticket_access(identity, ticket)
    if access == TicketAccess.none:
        raise Forbidden()
    if owner_only and ticket.user_id != identity.user_id:
        raise Forbidden("Only the ticket owner may do this")
    return access
