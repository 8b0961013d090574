from app.models.agent_profile import AgentProfile, Department
from app.models.app_log import AppLog
from app.models.audit_log import AuditLog
from app.models.base import Base, JSONType, TimestampMixin
from app.models.support_ticket import (
    FINISHED_STATUSES,
    OPEN_STATUSES,
    SupportTicket,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)
from app.models.ticket_assignment import AssignmentType, TicketAssignment
from app.models.ticket_response import TicketResponse
from app.models.ticket_sequence import TicketSequence
from app.models.user import StaffRole, User

__all__ = [
    "AgentProfile",
    "AppLog",
    "AssignmentType",
    "AuditLog",
    "Base",
    "Department",
    "FINISHED_STATUSES",
    "JSONType",
    "OPEN_STATUSES",
    "StaffRole",
    "SupportTicket",
    "TicketAssignment",
    "TicketCategory",
    "TicketPriority",
    "TicketResponse",
    "TicketSequence",
    "TicketStatus",
    "TimestampMixin",
    "User",
]
