from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models.agent_profile import Department
from app.models.support_ticket import TicketPriority, TicketStatus
from app.schemas.support_ticket import ResponseOut, TicketOut


class AssignRequest(BaseModel):
    agent_id: int
    reason: str | None = None


class EscalateRequest(AssignRequest):
    priority: str | None = None


class StatusUpdate(BaseModel):
    status: str
    internal_note: str | None = None


class StatusChangeOut(BaseModel):
    ticket: TicketOut
    previous_status: TicketStatus
    new_status: TicketStatus
    note: ResponseOut | None = None


class PriorityUpdate(BaseModel):
    priority: str


class PriorityChangeOut(BaseModel):
    ticket: TicketOut
    previous_priority: TicketPriority
    new_priority: TicketPriority


class InternalNoteCreate(BaseModel):
    message: str


class BulkUpdateRequest(BaseModel):
    ticket_ids: list[int] = Field(min_length=1)
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)


class BulkItemErrorOut(BaseModel):
    ticket_id: int
    error: str
    message: str


class BulkUpdateOut(BaseModel):
    action: str
    updated_count: int
    updated_ids: list[int]
    errors: list[BulkItemErrorOut]


class AgentProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    display_name: str | None = None
    department: Department
    specialties: list[str] = Field(default_factory=list)
    max_active_tickets: int
    is_available: bool
    last_assigned_at: datetime | None = None
    total_tickets_handled: int = 0
    avg_response_time: float = 0.0
    avg_resolution_time: float = 0.0
    avg_satisfaction: float = 0.0
    notes: str | None = None


class AgentPromote(BaseModel):
    user_id: int
    role: str = "agent"
    department: str = "general"
    specialties: list[str] | None = None
    max_active_tickets: int | None = None
    notes: str | None = None


class AgentProfileUpdate(BaseModel):
    department: str | None = None
    specialties: list[str] | None = None
    max_active_tickets: int | None = None
    is_available: bool | None = None
    notes: str | None = None


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    level: str
    event_type: str
    message: str | None = None
    data: dict | None = None
    created_at: datetime | None = None
