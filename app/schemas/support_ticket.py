from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models.support_ticket import TicketCategory, TicketPriority, TicketStatus
from app.models.ticket_assignment import AssignmentType


class TicketCreate(BaseModel):
    # Enum fields are plain strings here so the service reports bad values
    # with its own ValidationError.
    category: str
    subject: str
    description: str
    attachments: list[str] | None = None


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_number: str
    user_id: int
    category: TicketCategory
    subject: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    attachments: list[str] = Field(default_factory=list)
    metadata: dict = Field(
        default_factory=dict, validation_alias=AliasChoices("meta", "metadata")
    )
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    response_time_minutes: int | None = None
    resolution_time_minutes: int | None = None
    satisfaction: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ResponseCreate(BaseModel):
    message: str
    attachments: list[str] | None = None


class ResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    user_id: int
    message: str
    is_internal: bool
    attachments: list[str] = Field(default_factory=list)
    notification_sent: bool = False
    notification_sent_at: datetime | None = None
    created_at: datetime | None = None


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    assigned_to_id: int
    assigned_by_id: int
    assignment_type: AssignmentType
    previous_assignee_id: int | None = None
    reason: str | None = None
    is_active: bool
    completed_at: datetime | None = None
    created_at: datetime | None = None


class TicketCreatedOut(BaseModel):
    ticket: TicketOut
    assignment: AssignmentOut | None = None


class TicketDetailOut(BaseModel):
    ticket: TicketOut
    responses: list[ResponseOut]
    assignment: AssignmentOut | None = None


class RatingCreate(BaseModel):
    rating: int


class RatingOut(BaseModel):
    ticket_number: str
    rating: int
