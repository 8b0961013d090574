from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TimestampMixin


class TicketCategory(str, Enum):
    account = "account"
    technical = "technical"
    payment = "payment"
    content = "content"
    trust_safety = "trust_safety"
    feature_request = "feature_request"
    bug_report = "bug_report"
    other = "other"


class TicketStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    waiting_customer = "waiting_customer"
    resolved = "resolved"
    closed = "closed"


class TicketPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


OPEN_STATUSES = (
    TicketStatus.open,
    TicketStatus.in_progress,
    TicketStatus.waiting_customer,
)
FINISHED_STATUSES = (TicketStatus.resolved, TicketStatus.closed)


class SupportTicket(TimestampMixin, Base):
    __tablename__ = "support_tickets"
    __table_args__ = (
        Index("ix_support_tickets_admin_filter", "status", "priority", "created_at"),
        CheckConstraint(
            "satisfaction IS NULL OR satisfaction BETWEEN 1 AND 5",
            name="ck_support_tickets_satisfaction",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    category: Mapped[TicketCategory] = mapped_column(
        SAEnum(TicketCategory, name="ticket_category"), index=True
    )
    subject: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)
    status: Mapped[TicketStatus] = mapped_column(
        SAEnum(TicketStatus, name="ticket_status"),
        default=TicketStatus.open,
        index=True,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        SAEnum(TicketPriority, name="ticket_priority"),
        default=TicketPriority.medium,
        index=True,
    )
    attachments: Mapped[list[str]] = mapped_column(JSONType, default=list)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    response_time_minutes: Mapped[int | None] = mapped_column(Integer)
    resolution_time_minutes: Mapped[int | None] = mapped_column(Integer)
    satisfaction: Mapped[int | None] = mapped_column(Integer)

    responses = relationship(
        "TicketResponse",
        back_populates="ticket",
        order_by="TicketResponse.created_at",
    )
    assignments = relationship(
        "TicketAssignment",
        back_populates="ticket",
        order_by="TicketAssignment.id",
    )
