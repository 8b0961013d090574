from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TimestampMixin


class Department(str, Enum):
    general = "general"
    technical = "technical"
    billing = "billing"
    trust_safety = "trust_safety"
    content = "content"
    vip = "vip"


class AgentProfile(TimestampMixin, Base):
    __tablename__ = "agent_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, index=True)
    department: Mapped[Department] = mapped_column(
        SAEnum(Department, name="agent_department"),
        default=Department.general,
        index=True,
    )
    specialties: Mapped[list[str]] = mapped_column(JSONType, default=list)
    max_active_tickets: Mapped[int] = mapped_column(Integer, default=20)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True
    )
    total_tickets_handled: Mapped[int] = mapped_column(Integer, default=0)
    avg_response_time: Mapped[float] = mapped_column(Float, default=0.0)
    avg_resolution_time: Mapped[float] = mapped_column(Float, default=0.0)
    rated_tickets: Mapped[int] = mapped_column(Integer, default=0)
    avg_satisfaction: Mapped[float] = mapped_column(Float, default=0.0)
    notes: Mapped[str | None] = mapped_column(Text)

    user = relationship("User", back_populates="agent_profile")
