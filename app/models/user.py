from enum import Enum

from sqlalchemy import Enum as SAEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin


class StaffRole(str, Enum):
    agent = "agent"
    admin = "admin"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), unique=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    staff_role: Mapped[StaffRole | None] = mapped_column(
        SAEnum(StaffRole, name="staff_role")
    )

    agent_profile = relationship("AgentProfile", back_populates="user", uselist=False)
