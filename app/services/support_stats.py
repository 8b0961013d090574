from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.agent_profile import AgentProfile
from app.models.support_ticket import OPEN_STATUSES, SupportTicket, TicketCategory
from app.models.user import User
from app.services.access import Identity, require_staff
from app.services.assignment import active_assignment_counts
from app.utils.time import start_of_day, start_of_week, utc_today


@dataclass
class AgentPerformance:
    agent_id: int
    display_name: str | None
    department: str
    total_tickets: int
    avg_response_time: float
    avg_resolution_time: float
    avg_satisfaction: float
    is_available: bool
    active_tickets: int


@dataclass
class DashboardStats:
    open_tickets: int = 0
    today_tickets: int = 0
    week_tickets: int = 0
    avg_response_time: float = 0.0
    avg_resolution_time: float = 0.0
    avg_satisfaction: float = 0.0
    total_ratings: int = 0
    category_distribution: dict[str, int] = field(default_factory=dict)
    # None means the caller may not see per-agent figures.
    agent_performance: list[AgentPerformance] | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "openTickets": self.open_tickets,
            "todayTickets": self.today_tickets,
            "weekTickets": self.week_tickets,
            "avgResponseTime": self.avg_response_time,
            "avgResolutionTime": self.avg_resolution_time,
            "avgSatisfaction": self.avg_satisfaction,
            "totalRatings": self.total_ratings,
            "categoryDistribution": dict(self.category_distribution),
        }
        if self.agent_performance is not None:
            payload["agentPerformance"] = [
                {
                    "agent_id": item.agent_id,
                    "display_name": item.display_name,
                    "department": item.department,
                    "total_tickets": item.total_tickets,
                    "avg_response_time": item.avg_response_time,
                    "avg_resolution_time": item.avg_resolution_time,
                    "avg_satisfaction": item.avg_satisfaction,
                    "is_available": item.is_available,
                    "active_tickets": item.active_tickets,
                }
                for item in self.agent_performance
            ]
        return payload


def _round(value: Any) -> float:
    return round(float(value or 0), 2)


async def _count(session: AsyncSession, *criteria) -> int:
    query = select(func.count(SupportTicket.id))
    for criterion in criteria:
        query = query.where(criterion)
    return int(await session.scalar(query) or 0)


async def _average(session: AsyncSession, column) -> float:
    value = await session.scalar(select(func.avg(column)).where(column.is_not(None)))
    return _round(value)


async def category_distribution(session: AsyncSession) -> dict[str, int]:
    distribution = {category.value: 0 for category in TicketCategory}
    result = await session.execute(
        select(SupportTicket.category, func.count(SupportTicket.id)).group_by(
            SupportTicket.category
        )
    )
    for category, count in result.all():
        distribution[TicketCategory(category).value] = int(count)
    return distribution


async def agent_performance(session: AsyncSession) -> list[AgentPerformance]:
    result = await session.execute(
        select(AgentProfile, User)
        .join(User, User.id == AgentProfile.user_id)
        .order_by(AgentProfile.id)
    )
    rows = result.all()
    counts = await active_assignment_counts(session, [profile.user_id for profile, _ in rows])
    return [
        AgentPerformance(
            agent_id=profile.user_id,
            display_name=user.display_name or user.username,
            department=profile.department.value,
            total_tickets=profile.total_tickets_handled or 0,
            avg_response_time=_round(profile.avg_response_time),
            avg_resolution_time=_round(profile.avg_resolution_time),
            avg_satisfaction=_round(profile.avg_satisfaction),
            is_available=bool(profile.is_available),
            active_tickets=counts.get(profile.user_id, 0),
        )
        for profile, user in rows
    ]


async def dashboard_stats(session: AsyncSession, identity: Identity | None) -> DashboardStats:
    identity = require_staff(identity)
    today = utc_today()

    ratings = await session.execute(
        select(func.avg(SupportTicket.satisfaction), func.count(SupportTicket.satisfaction))
        .where(SupportTicket.satisfaction.is_not(None))
    )
    avg_satisfaction, total_ratings = ratings.one()

    stats = DashboardStats(
        open_tickets=await _count(session, SupportTicket.status.in_(OPEN_STATUSES)),
        today_tickets=await _count(session, SupportTicket.created_at >= start_of_day(today)),
        week_tickets=await _count(session, SupportTicket.created_at >= start_of_week(today)),
        avg_response_time=await _average(session, SupportTicket.response_time_minutes),
        avg_resolution_time=await _average(session, SupportTicket.resolution_time_minutes),
        avg_satisfaction=_round(avg_satisfaction),
        total_ratings=int(total_ratings or 0),
        category_distribution=await category_distribution(session),
    )
    if identity.is_admin:
        stats.agent_performance = await agent_performance(session)
    return stats
