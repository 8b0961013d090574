import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.models import AgentProfile, AssignmentType, Department, StaffRole, TicketAssignment
from app.services.access import Identity
from app.services.assignment import (
    assignment_history,
    department_for,
    get_active_assignment,
    manual_assign,
    pick_agent,
    transfer,
)
from app.services.errors import AgentNotEligible, Forbidden, InvalidState, NotFound
from app.services.support_tickets import create_ticket
from app.utils.time import utc_now
from tests.factories import add_agent, add_user, as_identity, open_ticket


def test_category_routing_table() -> None:
    assert department_for("technical") == Department.technical
    assert department_for("payment") == Department.billing
    assert department_for("trust_safety") == Department.trust_safety
    assert department_for("content") == Department.content
    for category in ("account", "feature_request", "bug_report", "other"):
        assert department_for(category) == Department.general


def test_pick_agent_prefers_least_loaded_then_longest_idle() -> None:
    now = utc_now()
    busy = AgentProfile(id=1, user_id=10, max_active_tickets=5, last_assigned_at=None)
    idle_recent = AgentProfile(
        id=2, user_id=11, max_active_tickets=5, last_assigned_at=now - timedelta(minutes=5)
    )
    idle_long = AgentProfile(
        id=3, user_id=12, max_active_tickets=5, last_assigned_at=now - timedelta(hours=3)
    )
    full = AgentProfile(id=4, user_id=13, max_active_tickets=1, last_assigned_at=None)
    counts = {10: 2, 11: 0, 12: 0, 13: 1}

    assert pick_agent([busy, idle_recent, idle_long, full], counts) is idle_long
    assert pick_agent([busy, full], counts) is busy
    assert pick_agent([full], counts) is None
    assert pick_agent([], {}) is None


def test_auto_assign_routes_to_least_loaded_agent(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            first_agent = await add_agent(session, "alice")
            first = await open_ticket(session, customer)
            second = await open_ticket(session, customer)
            second_agent = await add_agent(session, "bob")
            third = await open_ticket(session, customer)
            await session.commit()
        return (
            [c.assignment.assigned_to_id for c in (first, second, third)],
            first_agent.id,
            second_agent.id,
            third.assignment.assignment_type,
        )

    assignees, alice, bob, assignment_type = run_db(scenario)
    assert assignees == [alice, alice, bob]
    assert assignment_type == AssignmentType.auto


def test_auto_assign_rotates_between_equally_loaded_agents(run_db) -> None:
    async def scenario(sessionmaker):
        now = utc_now()
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            recent = await add_agent(
                session, "alice", last_assigned_at=now - timedelta(minutes=10)
            )
            stale = await add_agent(session, "bob", last_assigned_at=now - timedelta(hours=2))
            first = await open_ticket(session, customer)
            second = await open_ticket(session, customer)
            await session.commit()
        return first.assignment.assigned_to_id, second.assignment.assigned_to_id, recent.id, stale.id

    first, second, alice, bob = run_db(scenario)
    assert first == bob
    assert second == alice


def test_auto_assign_respects_capacity_availability_and_department(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            await add_agent(session, "alice", max_active_tickets=1)
            await add_agent(session, "bob", is_available=False)
            await add_agent(session, "dave", department=Department.billing)
            first = await open_ticket(session, customer)
            overflow = await open_ticket(session, customer)
            payment = await open_ticket(session, customer, category="payment")
            content = await open_ticket(session, customer, category="content")
            await session.commit()
        return first, overflow, payment, content

    first, overflow, payment, content = run_db(scenario)
    assert first.assignment is not None
    assert overflow.assignment is None
    assert payment.assignment is not None
    assert payment.assignment.assigned_to_id != first.assignment.assigned_to_id
    assert content.assignment is None


def test_manual_assign_keeps_a_single_active_assignment(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            bob = await add_agent(session, "bob", department=Department.general)
            lead = await add_agent(
                session, "lead", department=Department.vip, staff_role=StaffRole.admin
            )
            created = await open_ticket(session, customer)
            ticket_id = created.ticket.id

            reassigned = await manual_assign(
                session, ticket_id, bob.id, as_identity(lead), "Needs general desk"
            )
            moved = await transfer(session, ticket_id, alice.id, as_identity(bob), "Back to tech")
            await session.commit()

            active_rows = await session.scalar(
                select(func.count(TicketAssignment.id))
                .where(TicketAssignment.ticket_id == ticket_id)
                .where(TicketAssignment.is_active.is_(True))
            )
            history = await assignment_history(session, ticket_id)
            active = await get_active_assignment(session, ticket_id)
        return alice, bob, lead, reassigned, moved, active_rows, history, active

    alice, bob, lead, reassigned, moved, active_rows, history, active = run_db(scenario)
    assert active_rows == 1
    assert [row.assignment_type for row in history] == [
        AssignmentType.auto,
        AssignmentType.manual,
        AssignmentType.transfer,
    ]
    assert [row.is_active for row in history] == [False, False, True]
    assert all(row.completed_at is not None for row in history[:2])
    assert reassigned.previous_assignee_id == alice.id
    assert reassigned.assigned_by_id == lead.id
    assert moved.previous_assignee_id == bob.id
    assert active.id == moved.id
    assert active.assigned_to_id == alice.id


def test_manual_assign_ignores_capacity(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice", max_active_tickets=1)
            lead = await add_agent(session, "lead", department=Department.vip)
            await open_ticket(session, customer)
            overflow = await open_ticket(session, customer)
            assignment = await manual_assign(
                session, overflow.ticket.id, alice.id, as_identity(lead)
            )
            await session.commit()
        return overflow.assignment, assignment.assigned_to_id, alice.id

    auto, assigned_to, alice = run_db(scenario)
    assert auto is None
    assert assigned_to == alice


def test_assignment_errors(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            outsider = await add_user(session, "eve")
            alice = await add_agent(session, "alice")
            lead = await add_agent(session, "lead", department=Department.vip)
            created = await open_ticket(session, customer, category="content")
            ticket_id = created.ticket.id
            staff = as_identity(lead)

            with pytest.raises(Forbidden):
                await manual_assign(session, ticket_id, alice.id, as_identity(customer))
            with pytest.raises(NotFound):
                await manual_assign(session, 9999, alice.id, staff)
            with pytest.raises(AgentNotEligible):
                await manual_assign(session, ticket_id, outsider.id, staff)
            with pytest.raises(InvalidState):
                await transfer(session, ticket_id, alice.id, staff)

            await manual_assign(session, ticket_id, alice.id, staff)
            with pytest.raises(InvalidState):
                await transfer(session, ticket_id, alice.id, staff)
            await session.rollback()

    run_db(scenario)


def test_concurrent_tickets_cannot_overfill_the_last_slot(run_db) -> None:
    async def create(sessionmaker, customer: Identity):
        async with sessionmaker() as session:
            created = await create_ticket(
                session,
                customer,
                category="technical",
                subject="Playback stutters",
                description="Every video stutters after a minute.",
            )
            await session.commit()
            return created.assignment is not None

    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = as_identity(await add_user(session, "carol"))
            alice = await add_agent(session, "alice", max_active_tickets=1)
            await session.commit()

        assigned = await asyncio.gather(*(create(sessionmaker, customer) for _ in range(5)))
        async with sessionmaker() as session:
            active = await session.scalar(
                select(func.count())
                .select_from(TicketAssignment)
                .where(
                    TicketAssignment.assigned_to_id == alice.id,
                    TicketAssignment.is_active.is_(True),
                )
            )
        return assigned, active

    assigned, active = run_db(scenario)
    assert sorted(assigned) == [False, False, False, False, True]
    assert active == 1
