import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models import Department, StaffRole, TicketPriority, TicketResponse, TicketStatus
from app.services import bulk_update as bulk_update_module
from app.services.assignment import get_active_assignment, manual_assign
from app.services.bulk_update import BulkAction, bulk_update
from app.services.errors import Forbidden, InvalidState, ValidationError
from app.services.lifecycle import change_status
from app.services.ticket_store import get_ticket
from tests.factories import add_agent, add_user, as_identity, open_ticket


def test_bulk_status_reports_missing_tickets_without_aborting(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            t1 = (await open_ticket(session, customer)).ticket
            t3 = (await open_ticket(session, customer)).ticket
            result = await bulk_update(
                session,
                [t1.id, 9999, t3.id],
                "status",
                {"status": "resolved"},
                as_identity(alice),
            )
            await session.commit()
            statuses = [(await get_ticket(session, t.id)).status for t in (t1, t3)]
        return result, statuses, t1.id, t3.id

    result, statuses, t1_id, t3_id = run_db(scenario)
    assert result.action == BulkAction.status
    assert result.updated_count == 2
    assert result.updated_ids == [t1_id, t3_id]
    assert [item.as_dict() for item in result.errors] == [
        {"ticket_id": 9999, "error": "not_found", "message": "Ticket 9999 not found"}
    ]
    assert statuses == [TicketStatus.resolved, TicketStatus.resolved]


def test_bulk_item_failure_rolls_back_only_that_ticket(run_db, monkeypatch) -> None:
    async def change_then_fail(session, ticket_id, identity, status, reason=None):
        await change_status(session, ticket_id, identity, status, reason)
        if ticket_id == flaky_ids[0]:
            raise InvalidState("Refused after writing")

    flaky_ids: list[int] = []
    monkeypatch.setattr(bulk_update_module, "change_status", change_then_fail)

    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            agent = as_identity(alice)
            first = (await open_ticket(session, customer)).ticket
            flaky = (await open_ticket(session, customer)).ticket
            last = (await open_ticket(session, customer)).ticket
            await session.commit()
            flaky_ids.append(flaky.id)

            result = await bulk_update(
                session,
                [last.id, flaky.id, first.id, last.id],
                "status",
                {"status": "closed", "reason": "Duplicate of an incident"},
                agent,
            )
            await session.commit()
            statuses = [(await get_ticket(session, t.id)).status for t in (first, flaky, last)]
            notes = (
                await session.execute(
                    select(TicketResponse.ticket_id).where(TicketResponse.is_internal.is_(True))
                )
            ).scalars().all()
        return result, statuses, notes, first.id, flaky.id, last.id

    result, statuses, notes, first_id, flaky_id, last_id = run_db(scenario)
    assert result.updated_ids == [first_id, last_id]
    assert [(item.ticket_id, item.error) for item in result.errors] == [
        (flaky_id, "invalid_state")
    ]
    assert statuses == [TicketStatus.closed, TicketStatus.open, TicketStatus.closed]
    assert sorted(notes) == [first_id, last_id]


def test_bulk_close_counts_already_closed_tickets_as_updated(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            agent = as_identity(alice)
            done = (await open_ticket(session, customer)).ticket
            pending = (await open_ticket(session, customer)).ticket
            await change_status(session, done.id, agent, "closed")
            closed_at = done.closed_at

            result = await bulk_update(
                session, [done.id, pending.id], "status", {"status": "closed"}, agent
            )
            await session.commit()
        return result, done, closed_at, pending

    result, done, closed_at, pending = run_db(scenario)
    assert result.updated_count == 2
    assert result.errors == []
    assert done.closed_at == closed_at
    assert pending.status == TicketStatus.closed


def test_bulk_reports_lock_races_per_ticket(run_db, monkeypatch) -> None:
    class DriverError(Exception):
        sqlstate = "40P01"

    async def assign_or_deadlock(session, ticket_id, agent_id, identity, reason=None):
        if ticket_id == victim_ids[0]:
            raise OperationalError("SELECT 1", {}, DriverError("deadlock detected"))
        return await manual_assign(session, ticket_id, agent_id, identity, reason)

    victim_ids: list[int] = []
    monkeypatch.setattr(bulk_update_module, "manual_assign", assign_or_deadlock)

    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            bob = await add_agent(session, "bob", department=Department.general)
            kept = (await open_ticket(session, customer)).ticket
            victim = (await open_ticket(session, customer)).ticket
            victim_ids.append(victim.id)
            result = await bulk_update(
                session, [kept.id, victim.id], "assign", {"agent_id": bob.id}, as_identity(bob)
            )
            await session.commit()
        return result, kept.id, victim.id

    result, kept_id, victim_id = run_db(scenario)
    assert result.updated_ids == [kept_id]
    assert [(item.ticket_id, item.error) for item in result.errors] == [
        (victim_id, "transient_conflict")
    ]


def test_bulk_propagates_unexpected_database_errors(run_db, monkeypatch) -> None:
    async def broken(session, ticket_id, *args):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    monkeypatch.setattr(bulk_update_module, "change_status", broken)

    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            ticket = (await open_ticket(session, customer)).ticket
            with pytest.raises(OperationalError):
                await bulk_update(
                    session, [ticket.id], "status", {"status": "closed"}, as_identity(alice)
                )
            await session.rollback()

    run_db(scenario)


def test_bulk_assign_moves_every_ticket(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            await add_agent(session, "alice")
            bob = await add_agent(session, "bob", department=Department.general)
            ids = [(await open_ticket(session, customer)).ticket.id for _ in range(3)]
            result = await bulk_update(
                session, ids, BulkAction.assign, {"agent_id": bob.id}, as_identity(bob)
            )
            await session.commit()
            owners = [(await get_active_assignment(session, i)).assigned_to_id for i in ids]
        return result, owners, bob.id

    result, owners, bob_id = run_db(scenario)
    assert result.updated_count == 3
    assert result.errors == []
    assert owners == [bob_id, bob_id, bob_id]


def test_bulk_priority_is_admin_only(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            lead = await add_agent(
                session, "lead", department=Department.vip, staff_role=StaffRole.admin
            )
            ticket = (await open_ticket(session, customer)).ticket
            payload = {"priority": "urgent"}

            with pytest.raises(Forbidden):
                await bulk_update(session, [ticket.id], "priority", payload, as_identity(alice))
            with pytest.raises(Forbidden):
                await bulk_update(
                    session, [ticket.id], "status", {"status": "closed"}, as_identity(customer)
                )
            with pytest.raises(ValidationError):
                await bulk_update(session, [ticket.id], "delete", {}, as_identity(lead))
            with pytest.raises(ValidationError):
                await bulk_update(session, [], "priority", payload, as_identity(lead))
            with pytest.raises(ValidationError):
                await bulk_update(session, [ticket.id], "assign", {}, as_identity(lead))

            result = await bulk_update(session, [ticket.id], "priority", payload, as_identity(lead))
            await session.commit()
        return result, ticket.priority

    result, priority = run_db(scenario)
    assert result.updated_count == 1
    assert priority == TicketPriority.urgent
