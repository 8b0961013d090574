from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.models import (
    AppLog,
    AuditLog,
    Department,
    StaffRole,
    SupportTicket,
    TicketCategory,
    TicketPriority,
    TicketSequence,
    TicketStatus,
)
from app.services.access import Identity
from app.services.errors import (
    Forbidden,
    InvalidState,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from app.services.lifecycle import change_status
from app.services.support_tickets import (
    TicketFilters,
    change_priority,
    create_ticket,
    get_ticket_detail,
    list_tickets,
    list_user_tickets,
)
from app.utils.time import utc_now, utc_today
from tests.factories import add_agent, add_user, as_identity, open_ticket


def test_create_ticket_defaults_and_number(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            created = await create_ticket(
                session,
                as_identity(customer),
                category="account",
                subject="  Cannot change my email  ",
                description="The confirmation link says it expired.",
                attachments=["https://cdn.example.com/shot.png"],
                meta={"ip": "203.0.113.9"},
            )
            await session.commit()
            events = (
                await session.execute(select(AppLog).where(AppLog.event_type == "ticket_created"))
            ).scalars().all()
        return created, events

    created, events = run_db(scenario)
    ticket = created.ticket
    assert ticket.ticket_number == f"TKT-{utc_today():%Y%m%d}-0001"
    assert ticket.status == TicketStatus.open
    assert ticket.priority == TicketPriority.medium
    assert ticket.subject == "Cannot change my email"
    assert ticket.name == "Carol"
    assert ticket.email == "carol@example.com"
    assert ticket.attachments == ["https://cdn.example.com/shot.png"]
    assert ticket.meta["ip"] == "203.0.113.9"
    assert created.assignment is None
    assert len(events) == 1
    assert events[0].data["ticket_number"] == ticket.ticket_number


@pytest.mark.parametrize(
    "fields",
    [
        {"category": "billing", "subject": "Refund", "description": "Please refund my order."},
        {"category": "payment", "subject": "", "description": "Please refund my order."},
        {"category": "payment", "subject": "x" * 201, "description": "Please refund my order."},
        {"category": "payment", "subject": "Refund", "description": "too short"},
        {"category": "payment", "subject": "Refund", "description": "x" * 5001},
    ],
)
def test_invalid_ticket_writes_nothing(run_db, fields) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            await session.commit()
            with pytest.raises(ValidationError):
                await create_ticket(session, as_identity(customer), **fields)
            await session.commit()
            tickets = await session.scalar(select(func.count(SupportTicket.id)))
            sequences = await session.scalar(select(func.count()).select_from(TicketSequence))
        return tickets, sequences

    assert run_db(scenario) == (0, 0)


def test_create_ticket_requires_a_known_caller(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            with pytest.raises(Unauthenticated):
                await create_ticket(
                    session,
                    None,
                    category="other",
                    subject="Hello",
                    description="Is anybody there?",
                )
            with pytest.raises(Unauthenticated):
                await create_ticket(
                    session,
                    Identity(user_id=4242),
                    category="other",
                    subject="Hello",
                    description="Is anybody there?",
                )

    run_db(scenario)


def test_ticket_detail_access(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            customer = await add_user(session, "carol")
            stranger = await add_user(session, "eve")
            alice = await add_agent(session, "alice")
            ticket = (await open_ticket(session, customer)).ticket
            number = ticket.ticket_number
            await session.commit()

            with pytest.raises(Unauthenticated):
                await get_ticket_detail(session, number, None)
            with pytest.raises(Forbidden):
                await get_ticket_detail(session, number, as_identity(stranger))
            with pytest.raises(ValidationError):
                await get_ticket_detail(session, "not-a-ticket", as_identity(customer))
            with pytest.raises(NotFound):
                await get_ticket_detail(session, "TKT-19990101-0001", as_identity(customer))

            own = await get_ticket_detail(session, number, as_identity(customer))
            staff = await get_ticket_detail(session, number, as_identity(alice))
        return own.ticket.id, staff.ticket.id, ticket.id

    own_id, staff_id, ticket_id = run_db(scenario)
    assert own_id == staff_id == ticket_id


def test_staff_listing_filters_and_paginates(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            carol = await add_user(session, "carol")
            dan = await add_user(session, "dan")
            alice = await add_agent(session, "alice")
            dave = await add_agent(session, "dave", department=Department.billing)
            staff = as_identity(alice)

            tech = [(await open_ticket(session, carol, subject=f"Crash #{i}")).ticket for i in range(3)]
            billing = (
                await open_ticket(session, dan, category="payment", subject="Double charge")
            ).ticket
            await change_status(session, tech[0].id, staff, "resolved")
            await session.commit()

            page_one = await list_tickets(session, staff, page=1, limit=2)
            page_two = await list_tickets(session, staff, page=2, limit=2)
            resolved = await list_tickets(session, staff, TicketFilters(status=TicketStatus.resolved))
            payments = await list_tickets(
                session, staff, TicketFilters(category=TicketCategory.payment)
            )
            searched = await list_tickets(session, staff, TicketFilters(search="double"))
            by_number = await list_tickets(
                session, staff, TicketFilters(search=tech[1].ticket_number)
            )
            daves = await list_tickets(session, staff, TicketFilters(assigned_to=dave.id))
            recent = await list_tickets(
                session, staff, TicketFilters(date_from=utc_now() - timedelta(hours=1))
            )
            future = await list_tickets(
                session, staff, TicketFilters(date_from=utc_now() + timedelta(hours=1))
            )
            oldest_first = await list_tickets(
                session, staff, sort_by="ticket_number", sort_order="asc"
            )

            with pytest.raises(Forbidden):
                await list_tickets(session, as_identity(carol))
            with pytest.raises(ValidationError):
                await list_tickets(session, staff, sort_by="description")
            with pytest.raises(ValidationError):
                await list_tickets(session, staff, limit=500)
        return {
            "page_one": page_one,
            "page_two": page_two,
            "resolved": resolved,
            "payments": payments,
            "searched": searched,
            "by_number": by_number,
            "daves": daves,
            "recent": recent,
            "future": future,
            "oldest_first": oldest_first,
            "tech": [t.id for t in tech],
            "billing": billing.id,
        }

    r = run_db(scenario)
    assert r["page_one"].total == 4
    assert r["page_one"].pages == 2
    assert r["page_one"].pagination() == {"total": 4, "page": 1, "limit": 2, "pages": 2}
    assert len(r["page_one"].items) == 2 and len(r["page_two"].items) == 2
    assert {t.id for t in r["page_one"].items + r["page_two"].items} == set(r["tech"]) | {r["billing"]}
    assert [t.id for t in r["resolved"].items] == [r["tech"][0]]
    assert [t.id for t in r["payments"].items] == [r["billing"]]
    assert [t.id for t in r["searched"].items] == [r["billing"]]
    assert [t.id for t in r["by_number"].items] == [r["tech"][1]]
    assert [t.id for t in r["daves"].items] == [r["billing"]]
    assert r["recent"].total == 4
    assert r["future"].total == 0
    assert [t.id for t in r["oldest_first"].items] == r["tech"] + [r["billing"]]


def test_user_ticket_history(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            carol = await add_user(session, "carol")
            dan = await add_user(session, "dan")
            alice = await add_agent(session, "alice")
            first = (await open_ticket(session, carol)).ticket
            await open_ticket(session, carol)
            await open_ticket(session, dan)
            await change_status(session, first.id, as_identity(alice), "closed")
            await session.commit()

            own = await list_user_tickets(session, as_identity(carol), carol.id)
            closed = await list_user_tickets(session, as_identity(carol), carol.id, status="closed")
            by_staff = await list_user_tickets(session, as_identity(alice), carol.id)
            with pytest.raises(Forbidden):
                await list_user_tickets(session, as_identity(dan), carol.id)
            with pytest.raises(ValidationError):
                await list_user_tickets(session, as_identity(carol), carol.id, status="gone")
        return own, closed, by_staff, first.id

    own, closed, by_staff, first_id = run_db(scenario)
    assert own.total == 2
    assert own.limit == 10
    assert [t.id for t in closed.items] == [first_id]
    assert by_staff.total == 2


def test_change_priority_is_audited_and_admin_only(run_db) -> None:
    async def scenario(sessionmaker):
        async with sessionmaker() as session:
            carol = await add_user(session, "carol")
            alice = await add_agent(session, "alice")
            lead = await add_agent(
                session, "lead", department=Department.vip, staff_role=StaffRole.admin
            )
            ticket = (await open_ticket(session, carol)).ticket
            admin = as_identity(lead)

            with pytest.raises(Forbidden):
                await change_priority(session, ticket.id, "high", as_identity(alice))
            with pytest.raises(ValidationError):
                await change_priority(session, ticket.id, "critical", admin)
            with pytest.raises(InvalidState):
                await change_priority(session, ticket.id, "medium", admin)

            updated, previous = await change_priority(
                session, ticket.id, "urgent", admin, ip="198.51.100.7", user_agent="pytest"
            )
            await session.commit()
            audit = (await session.execute(select(AuditLog))).scalars().all()
        return updated.priority, previous, audit, lead.id

    priority, previous, audit, lead_id = run_db(scenario)
    assert priority == TicketPriority.urgent
    assert previous == TicketPriority.medium
    assert len(audit) == 1
    assert audit[0].actor_id == lead_id
    assert audit[0].action == "priority"
    assert audit[0].before_json == {"priority": "medium"}
    assert audit[0].after_json == {"priority": "urgent"}
    assert audit[0].ip == "198.51.100.7"
