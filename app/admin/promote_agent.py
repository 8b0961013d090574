from __future__ import annotations

import argparse
import asyncio

from app.core.database import AsyncSessionLocal, init_db
from app.models.agent_profile import Department
from app.models.user import StaffRole
from app.services.agents import promote_user
from app.services.errors import SupportError


async def _promote(
    user_id: int,
    role: str,
    department: str,
    specialties: list[str],
    max_active_tickets: int | None,
    notes: str | None,
) -> None:
    await init_db()
    async with AsyncSessionLocal() as session:
        profile = await promote_user(
            session,
            user_id,
            role=role,
            department=department,
            specialties=specialties,
            max_active_tickets=max_active_tickets,
            notes=notes,
        )
        await session.commit()

    print(
        f"Promoted user {profile.user_id} to {role} "
        f"(department={profile.department.value}, capacity={profile.max_active_tickets})"
    )


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Promote an existing user to support staff and create their agent profile."
    )
    parser.add_argument("--user-id", type=int, required=True, help="Id of the user to promote.")
    parser.add_argument(
        "--role",
        default=StaffRole.agent.value,
        choices=[role.value for role in StaffRole],
        help="Staff role to grant.",
    )
    parser.add_argument(
        "--department",
        default=Department.general.value,
        choices=[department.value for department in Department],
        help="Department whose tickets the agent receives.",
    )
    parser.add_argument(
        "--specialty",
        action="append",
        default=[],
        dest="specialties",
        help="Specialty tag; may be given more than once.",
    )
    parser.add_argument(
        "--max-active-tickets",
        type=int,
        help="Concurrent ticket capacity (defaults to DEFAULT_MAX_ACTIVE_TICKETS).",
    )
    parser.add_argument("--notes", help="Free-form note stored on the profile.")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    try:
        asyncio.run(
            _promote(
                user_id=args.user_id,
                role=args.role,
                department=args.department,
                specialties=args.specialties,
                max_active_tickets=args.max_active_tickets,
                notes=args.notes,
            )
        )
    except SupportError as exc:
        raise SystemExit(str(exc)) from exc


if __name__ == "__main__":
    main()
