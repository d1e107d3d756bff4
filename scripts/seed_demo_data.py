"""Seed idempotent demo data for local/non-production environments."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from functools import partial

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tutorbook.core.config import get_settings
from tutorbook.core.database import SessionLocal, close_engine, session_scope
from tutorbook.core.enums import RoleEnum, SlotTypeEnum
from tutorbook.core.security import hash_password, verify_password
from tutorbook.core.unit_of_work import UnitOfWork
from tutorbook.modules.identity.models import Role, User
from tutorbook.modules.notifications.dispatcher import get_booking_notifier
from tutorbook.modules.scheduling.schemas import SlotCreate
from tutorbook.modules.scheduling.service import SchedulingService
from tutorbook.shared.exceptions import InvalidStateException

DEMO_PASSWORD = "DemoPass123!"

DEMO_PROFESSOR_EMAIL = "demo-professor@tutorbook.dev"
DEMO_STUDENT_EMAILS = ("demo-student@tutorbook.dev", "demo-student-2@tutorbook.dev")

DEMO_SLOT_DAY_OFFSETS = (2, 3, 4, 5, 6)
DEMO_SLOT_START_HOURS = (12, 18)
DEMO_SLOT_DURATION_MINUTES = 60
DEMO_GROUP_SLOT_CAPACITY = 5


@dataclass(slots=True)
class SeedStats:
    roles_created: int = 0
    users_created: int = 0
    users_updated: int = 0
    slots_created: int = 0
    slots_skipped: int = 0


async def _ensure_roles(session: AsyncSession) -> int:
    created = 0
    for role_name in (RoleEnum.STUDENT, RoleEnum.ADMIN):
        existing = await session.scalar(select(Role).where(Role.name == role_name))
        if existing is None:
            session.add(Role(name=role_name))
            created += 1
    await session.flush()
    return created


async def _ensure_user(
    session: AsyncSession,
    *,
    email: str,
    first_name: str,
    last_name: str,
    role_name: RoleEnum,
    timezone: str,
) -> tuple[User, bool]:
    role = await session.scalar(select(Role).where(Role.name == role_name))
    if role is None:
        raise RuntimeError(f"Role {role_name} was not found after ensure_roles")

    user = await session.scalar(
        select(User).options(selectinload(User.role)).where(User.email == email),
    )
    created = False
    if user is None:
        user = User(
            email=email,
            password_hash=hash_password(DEMO_PASSWORD),
            first_name=first_name,
            last_name=last_name,
            timezone=timezone,
            is_active=True,
            role_id=role.id,
        )
        session.add(user)
        created = True
    else:
        if not verify_password(DEMO_PASSWORD, user.password_hash):
            user.password_hash = hash_password(DEMO_PASSWORD)
        if user.role_id != role.id:
            user.role_id = role.id
        if not user.is_active:
            user.is_active = True

    await session.flush()
    await session.refresh(user, attribute_names=["role"])
    return user, created


def _build_demo_slots(now: datetime) -> list[SlotCreate]:
    payloads: list[SlotCreate] = []
    for day_offset in DEMO_SLOT_DAY_OFFSETS:
        target_date = (now + timedelta(days=day_offset)).date()
        for hour in DEMO_SLOT_START_HOURS:
            start_at = datetime.combine(target_date, time(hour=hour, tzinfo=UTC))
            end_at = start_at + timedelta(minutes=DEMO_SLOT_DURATION_MINUTES)
            if hour == DEMO_SLOT_START_HOURS[-1]:
                payloads.append(
                    SlotCreate(
                        start_at=start_at,
                        end_at=end_at,
                        slot_type=SlotTypeEnum.GROUP,
                        max_participants=DEMO_GROUP_SLOT_CAPACITY,
                        title="Group practice",
                    ),
                )
            else:
                payloads.append(SlotCreate(start_at=start_at, end_at=end_at, title="Individual lesson"))
    return payloads


async def _ensure_demo_slots(professor: User) -> tuple[int, int]:
    """Create demo slots through the scheduling service; existing ones overlap and are skipped."""
    service = SchedulingService(partial(UnitOfWork, SessionLocal), get_booking_notifier())
    created = skipped = 0
    for payload in _build_demo_slots(datetime.now(UTC)):
        try:
            await service.create_slot(payload, professor)
        except InvalidStateException:
            skipped += 1
            continue
        created += 1
    return created, skipped


async def _run_seed(*, allow_production: bool) -> SeedStats:
    settings = get_settings()
    app_env = settings.app_env.strip().lower()
    if app_env in {"production", "prod"} and not allow_production:
        raise RuntimeError(
            "Refusing to seed demo data in production. "
            "Re-run with --allow-production only if you are absolutely sure.",
        )

    stats = SeedStats()

    async with session_scope() as session:
        stats.roles_created = await _ensure_roles(session)

        professor, professor_created = await _ensure_user(
            session,
            email=DEMO_PROFESSOR_EMAIL,
            first_name="Demo",
            last_name="Professor",
            role_name=RoleEnum.ADMIN,
            timezone="UTC",
        )
        created_flags = [professor_created]
        for index, email in enumerate(DEMO_STUDENT_EMAILS, start=1):
            _, student_created = await _ensure_user(
                session,
                email=email,
                first_name="Demo",
                last_name=f"Student {index}",
                role_name=RoleEnum.STUDENT,
                timezone="UTC",
            )
            created_flags.append(student_created)

        stats.users_created = sum(created_flags)
        stats.users_updated = len(created_flags) - stats.users_created

    stats.slots_created, stats.slots_skipped = await _ensure_demo_slots(professor)
    return stats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Seed idempotent demo data for Tutorbook (professor, students, upcoming slots).",
    )
    parser.add_argument(
        "--allow-production",
        action="store_true",
        help="Allow seeding even when APP_ENV is production/prod.",
    )
    return parser


def _print_summary(stats: SeedStats) -> None:
    print("Demo seed completed.")
    print(f"- Roles created: {stats.roles_created}")
    print(f"- Users created: {stats.users_created}")
    print(f"- Users updated: {stats.users_updated}")
    print(f"- Slots created: {stats.slots_created}")
    print(f"- Slots already present: {stats.slots_skipped}")
    print("")
    print("Demo credentials (non-production only):")
    print(f"- professor: {DEMO_PROFESSOR_EMAIL} / {DEMO_PASSWORD}")
    for email in DEMO_STUDENT_EMAILS:
        print(f"- student:   {email} / {DEMO_PASSWORD}")


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        stats = asyncio.run(_run_seed(allow_production=args.allow_production))
    except Exception as exc:
        print(f"Demo seed failed: {exc}")
        return 1
    finally:
        asyncio.run(close_engine())

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
