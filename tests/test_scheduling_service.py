from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from functools import partial
from zoneinfo import ZoneInfo

import pytest

from tests.fakes import FakeStore, FakeUnitOfWork, RecordingNotifier, make_user
from tutorbook.core.enums import BookingStatusEnum, CancelledByEnum, RoleEnum, SlotStatusEnum, SlotTypeEnum
from tutorbook.modules.scheduling.schemas import (
    RecurringPatternCreate,
    SlotBulkCreate,
    SlotCreate,
    SlotUpdate,
)
from tutorbook.modules.scheduling.service import SchedulingService, js_weekday, weekly_occurrences
from tutorbook.shared.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from tutorbook.shared.utils import utc_now


def make_service(store: FakeStore, notifier: RecordingNotifier | None = None) -> SchedulingService:
    return SchedulingService(partial(FakeUnitOfWork, store), notifier or RecordingNotifier(), generate_weeks_ahead=4)


def setup_store():
    store = FakeStore()
    professor = store.add_user(make_user(RoleEnum.ADMIN, first_name="Grace", last_name="Hopper"))
    return store, professor


def future_hour(days: int = 3, hour: int = 10) -> datetime:
    day = utc_now().date() + timedelta(days=days)
    return datetime(day.year, day.month, day.day, hour, tzinfo=UTC)


def next_monday() -> date:
    today = utc_now().date()
    return today + timedelta(days=14 - today.weekday())


def test_js_weekday_counts_from_sunday() -> None:
    assert js_weekday(date(2026, 7, 12)) == 0
    assert js_weekday(date(2026, 7, 6)) == 1
    assert js_weekday(date(2026, 7, 11)) == 6


def test_weekly_occurrences_use_professor_wall_clock() -> None:
    madrid = ZoneInfo("Europe/Madrid")

    summer = weekly_occurrences(date(2026, 7, 6), date(2026, 7, 12), [1, 0], "10:00", "11:00", madrid)
    winter = weekly_occurrences(date(2026, 1, 5), date(2026, 1, 5), [1], "10:00", "11:00", madrid)

    assert summer == [
        (datetime(2026, 7, 6, 8, tzinfo=UTC), datetime(2026, 7, 6, 9, tzinfo=UTC)),
        (datetime(2026, 7, 12, 8, tzinfo=UTC), datetime(2026, 7, 12, 9, tzinfo=UTC)),
    ]
    assert winter == [(datetime(2026, 1, 5, 9, tzinfo=UTC), datetime(2026, 1, 5, 10, tzinfo=UTC))]


@pytest.mark.asyncio
async def test_create_slot_rejects_overlap_but_allows_touching_edges() -> None:
    store, professor = setup_store()
    service = make_service(store)
    start_at = future_hour()

    first = await service.create_slot(SlotCreate(start_at=start_at, end_at=start_at + timedelta(hours=1)), professor)
    with pytest.raises(InvalidStateException, match="overlaps"):
        await service.create_slot(
            SlotCreate(start_at=start_at + timedelta(minutes=30), end_at=start_at + timedelta(hours=2)),
            professor,
        )
    second = await service.create_slot(
        SlotCreate(start_at=start_at + timedelta(hours=1), end_at=start_at + timedelta(hours=2)),
        professor,
    )

    assert first.status == SlotStatusEnum.AVAILABLE
    assert first.version == 1
    assert first.current_participants == 0
    assert set(store.slots) == {first.id, second.id}


@pytest.mark.asyncio
async def test_create_slot_requires_admin_and_future_start() -> None:
    store, professor = setup_store()
    student = store.add_user(make_user(RoleEnum.STUDENT))
    service = make_service(store)
    start_at = future_hour()

    with pytest.raises(ForbiddenException):
        await service.create_slot(SlotCreate(start_at=start_at, end_at=start_at + timedelta(hours=1)), student)

    past = utc_now() - timedelta(hours=3)
    with pytest.raises(InvalidStateException, match="future"):
        await service.create_slot(SlotCreate(start_at=past, end_at=past + timedelta(hours=1)), professor)

    assert store.slots == {}


@pytest.mark.asyncio
async def test_private_slot_requires_known_students() -> None:
    store, professor = setup_store()
    other_admin = store.add_user(make_user(RoleEnum.ADMIN))
    start_at = future_hour()

    with pytest.raises(InvalidStateException, match="Unknown students"):
        await make_service(store).create_slot(
            SlotCreate(
                start_at=start_at,
                end_at=start_at + timedelta(hours=1),
                is_private=True,
                allowed_student_ids=[other_admin.id],
            ),
            professor,
        )


@pytest.mark.asyncio
async def test_bulk_create_uses_sunday_based_day_numbers() -> None:
    store, professor = setup_store()
    monday = next_monday()

    slots = await make_service(store).bulk_create_slots(
        SlotBulkCreate(
            start_date=monday,
            end_date=monday + timedelta(days=6),
            days_of_week=[3, 1],
            start_time="09:00",
            end_time="10:00",
        ),
        professor,
    )

    assert [slot.start_at.date() for slot in slots] == [monday, monday + timedelta(days=2)]
    assert all(slot.start_at.hour == 9 for slot in slots)


@pytest.mark.asyncio
async def test_bulk_create_rejects_whole_batch_on_overlap() -> None:
    store, professor = setup_store()
    monday = next_monday()
    wednesday = datetime(monday.year, monday.month, monday.day, 9, 30, tzinfo=UTC) + timedelta(days=2)
    existing = store.add_slot(professor, wednesday, wednesday + timedelta(hours=1))

    with pytest.raises(InvalidStateException, match="overlaps"):
        await make_service(store).bulk_create_slots(
            SlotBulkCreate(
                start_date=monday,
                end_date=monday + timedelta(days=6),
                days_of_week=[1, 3],
                start_time="09:00",
                end_time="10:00",
            ),
            professor,
        )

    assert list(store.slots) == [existing.id]


@pytest.mark.asyncio
async def test_recurring_pattern_generates_weeks_ahead_and_skips_overlaps() -> None:
    store, professor = setup_store()
    monday = next_monday()
    busy = datetime(monday.year, monday.month, monday.day, 18, tzinfo=UTC) + timedelta(days=7)
    store.add_slot(professor, busy, busy + timedelta(hours=1))

    pattern, slots = await make_service(store).create_recurring_pattern(
        RecurringPatternCreate(
            start_date=monday,
            days_of_week=[1],
            start_time="18:00",
            end_time="19:00",
            slot_type=SlotTypeEnum.GROUP,
            max_participants=4,
            generate_weeks_ahead=2,
        ),
        professor,
    )

    assert pattern.is_active is True
    assert pattern.end_date is None
    assert [slot.start_at.date() for slot in slots] == [monday, monday + timedelta(days=14)]
    assert all(slot.recurring_pattern_id == pattern.id for slot in slots)
    assert all(slot.max_participants == 4 for slot in slots)


@pytest.mark.asyncio
async def test_deactivate_pattern_cancels_only_unbooked_future_slots() -> None:
    store, professor = setup_store()
    service = make_service(store)
    monday = next_monday()
    pattern, slots = await service.create_recurring_pattern(
        RecurringPatternCreate(
            start_date=monday,
            end_date=monday + timedelta(days=14),
            days_of_week=[1],
            start_time="08:00",
            end_time="09:00",
        ),
        professor,
    )
    booked = store.slots[slots[0].id]
    booked.current_participants = 1
    booked.status = SlotStatusEnum.FULLY_BOOKED

    cancelled = await service.deactivate_recurring_pattern(pattern.id, professor)

    assert cancelled == 2
    assert store.patterns[pattern.id].is_active is False
    assert store.slots[slots[0].id].status == SlotStatusEnum.FULLY_BOOKED
    assert {store.slots[slot.id].status for slot in slots[1:]} == {SlotStatusEnum.CANCELLED}

    other_admin = store.add_user(make_user(RoleEnum.ADMIN))
    with pytest.raises(NotFoundException):
        await service.deactivate_recurring_pattern(pattern.id, other_admin)


@pytest.mark.asyncio
async def test_cancel_slot_cancels_every_confirmed_booking() -> None:
    store, professor = setup_store()
    start_at = future_hour()
    slot = store.add_slot(
        professor,
        start_at,
        start_at + timedelta(hours=1),
        slot_type=SlotTypeEnum.GROUP,
        max_participants=3,
        current_participants=2,
    )
    bookings = [store.add_booking(slot, store.add_user(make_user(RoleEnum.STUDENT))) for _ in range(2)]
    notifier = RecordingNotifier()
    service = make_service(store, notifier)

    cancelled_slot, count = await service.cancel_slot(slot.id, professor, "Sick")

    assert count == 2
    assert cancelled_slot.status == SlotStatusEnum.CANCELLED
    assert store.slots[slot.id].current_participants == 0
    assert store.slots[slot.id].version == 2
    assert {booking.status for booking in bookings} == {BookingStatusEnum.CANCELLED_BY_PROFESSOR}
    assert [call[4] for call in notifier.cancelled] == [CancelledByEnum.PROFESSOR] * 2

    with pytest.raises(InvalidStateException):
        await service.cancel_slot(slot.id, professor)


@pytest.mark.asyncio
async def test_cancel_slot_rolls_back_when_slot_changed_concurrently() -> None:
    store, professor = setup_store()
    start_at = future_hour()
    slot = store.add_slot(professor, start_at, start_at + timedelta(hours=1), current_participants=1)
    booking = store.add_booking(slot, store.add_user(make_user(RoleEnum.STUDENT)))
    store.cas_failures_remaining = 1

    with pytest.raises(ConflictException, match="modified concurrently"):
        await make_service(store).cancel_slot(slot.id, professor)

    assert booking.status == BookingStatusEnum.CONFIRMED
    assert store.slots[slot.id].status == SlotStatusEnum.AVAILABLE


@pytest.mark.asyncio
async def test_cancel_slot_only_by_owner() -> None:
    store, professor = setup_store()
    start_at = future_hour()
    slot = store.add_slot(professor, start_at, start_at + timedelta(hours=1))
    other_admin = store.add_user(make_user(RoleEnum.ADMIN))

    with pytest.raises(ForbiddenException):
        await make_service(store).cancel_slot(slot.id, other_admin)


@pytest.mark.asyncio
async def test_update_slot_capacity_keeps_status_consistent() -> None:
    store, professor = setup_store()
    start_at = future_hour()
    slot = store.add_slot(
        professor,
        start_at,
        start_at + timedelta(hours=1),
        slot_type=SlotTypeEnum.GROUP,
        max_participants=5,
        current_participants=3,
    )
    service = make_service(store)

    with pytest.raises(InvalidStateException, match="Capacity cannot be lower"):
        await service.update_slot(slot.id, SlotUpdate(max_participants=2), professor)

    updated = await service.update_slot(slot.id, SlotUpdate(max_participants=3, title="Full house"), professor)

    assert updated.status == SlotStatusEnum.FULLY_BOOKED
    assert updated.max_participants == 3
    assert updated.title == "Full house"
    assert updated.version == 2


@pytest.mark.asyncio
async def test_update_slot_rejects_overlapping_move_and_lost_update() -> None:
    store, professor = setup_store()
    start_at = future_hour()
    slot = store.add_slot(professor, start_at, start_at + timedelta(hours=1))
    store.add_slot(professor, start_at + timedelta(hours=2), start_at + timedelta(hours=3))
    service = make_service(store)

    with pytest.raises(InvalidStateException, match="overlaps"):
        await service.update_slot(
            slot.id,
            SlotUpdate(end_at=start_at + timedelta(hours=2, minutes=30)),
            professor,
        )

    store.cas_failures_remaining = 1
    with pytest.raises(ConflictException):
        await service.update_slot(slot.id, SlotUpdate(description="Bring sheet music"), professor)
    assert store.slots[slot.id].description is None

    moved = await service.update_slot(slot.id, SlotUpdate(end_at=start_at + timedelta(hours=2)), professor)
    assert moved.end_at == start_at + timedelta(hours=2)


@pytest.mark.asyncio
async def test_update_slot_makes_slot_private_for_known_students() -> None:
    store, professor = setup_store()
    student = store.add_user(make_user(RoleEnum.STUDENT))
    start_at = future_hour()
    slot = store.add_slot(professor, start_at, start_at + timedelta(hours=1))
    service = make_service(store)

    with pytest.raises(InvalidStateException, match="at least one allowed student"):
        await service.update_slot(slot.id, SlotUpdate(is_private=True), professor)

    updated = await service.update_slot(
        slot.id,
        SlotUpdate(is_private=True, allowed_student_ids=[student.id]),
        professor,
    )

    assert updated.is_private is True
    assert updated.allowed_student_ids == [student.id]
    assert store.slots[slot.id].allowed_student_ids == [student.id]

    second = store.add_user(make_user(RoleEnum.STUDENT, first_name="Bob"))
    widened = await service.update_slot(
        slot.id,
        SlotUpdate(allowed_student_ids=[student.id, second.id]),
        professor,
    )

    assert widened.allowed_student_ids == [student.id, second.id]


@pytest.mark.asyncio
async def test_available_slots_hide_private_and_past_slots() -> None:
    store, professor = setup_store()
    student = store.add_user(make_user(RoleEnum.STUDENT))
    start_at = future_hour()
    public = store.add_slot(professor, start_at, start_at + timedelta(hours=1))
    store.add_slot(
        professor,
        start_at + timedelta(hours=2),
        start_at + timedelta(hours=3),
        is_private=True,
        allowed_student_ids=[professor.id],
    )
    store.add_slot(professor, utc_now() - timedelta(hours=2), utc_now() - timedelta(hours=1))

    items, total = await make_service(store).list_available_slots(
        student,
        utc_now() - timedelta(days=30),
        None,
        None,
        False,
        20,
        0,
    )

    assert total == 1
    assert [slot.id for slot in items] == [public.id]
