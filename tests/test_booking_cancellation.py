from __future__ import annotations

from datetime import timedelta
from functools import partial

import pytest

from tests.fakes import FakeStore, FakeUnitOfWork, RecordingNotifier, make_user
from tutorbook.core.enums import BookingStatusEnum, CancelledByEnum, RoleEnum, SlotStatusEnum, SlotTypeEnum
from tutorbook.modules.booking.service import ReservationService
from tutorbook.modules.meetings.provider import JitsiMeetProvider
from tutorbook.shared.exceptions import ForbiddenException, InvalidStateException, NotFoundException
from tutorbook.shared.utils import utc_now


def make_service(store: FakeStore, notifier: RecordingNotifier) -> ReservationService:
    return ReservationService(
        partial(FakeUnitOfWork, store),
        JitsiMeetProvider(),
        notifier,
        cancellation_window_hours=24,
        retry_backoff_seconds=0,
    )


def booked_slot(starts_in: timedelta, *, capacity: int = 1, taken: int = 1):
    store = FakeStore()
    professor = store.add_user(make_user(RoleEnum.ADMIN, first_name="Grace", last_name="Hopper"))
    student = store.add_user(make_user(RoleEnum.STUDENT))
    start_at = utc_now() + starts_in
    slot = store.add_slot(
        professor,
        start_at,
        start_at + timedelta(hours=1),
        slot_type=SlotTypeEnum.INDIVIDUAL if capacity == 1 else SlotTypeEnum.GROUP,
        max_participants=capacity,
        current_participants=taken,
        status=SlotStatusEnum.FULLY_BOOKED if taken >= capacity else SlotStatusEnum.AVAILABLE,
        meeting_room_name="tutorbook-room",
    )
    booking = store.add_booking(slot, student)
    return store, professor, student, slot, booking


@pytest.mark.asyncio
async def test_student_cancel_reopens_individual_slot() -> None:
    store, _, student, slot, booking = booked_slot(timedelta(days=2))
    notifier = RecordingNotifier()

    cancelled = await make_service(store, notifier).cancel(booking.id, student, "Feeling sick")

    assert cancelled.status == BookingStatusEnum.CANCELLED_BY_STUDENT
    assert cancelled.cancellation_reason == "Feeling sick"
    assert cancelled.cancelled_at is not None
    assert store.bookings[booking.id].status == BookingStatusEnum.CANCELLED_BY_STUDENT
    assert store.slots[slot.id].current_participants == 0
    assert store.slots[slot.id].status == SlotStatusEnum.AVAILABLE
    assert store.slots[slot.id].version == 2
    assert cancelled.slot.status == SlotStatusEnum.AVAILABLE
    _, _, _, reason, cancelled_by = notifier.cancelled[0]
    assert (reason, cancelled_by) == ("Feeling sick", CancelledByEnum.STUDENT)


@pytest.mark.asyncio
async def test_cancel_frees_one_place_in_full_group_slot() -> None:
    store, _, student, slot, booking = booked_slot(timedelta(days=2), capacity=5, taken=5)

    await make_service(store, RecordingNotifier()).cancel(booking.id, student)

    assert store.slots[slot.id].current_participants == 4
    assert store.slots[slot.id].status == SlotStatusEnum.AVAILABLE


@pytest.mark.asyncio
async def test_student_cannot_cancel_inside_window_but_admin_can() -> None:
    store, professor, student, slot, booking = booked_slot(timedelta(hours=23))
    notifier = RecordingNotifier()
    service = make_service(store, notifier)

    with pytest.raises(InvalidStateException, match="at least 24 hours in advance"):
        await service.cancel(booking.id, student)
    assert store.bookings[booking.id].status == BookingStatusEnum.CONFIRMED
    assert store.slots[slot.id].current_participants == 1

    cancelled = await service.cancel(booking.id, professor, "Professor unavailable")

    assert cancelled.status == BookingStatusEnum.CANCELLED_BY_PROFESSOR
    assert store.slots[slot.id].current_participants == 0
    assert notifier.cancelled[0][4] == CancelledByEnum.PROFESSOR


@pytest.mark.asyncio
async def test_second_cancel_is_rejected_without_touching_capacity() -> None:
    store, _, student, slot, booking = booked_slot(timedelta(days=2), capacity=3, taken=2)
    service = make_service(store, RecordingNotifier())
    await service.cancel(booking.id, student)

    with pytest.raises(InvalidStateException, match="cannot be cancelled"):
        await service.cancel(booking.id, student)

    assert store.slots[slot.id].current_participants == 1


@pytest.mark.asyncio
async def test_other_student_cannot_cancel_or_view_booking() -> None:
    store, _, _, _, booking = booked_slot(timedelta(days=2))
    stranger = store.add_user(make_user(RoleEnum.STUDENT, first_name="Eve"))
    service = make_service(store, RecordingNotifier())

    with pytest.raises(ForbiddenException):
        await service.cancel(booking.id, stranger)
    with pytest.raises(ForbiddenException):
        await service.get_booking(booking.id, stranger)

    assert store.bookings[booking.id].status == BookingStatusEnum.CONFIRMED


@pytest.mark.asyncio
async def test_cancel_unknown_booking_raises_not_found() -> None:
    store, _, student, _, booking = booked_slot(timedelta(days=2))

    with pytest.raises(NotFoundException):
        await make_service(store, RecordingNotifier()).cancel(booking.slot_id, student)


@pytest.mark.asyncio
async def test_cancel_notifier_failure_keeps_cancellation() -> None:
    store, _, student, slot, booking = booked_slot(timedelta(days=2))

    cancelled = await make_service(store, RecordingNotifier(fail=True)).cancel(booking.id, student)

    assert cancelled.status == BookingStatusEnum.CANCELLED_BY_STUDENT
    assert store.slots[slot.id].current_participants == 0


@pytest.mark.asyncio
async def test_participants_visible_to_professor_and_participants_only() -> None:
    store, professor, student, slot, booking = booked_slot(timedelta(days=2), capacity=3, taken=1)
    stranger = store.add_user(make_user(RoleEnum.STUDENT, first_name="Eve"))
    service = make_service(store, RecordingNotifier())

    assert [item.id for item in await service.list_participants(slot.id, professor)] == [booking.id]
    assert [item.id for item in await service.list_participants(slot.id, student)] == [booking.id]
    with pytest.raises(ForbiddenException):
        await service.list_participants(slot.id, stranger)
