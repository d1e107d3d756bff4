from __future__ import annotations

from datetime import UTC, datetime, timedelta
from functools import partial
from uuid import UUID, uuid4

import pytest

import tutorbook.modules.meetings.service as meetings_service_module
from tests.fakes import FakeStore, FakeUnitOfWork, make_user
from tutorbook.core.enums import BookingStatusEnum, RoleEnum, SlotStatusEnum
from tutorbook.modules.meetings.provider import JitsiMeetProvider
from tutorbook.modules.meetings.service import MeetingAccessService
from tutorbook.shared.exceptions import ForbiddenException, InvalidStateException, NotFoundException

START_AT = datetime(2026, 11, 2, 17, 0, tzinfo=UTC)


def setup_meeting(monkeypatch: pytest.MonkeyPatch, now: datetime):
    monkeypatch.setattr(meetings_service_module, "utc_now", lambda: now)
    store = FakeStore()
    professor = store.add_user(make_user(RoleEnum.ADMIN, first_name="Grace", last_name="Hopper"))
    student = store.add_user(make_user(RoleEnum.STUDENT))
    slot = store.add_slot(
        professor,
        START_AT,
        START_AT + timedelta(hours=1),
        current_participants=1,
        status=SlotStatusEnum.FULLY_BOOKED,
        meeting_room_name="tutorbook-room-1",
    )
    booking = store.add_booking(slot, student)
    service = MeetingAccessService(
        partial(FakeUnitOfWork, store),
        JitsiMeetProvider("meet.example.org", "tutorbook"),
        early_join_minutes=15,
        late_join_minutes=30,
    )
    return store, service, professor, student, slot, booking


def test_jitsi_room_names_are_unguessable_and_urls_carry_display_name() -> None:
    provider = JitsiMeetProvider("meet.example.org", "tutorbook")
    slot_id = UUID("7f1c5a02-3f2a-4b53-9a77-0e6fb0c2d9a4")

    first = provider.create_room(slot_id)
    second = provider.create_room(slot_id)

    assert first.startswith(f"tutorbook-{slot_id}-")
    assert first != second
    assert provider.get_join_url(first) == f"https://meet.example.org/{first}"
    assert provider.get_join_url(first, "Ada Lovelace") == (
        f'https://meet.example.org/{first}#userInfo.displayName="Ada%20Lovelace"'
    )


@pytest.mark.asyncio
async def test_participant_joins_inside_window(monkeypatch: pytest.MonkeyPatch) -> None:
    _, service, _, student, slot, booking = setup_meeting(monkeypatch, START_AT - timedelta(minutes=10))

    joined = await service.join(slot.id, student)

    assert joined.role == "student"
    assert joined.booking_id == booking.id
    assert joined.meeting_url == 'https://meet.example.org/tutorbook-room-1#userInfo.displayName="Ada%20Lovelace"'


@pytest.mark.asyncio
async def test_professor_joins_without_booking(monkeypatch: pytest.MonkeyPatch) -> None:
    _, service, professor, _, slot, _ = setup_meeting(monkeypatch, START_AT + timedelta(hours=1, minutes=20))

    joined = await service.join(slot.id, professor)

    assert joined.role == "professor"
    assert joined.booking_id is None


@pytest.mark.asyncio
async def test_join_is_refused_too_early_and_too_late(monkeypatch: pytest.MonkeyPatch) -> None:
    _, service, _, student, slot, _ = setup_meeting(monkeypatch, START_AT - timedelta(minutes=40))
    with pytest.raises(ForbiddenException, match="starts in 40 minutes"):
        await service.join(slot.id, student)

    monkeypatch.setattr(meetings_service_module, "utc_now", lambda: START_AT + timedelta(hours=1, minutes=31))
    with pytest.raises(ForbiddenException, match="has ended"):
        await service.join(slot.id, student)


@pytest.mark.asyncio
async def test_join_requires_confirmed_booking(monkeypatch: pytest.MonkeyPatch) -> None:
    store, service, _, student, slot, booking = setup_meeting(monkeypatch, START_AT)
    outsider = store.add_user(make_user(RoleEnum.STUDENT, first_name="Eve"))

    with pytest.raises(ForbiddenException, match="not authorized"):
        await service.join(slot.id, outsider)

    booking.status = BookingStatusEnum.CANCELLED_BY_STUDENT
    with pytest.raises(ForbiddenException, match="not authorized"):
        await service.join(slot.id, student)


@pytest.mark.asyncio
async def test_join_rejects_cancelled_roomless_and_missing_slots(monkeypatch: pytest.MonkeyPatch) -> None:
    store, service, professor, _, slot, _ = setup_meeting(monkeypatch, START_AT)

    with pytest.raises(NotFoundException):
        await service.join(uuid4(), professor)

    store.slots[slot.id].status = SlotStatusEnum.CANCELLED
    with pytest.raises(ForbiddenException, match="cancelled"):
        await service.join(slot.id, professor)

    store.slots[slot.id].meeting_room_name = None
    with pytest.raises(InvalidStateException, match="meeting room"):
        await service.join(slot.id, professor)
