from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import timedelta
from functools import partial

import httpx
import pytest
import pytest_asyncio

from tests.fakes import FakeStore, FakeUnitOfWork, RecordingNotifier, make_user
from tutorbook.core.enums import RoleEnum, SlotStatusEnum
from tutorbook.main import app
from tutorbook.modules.booking.service import ReservationService, get_reservation_service
from tutorbook.modules.identity.service import get_current_user
from tutorbook.modules.meetings.provider import JitsiMeetProvider
from tutorbook.shared.utils import utc_now


class ApiContext:
    def __init__(self) -> None:
        self.store = FakeStore()
        self.professor = self.store.add_user(make_user(RoleEnum.ADMIN, first_name="Grace", last_name="Hopper"))
        self.student = self.store.add_user(make_user(RoleEnum.STUDENT))
        self.current_user = self.student
        start_at = utc_now() + timedelta(days=3)
        self.slot = self.store.add_slot(self.professor, start_at, start_at + timedelta(hours=1))
        self.service = ReservationService(
            partial(FakeUnitOfWork, self.store),
            JitsiMeetProvider("meet.example.org", "tutorbook"),
            RecordingNotifier(),
            retry_backoff_seconds=0,
        )


@pytest_asyncio.fixture()
async def api() -> AsyncIterator[tuple[httpx.AsyncClient, ApiContext]]:
    context = ApiContext()
    app.dependency_overrides[get_current_user] = lambda: context.current_user
    app.dependency_overrides[get_reservation_service] = lambda: context.service
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver/api/v1") as client:
            yield client, context
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_reserve_endpoint_returns_booking_and_meeting_url(api) -> None:
    client, context = api

    response = await client.post("/bookings", json={"slot_id": str(context.slot.id)})

    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["slot"]["id"] == str(context.slot.id)
    assert payload["slot"]["status"] == SlotStatusEnum.FULLY_BOOKED.value
    assert payload["slot"]["current_participants"] == 1
    assert payload["slot"]["version"] == 2
    assert payload["slot"]["meeting_url"].startswith("https://meet.example.org/tutorbook-")
    assert payload["booking_id"] in {str(booking_id) for booking_id in context.store.bookings}


@pytest.mark.asyncio
async def test_reserve_endpoint_maps_domain_errors(api) -> None:
    client, context = api
    await client.post("/bookings", json={"slot_id": str(context.slot.id)})

    response = await client.post("/bookings", json={"slot_id": str(context.slot.id)})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_reserve_endpoint_is_student_only(api) -> None:
    client, context = api
    context.current_user = context.professor

    response = await client.post("/bookings", json={"slot_id": str(context.slot.id)})

    assert response.status_code == 403
    assert context.store.bookings == {}


@pytest.mark.asyncio
async def test_cancel_endpoint_returns_cancelled_booking(api) -> None:
    client, context = api
    reserved = (await client.post("/bookings", json={"slot_id": str(context.slot.id)})).json()

    response = await client.post(f"/bookings/{reserved['booking_id']}/cancel", json={"reason": "Conflict at work"})

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["status"] == "cancelled_by_student"
    assert payload["cancellation_reason"] == "Conflict at work"
    assert payload["slot"]["status"] == SlotStatusEnum.AVAILABLE.value

    again = await client.post(f"/bookings/{reserved['booking_id']}/cancel", json={})
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_cancel_endpoint_accepts_request_without_body(api) -> None:
    client, context = api
    reserved = (await client.post("/bookings", json={"slot_id": str(context.slot.id)})).json()

    response = await client.post(f"/bookings/{reserved['booking_id']}/cancel")

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "cancelled_by_student"
    assert response.json()["cancellation_reason"] is None
