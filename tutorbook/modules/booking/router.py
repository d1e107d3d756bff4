"""Booking API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from tutorbook.core.enums import BookingStatusEnum, RoleEnum
from tutorbook.modules.booking.schemas import (
    BookingCancelRequest,
    BookingRead,
    ReservationRead,
    ReservationRequest,
)
from tutorbook.modules.booking.service import ReservationService, get_reservation_service
from tutorbook.modules.identity.service import get_current_user, require_roles
from tutorbook.modules.scheduling.schemas import SlotRead
from tutorbook.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def reserve_slot(
    payload: ReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user=Depends(require_roles(RoleEnum.STUDENT)),
) -> ReservationRead:
    """Book one place in a slot."""
    result = await service.reserve(payload.slot_id, current_user)
    slot = SlotRead.model_validate(result.slot).model_copy(update={"meeting_url": result.meeting_url})
    return ReservationRead(booking_id=result.booking_id, slot=slot)


@router.post("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancelRequest | None = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user=Depends(get_current_user),
) -> BookingRead:
    """Cancel a confirmed booking."""
    reason = payload.reason if payload is not None else None
    booking = await service.cancel(booking_id, current_user, reason)
    return BookingRead.model_validate(booking)


@router.get("/my", response_model=Page[BookingRead])
async def list_my_bookings(
    booking_status: BookingStatusEnum | None = Query(default=None, alias="status"),
    upcoming: bool = Query(default=False),
    pagination=Depends(get_pagination_params),
    service: ReservationService = Depends(get_reservation_service),
    current_user=Depends(get_current_user),
) -> Page[BookingRead]:
    """List bookings for current user."""
    items, total = await service.list_my_bookings(
        current_user,
        booking_status,
        upcoming,
        pagination.limit,
        pagination.offset,
    )
    serialized = [BookingRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user=Depends(get_current_user),
) -> BookingRead:
    """Return one booking."""
    booking = await service.get_booking(booking_id, current_user)
    return BookingRead.model_validate(booking)
