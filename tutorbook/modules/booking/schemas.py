"""Booking schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tutorbook.core.enums import BookingStatusEnum
from tutorbook.modules.scheduling.schemas import SlotBrief, SlotRead


class ReservationRequest(BaseModel):
    """Book one place in a slot."""

    slot_id: UUID


class ReservationRead(BaseModel):
    """Successful reservation: the new booking and the slot after the update."""

    booking_id: UUID
    slot: SlotRead


class BookingCancelRequest(BaseModel):
    """Cancel booking request."""

    reason: str | None = Field(default=None, max_length=500)


class BookingRead(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slot_id: UUID
    student_id: UUID
    status: BookingStatusEnum
    booked_at: datetime
    cancelled_at: datetime | None
    cancellation_reason: str | None
    slot: SlotBrief
    created_at: datetime
    updated_at: datetime
