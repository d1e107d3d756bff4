"""Booking ORM models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutorbook.core.database import Base, BaseModelMixin
from tutorbook.core.enums import BookingStatusEnum
from tutorbook.shared.utils import utc_now

if TYPE_CHECKING:
    from tutorbook.modules.identity.models import User
    from tutorbook.modules.scheduling.models import AvailabilitySlot

CONFIRMED_BOOKING_INDEX = "uq_bookings_confirmed_slot_student"


class Booking(BaseModelMixin, Base):
    """One student's claim on one slot."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            CONFIRMED_BOOKING_INDEX,
            "slot_id",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'CONFIRMED'"),
        ),
    )

    slot_id: Mapped[UUID] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[BookingStatusEnum] = mapped_column(
        SAEnum(BookingStatusEnum, name="booking_status_enum", native_enum=False),
        default=BookingStatusEnum.CONFIRMED,
        nullable=False,
        index=True,
    )
    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    slot: Mapped["AvailabilitySlot"] = relationship(back_populates="bookings")
    student: Mapped["User"] = relationship(back_populates="bookings")
