"""Booking repository layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tutorbook.core.enums import BookingStatusEnum
from tutorbook.modules.booking.models import Booking
from tutorbook.modules.scheduling.models import AvailabilitySlot
from tutorbook.shared.utils import utc_now


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _booking_query(self) -> Select[tuple[Booking]]:
        return select(Booking).options(
            selectinload(Booking.slot).selectinload(AvailabilitySlot.professor),
            selectinload(Booking.slot).selectinload(AvailabilitySlot.allowed_students),
            selectinload(Booking.student),
        )

    async def create_booking(self, slot_id: UUID, student_id: UUID) -> Booking:
        booking = Booking(
            slot_id=slot_id,
            student_id=student_id,
            status=BookingStatusEnum.CONFIRMED,
            booked_at=utc_now(),
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_booking_by_id(self, booking_id: UUID) -> Booking | None:
        stmt = self._booking_query().where(Booking.id == booking_id)
        return await self.session.scalar(stmt)

    async def find_confirmed_booking(self, slot_id: UUID, student_id: UUID) -> Booking | None:
        stmt = select(Booking).where(
            Booking.slot_id == slot_id,
            Booking.student_id == student_id,
            Booking.status == BookingStatusEnum.CONFIRMED,
        )
        return await self.session.scalar(stmt)

    async def update_booking(
        self,
        booking: Booking,
        expected_status: BookingStatusEnum,
        **values: Any,
    ) -> int:
        """Apply ``values`` only while the booking is still in ``expected_status``.

        Returns the number of affected rows; 0 means a concurrent writer already
        moved the booking out of that status.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected_status)
            .values(**values, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount:
            await self.session.refresh(booking, attribute_names=[*values, "updated_at"])
        return result.rowcount

    async def list_confirmed_for_slot(self, slot_id: UUID) -> list[Booking]:
        stmt = (
            select(Booking)
            .options(selectinload(Booking.student))
            .where(Booking.slot_id == slot_id, Booking.status == BookingStatusEnum.CONFIRMED)
            .order_by(Booking.booked_at.asc())
        )
        return list((await self.session.scalars(stmt)).all())

    async def cancel_confirmed_for_slot(
        self,
        slot_id: UUID,
        status: BookingStatusEnum,
        cancelled_at: datetime,
        reason: str | None,
    ) -> list[Booking]:
        bookings = await self.list_confirmed_for_slot(slot_id)
        for booking in bookings:
            booking.status = status
            booking.cancelled_at = cancelled_at
            booking.cancellation_reason = reason
        await self.session.flush()
        return bookings

    async def list_bookings_for_student(
        self,
        student_id: UUID,
        status: BookingStatusEnum | None,
        starts_after: datetime | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        base_stmt = self._booking_query().join(Booking.slot).where(Booking.student_id == student_id)
        if status is not None:
            base_stmt = base_stmt.where(Booking.status == status)
        if starts_after is not None:
            base_stmt = base_stmt.where(AvailabilitySlot.start_at >= starts_after)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(AvailabilitySlot.start_at.asc()).limit(limit).offset(offset)
        items = list((await self.session.scalars(stmt)).all())
        return items, total
