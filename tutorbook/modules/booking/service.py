"""Slot reservation engine.

Every reservation attempt reads the slot with its version, validates the
snapshot, inserts the booking and applies a conditional slot update keyed on
that version, all inside one unit of work. A conditional update that matches
no row means another writer committed first: the attempt is rolled back and
retried against a fresh read, at most ``MAX_BOOKING_ATTEMPTS`` times.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.exc import IntegrityError

from tutorbook.core.config import get_settings
from tutorbook.core.enums import BookingStatusEnum, CancelledByEnum, RoleEnum, SlotStatusEnum
from tutorbook.core.metrics import BOOKING_ATTEMPTS_TOTAL, BOOKING_VERSION_CONFLICTS_TOTAL
from tutorbook.core.unit_of_work import UnitOfWork, UnitOfWorkFactory, get_unit_of_work_factory
from tutorbook.modules.booking.models import CONFIRMED_BOOKING_INDEX, Booking
from tutorbook.modules.identity.models import User
from tutorbook.modules.meetings.provider import MeetingProvider, get_meeting_provider
from tutorbook.modules.notifications.dispatcher import BookingNotifier, get_booking_notifier
from tutorbook.modules.scheduling.models import AvailabilitySlot
from tutorbook.shared.exceptions import (
    AppException,
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from tutorbook.shared.utils import display_name, utc_now

logger = logging.getLogger(__name__)

MAX_BOOKING_ATTEMPTS = 3


class StaleSlotVersionError(Exception):
    """The slot changed between read and conditional update."""


@dataclass(slots=True)
class ReservationResult:
    booking_id: UUID
    slot: AvailabilitySlot
    meeting_url: str | None
    attempts: int


class ReservationService:
    """Guards ``current_participants == count(confirmed bookings)`` for every slot."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        meeting_provider: MeetingProvider,
        notifier: BookingNotifier,
        *,
        cancellation_window_hours: int = 24,
        retry_backoff_seconds: float = 0.1,
        max_attempts: int = MAX_BOOKING_ATTEMPTS,
    ) -> None:
        self.uow_factory = uow_factory
        self.meeting_provider = meeting_provider
        self.notifier = notifier
        self.cancellation_window = timedelta(hours=cancellation_window_hours)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.max_attempts = max_attempts

    async def reserve(self, slot_id: UUID, student: User) -> ReservationResult:
        """Book one place in the slot for ``student``."""
        for attempt in range(self.max_attempts):
            try:
                booking_id, slot = await self._attempt_reservation(slot_id, student)
            except StaleSlotVersionError:
                BOOKING_VERSION_CONFLICTS_TOTAL.inc()
                logger.info(
                    "Slot %s changed during reservation by %s (attempt %s/%s)",
                    slot_id,
                    student.id,
                    attempt + 1,
                    self.max_attempts,
                )
                if attempt + 1 < self.max_attempts and self.retry_backoff_seconds > 0:
                    await asyncio.sleep(self.retry_backoff_seconds * 2**attempt)
                continue
            except AppException as exc:
                BOOKING_ATTEMPTS_TOTAL.labels(outcome=exc.code).inc()
                raise

            BOOKING_ATTEMPTS_TOTAL.labels(outcome="confirmed").inc()
            logger.info("Booking %s confirmed on slot %s after %s attempt(s)", booking_id, slot_id, attempt + 1)
            self._notify_confirmed(slot, student)
            meeting_url = None
            if slot.meeting_room_name:
                meeting_url = self.meeting_provider.get_join_url(
                    slot.meeting_room_name,
                    display_name(student.first_name, student.last_name),
                )
            return ReservationResult(
                booking_id=booking_id,
                slot=slot,
                meeting_url=meeting_url,
                attempts=attempt + 1,
            )

        BOOKING_ATTEMPTS_TOTAL.labels(outcome="exhausted").inc()
        logger.warning("Giving up on slot %s after %s version conflicts", slot_id, self.max_attempts)
        raise ConflictException("Too many concurrent booking attempts, please try again")

    async def _attempt_reservation(self, slot_id: UUID, student: User) -> tuple[UUID, AvailabilitySlot]:
        async with self.uow_factory() as uow:
            slot = await uow.slots.get_slot_by_id(slot_id)
            if slot is None:
                raise NotFoundException("Slot not found")
            if slot.is_private and student.id not in slot.allowed_student_ids:
                raise ForbiddenException("This slot is private")
            if slot.status != SlotStatusEnum.AVAILABLE:
                raise InvalidStateException("Slot is no longer available")
            if slot.current_participants >= slot.max_participants:
                raise InvalidStateException("Slot is fully booked")
            if slot.start_at <= utc_now():
                raise InvalidStateException("Cannot book a past slot")
            if await uow.bookings.find_confirmed_booking(slot.id, student.id) is not None:
                raise ConflictException("You have already booked this slot")

            booking = await self._create_booking(uow, slot.id, student.id)

            participants = slot.current_participants + 1
            values = {"current_participants": participants}
            if participants >= slot.max_participants:
                values["status"] = SlotStatusEnum.FULLY_BOOKED
            if slot.meeting_room_name is None:
                values["meeting_room_name"] = self.meeting_provider.create_room(slot.id)

            updated = await uow.slots.conditional_update_slot(slot.id, slot.version, **values)
            if updated == 0:
                raise StaleSlotVersionError(slot.id)

            await uow.slots.reload_slot(slot)
            booking_id = booking.id
        return booking_id, slot

    @staticmethod
    async def _create_booking(uow: UnitOfWork, slot_id: UUID, student_id: UUID) -> Booking:
        try:
            return await uow.bookings.create_booking(slot_id, student_id)
        except IntegrityError as exc:
            if CONFIRMED_BOOKING_INDEX in str(exc.orig):
                raise ConflictException("You have already booked this slot") from exc
            raise

    async def cancel(self, booking_id: UUID, actor: User, reason: str | None = None) -> Booking:
        """Cancel a confirmed booking and release its place."""
        async with self.uow_factory() as uow:
            booking = await uow.bookings.get_booking_by_id(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found")
            if booking.status != BookingStatusEnum.CONFIRMED:
                raise InvalidStateException("Booking cannot be cancelled")

            is_owner = booking.student_id == actor.id
            is_admin = actor.role.name == RoleEnum.ADMIN
            if not (is_owner or is_admin):
                raise ForbiddenException("You cannot cancel this booking")

            now = utc_now()
            if not is_admin and booking.slot.start_at - now < self.cancellation_window:
                hours = int(self.cancellation_window.total_seconds() // 3600)
                raise InvalidStateException(f"Bookings must be cancelled at least {hours} hours in advance")

            cancelled_by = CancelledByEnum.STUDENT if is_owner else CancelledByEnum.PROFESSOR
            status = (
                BookingStatusEnum.CANCELLED_BY_STUDENT
                if cancelled_by == CancelledByEnum.STUDENT
                else BookingStatusEnum.CANCELLED_BY_PROFESSOR
            )
            transitioned = await uow.bookings.update_booking(
                booking,
                BookingStatusEnum.CONFIRMED,
                status=status,
                cancelled_at=now,
                cancellation_reason=reason,
            )
            if transitioned == 0:
                raise InvalidStateException("Booking cannot be cancelled")

            await uow.slots.release_capacity(booking.slot_id)
            await uow.slots.reload_slot(booking.slot)

        logger.info("Booking %s cancelled by %s (%s)", booking.id, actor.id, cancelled_by)
        self._notify_cancelled(booking, reason, cancelled_by)
        return booking

    async def list_my_bookings(
        self,
        actor: User,
        status: BookingStatusEnum | None,
        upcoming: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """List bookings of the current student."""
        starts_after = utc_now() if upcoming else None
        async with self.uow_factory() as uow:
            return await uow.bookings.list_bookings_for_student(actor.id, status, starts_after, limit, offset)

    async def get_booking(self, booking_id: UUID, actor: User) -> Booking:
        """Return a booking visible to its student or an admin."""
        async with self.uow_factory() as uow:
            booking = await uow.bookings.get_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found")
        if booking.student_id != actor.id and actor.role.name != RoleEnum.ADMIN:
            raise ForbiddenException("You cannot view this booking")
        return booking

    async def list_participants(self, slot_id: UUID, actor: User) -> list[Booking]:
        """Confirmed bookings of a slot, for its professor, admins and participants."""
        async with self.uow_factory() as uow:
            slot = await uow.slots.get_slot_by_id(slot_id)
            if slot is None:
                raise NotFoundException("Slot not found")
            participants = await uow.bookings.list_confirmed_for_slot(slot.id)

        allowed = (
            actor.role.name == RoleEnum.ADMIN
            or slot.professor_id == actor.id
            or any(booking.student_id == actor.id for booking in participants)
        )
        if not allowed:
            raise ForbiddenException("You cannot view participants of this slot")
        return participants

    def _notify_confirmed(self, slot: AvailabilitySlot, student: User) -> None:
        try:
            self.notifier.notify_booking_confirmed(slot, slot.professor, student)
        except Exception:
            logger.exception("Failed to enqueue confirmation for slot %s", slot.id)

    def _notify_cancelled(self, booking: Booking, reason: str | None, cancelled_by: CancelledByEnum) -> None:
        try:
            self.notifier.notify_booking_cancelled(
                booking.slot,
                booking.slot.professor,
                booking.student,
                reason,
                cancelled_by,
            )
        except Exception:
            logger.exception("Failed to enqueue cancellation for booking %s", booking.id)


async def get_reservation_service(
    uow_factory: UnitOfWorkFactory = Depends(get_unit_of_work_factory),
    notifier: BookingNotifier = Depends(get_booking_notifier),
) -> ReservationService:
    """Dependency provider for the reservation engine."""
    settings = get_settings()
    return ReservationService(
        uow_factory,
        get_meeting_provider(),
        notifier,
        cancellation_window_hours=settings.booking_cancellation_window_hours,
        retry_backoff_seconds=settings.booking_retry_backoff_seconds,
    )
