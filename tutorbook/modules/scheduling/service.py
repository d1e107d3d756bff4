"""Scheduling business logic layer."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends

from tutorbook.core.config import get_settings
from tutorbook.core.enums import (
    TERMINAL_SLOT_STATUSES,
    BookingStatusEnum,
    CancelledByEnum,
    RoleEnum,
    SlotStatusEnum,
    SlotTypeEnum,
)
from tutorbook.core.unit_of_work import UnitOfWork, UnitOfWorkFactory, get_unit_of_work_factory
from tutorbook.modules.identity.models import User
from tutorbook.modules.notifications.dispatcher import BookingNotifier, get_booking_notifier
from tutorbook.modules.scheduling.models import AvailabilitySlot, RecurringPattern
from tutorbook.modules.scheduling.schemas import (
    RecurringPatternCreate,
    SlotBulkCreate,
    SlotCreate,
    SlotOptions,
    SlotUpdate,
)
from tutorbook.shared.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from tutorbook.shared.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def js_weekday(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def weekly_occurrences(
    start_date: date,
    end_date: date,
    days_of_week: Iterable[int],
    start_time: str,
    end_time: str,
    tz: ZoneInfo,
) -> list[tuple[datetime, datetime]]:
    """Expand a weekly rule into UTC ``(start, end)`` pairs, both dates inclusive.

    Times are wall-clock times in ``tz``.
    """
    days = set(days_of_week)
    starts_at = time.fromisoformat(start_time)
    ends_at = time.fromisoformat(end_time)
    occurrences: list[tuple[datetime, datetime]] = []
    current = start_date
    while current <= end_date:
        if js_weekday(current) in days:
            occurrences.append(
                (
                    ensure_utc(datetime.combine(current, starts_at, tzinfo=tz)),
                    ensure_utc(datetime.combine(current, ends_at, tzinfo=tz)),
                ),
            )
        current += timedelta(days=1)
    return occurrences


class SchedulingService:
    """Slot creation, administrative edits and listings."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        notifier: BookingNotifier,
        *,
        generate_weeks_ahead: int = 4,
    ) -> None:
        self.uow_factory = uow_factory
        self.notifier = notifier
        self.generate_weeks_ahead = generate_weeks_ahead

    @staticmethod
    def _ensure_admin(actor: User, action: str) -> None:
        if actor.role.name != RoleEnum.ADMIN:
            raise ForbiddenException(f"Only admin can {action}")

    @staticmethod
    def _ensure_owner(slot: AvailabilitySlot, actor: User) -> None:
        if slot.professor_id != actor.id:
            raise ForbiddenException("You can only manage your own slots")

    @staticmethod
    def _professor_zone(actor: User) -> ZoneInfo:
        try:
            return ZoneInfo(actor.timezone or "UTC")
        except ZoneInfoNotFoundError as exc:
            raise InvalidStateException(f"Unknown timezone: {actor.timezone}") from exc

    @staticmethod
    async def _validate_students(uow: UnitOfWork, student_ids: list[UUID]) -> None:
        if not student_ids:
            return
        users = await uow.users.list_users_by_ids(student_ids)
        found = {user.id for user in users if user.role.name == RoleEnum.STUDENT}
        missing = [str(student_id) for student_id in student_ids if student_id not in found]
        if missing:
            raise InvalidStateException(f"Unknown students: {', '.join(missing)}")

    @staticmethod
    async def _ensure_no_overlap(
        uow: UnitOfWork,
        professor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        exclude_slot_id: UUID | None = None,
    ) -> None:
        overlap = await uow.slots.find_overlapping_slot(professor_id, start_at, end_at, exclude_slot_id)
        if overlap is not None:
            raise InvalidStateException(
                f"Time slot on {start_at:%Y-%m-%d %H:%M} UTC overlaps with an existing slot",
            )

    @staticmethod
    async def _insert_slot(
        uow: UnitOfWork,
        professor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        options: SlotOptions,
        recurring_pattern_id: UUID | None = None,
    ) -> AvailabilitySlot:
        return await uow.slots.create_slot(
            professor_id=professor_id,
            start_at=start_at,
            end_at=end_at,
            slot_type=options.slot_type,
            max_participants=options.max_participants,
            title=options.title,
            description=options.description,
            is_private=options.is_private,
            allowed_student_ids=options.allowed_student_ids,
            recurring_pattern_id=recurring_pattern_id,
        )

    async def create_slot(self, payload: SlotCreate, actor: User) -> AvailabilitySlot:
        """Create one availability slot (admin only)."""
        self._ensure_admin(actor, "create slots")
        start_at = ensure_utc(payload.start_at)
        end_at = ensure_utc(payload.end_at)
        if start_at <= utc_now():
            raise InvalidStateException("Slot start time must be in the future")

        async with self.uow_factory() as uow:
            await self._validate_students(uow, payload.allowed_student_ids)
            await self._ensure_no_overlap(uow, actor.id, start_at, end_at)
            slot = await self._insert_slot(uow, actor.id, start_at, end_at, payload)
        logger.info("Slot %s created by %s", slot.id, actor.id)
        return slot

    async def bulk_create_slots(self, payload: SlotBulkCreate, actor: User) -> list[AvailabilitySlot]:
        """Create a slot for every matching day; any overlap rejects the whole batch."""
        self._ensure_admin(actor, "create slots")
        now = utc_now()
        occurrences = [
            (start_at, end_at)
            for start_at, end_at in weekly_occurrences(
                payload.start_date,
                payload.end_date,
                payload.days_of_week,
                payload.start_time,
                payload.end_time,
                self._professor_zone(actor),
            )
            if start_at > now
        ]
        if not occurrences:
            raise InvalidStateException("No future slots match the selected days and dates")

        async with self.uow_factory() as uow:
            await self._validate_students(uow, payload.allowed_student_ids)
            for start_at, end_at in occurrences:
                await self._ensure_no_overlap(uow, actor.id, start_at, end_at)
            slots = [
                await self._insert_slot(uow, actor.id, start_at, end_at, payload)
                for start_at, end_at in occurrences
            ]
        logger.info("Bulk created %s slots for %s", len(slots), actor.id)
        return slots

    async def create_recurring_pattern(
        self,
        payload: RecurringPatternCreate,
        actor: User,
    ) -> tuple[RecurringPattern, list[AvailabilitySlot]]:
        """Persist a weekly pattern and generate its future slots, skipping overlaps."""
        self._ensure_admin(actor, "create recurring patterns")
        end_date = payload.end_date
        if end_date is None:
            weeks = payload.generate_weeks_ahead or self.generate_weeks_ahead
            end_date = payload.start_date + timedelta(weeks=weeks)

        now = utc_now()
        occurrences = weekly_occurrences(
            payload.start_date,
            end_date,
            payload.days_of_week,
            payload.start_time,
            payload.end_time,
            self._professor_zone(actor),
        )

        async with self.uow_factory() as uow:
            await self._validate_students(uow, payload.allowed_student_ids)
            pattern = await uow.slots.create_recurring_pattern(
                professor_id=actor.id,
                days_of_week=payload.days_of_week,
                start_time=payload.start_time,
                end_time=payload.end_time,
                start_date=payload.start_date,
                end_date=payload.end_date,
                slot_type=payload.slot_type,
                max_participants=payload.max_participants,
                title=payload.title,
                description=payload.description,
                is_private=payload.is_private,
                allowed_student_ids=payload.allowed_student_ids,
            )
            slots: list[AvailabilitySlot] = []
            skipped = 0
            for start_at, end_at in occurrences:
                if start_at <= now:
                    continue
                if await uow.slots.find_overlapping_slot(actor.id, start_at, end_at) is not None:
                    skipped += 1
                    continue
                slots.append(await self._insert_slot(uow, actor.id, start_at, end_at, payload, pattern.id))
        logger.info(
            "Recurring pattern %s created with %s slots (%s overlapping skipped)",
            pattern.id,
            len(slots),
            skipped,
        )
        return pattern, slots

    async def list_recurring_patterns(self, actor: User) -> list[RecurringPattern]:
        self._ensure_admin(actor, "view recurring patterns")
        async with self.uow_factory() as uow:
            return await uow.slots.list_recurring_patterns(actor.id)

    async def deactivate_recurring_pattern(self, pattern_id: UUID, actor: User) -> int:
        """Deactivate a pattern and cancel its upcoming unbooked slots."""
        self._ensure_admin(actor, "delete recurring patterns")
        async with self.uow_factory() as uow:
            pattern = await uow.slots.get_recurring_pattern(pattern_id)
            if pattern is None or pattern.professor_id != actor.id:
                raise NotFoundException("Recurring pattern not found")
            cancelled = await uow.slots.cancel_unbooked_future_slots(pattern.id, utc_now())
            pattern.is_active = False
            await uow.slots.save_pattern(pattern)
        logger.info("Recurring pattern %s deactivated, %s future slots cancelled", pattern_id, cancelled)
        return cancelled

    async def get_slot(self, slot_id: UUID, actor: User) -> AvailabilitySlot:
        async with self.uow_factory() as uow:
            slot = await uow.slots.get_slot_by_id(slot_id)
        if slot is None:
            raise NotFoundException("Slot not found")
        if actor.role.name != RoleEnum.ADMIN:
            raise ForbiddenException("Only admin can view slot details")
        return slot

    async def update_slot(self, slot_id: UUID, payload: SlotUpdate, actor: User) -> AvailabilitySlot:
        """Administrative edit guarded by the slot version."""
        self._ensure_admin(actor, "edit slots")
        changes = payload.model_dump(exclude_unset=True)

        async with self.uow_factory() as uow:
            slot = await uow.slots.get_slot_by_id(slot_id)
            if slot is None:
                raise NotFoundException("Slot not found")
            self._ensure_owner(slot, actor)
            if slot.status in TERMINAL_SLOT_STATUSES:
                raise InvalidStateException("Cancelled or completed slots cannot be edited")

            values: dict = {}
            for field_name in ("title", "description"):
                if field_name in changes:
                    values[field_name] = changes[field_name]

            if "start_at" in changes or "end_at" in changes:
                start_at = ensure_utc(payload.start_at) if payload.start_at is not None else slot.start_at
                end_at = ensure_utc(payload.end_at) if payload.end_at is not None else slot.end_at
                if end_at <= start_at:
                    raise InvalidStateException("End time must be after start time")
                if "start_at" in changes and start_at <= utc_now():
                    raise InvalidStateException("Slot start time must be in the future")
                await self._ensure_no_overlap(uow, slot.professor_id, start_at, end_at, exclude_slot_id=slot.id)
                values["start_at"] = start_at
                values["end_at"] = end_at

            if payload.max_participants is not None:
                capacity = payload.max_participants
                if slot.slot_type == SlotTypeEnum.INDIVIDUAL and capacity != 1:
                    raise InvalidStateException("Individual slots must have exactly one participant")
                if capacity < slot.current_participants:
                    raise InvalidStateException(
                        f"Capacity cannot be lower than the {slot.current_participants} confirmed participants",
                    )
                values["max_participants"] = capacity
                if slot.status in (SlotStatusEnum.AVAILABLE, SlotStatusEnum.FULLY_BOOKED):
                    values["status"] = (
                        SlotStatusEnum.FULLY_BOOKED
                        if slot.current_participants >= capacity
                        else SlotStatusEnum.AVAILABLE
                    )

            allowed_student_ids = slot.allowed_student_ids
            if payload.is_private is not None:
                values["is_private"] = payload.is_private
                if not payload.is_private:
                    allowed_student_ids = []
            if payload.allowed_student_ids is not None:
                allowed_student_ids = payload.allowed_student_ids
            is_private = values.get("is_private", slot.is_private)
            if is_private and not allowed_student_ids:
                raise InvalidStateException("Private slots must have at least one allowed student")
            if not is_private and allowed_student_ids:
                raise InvalidStateException("Only private slots can restrict students")
            await self._validate_students(uow, allowed_student_ids)

            updated = await uow.slots.conditional_update_slot(slot.id, slot.version, **values)
            if updated == 0:
                raise ConflictException("Slot was modified concurrently, please retry")
            if allowed_student_ids != slot.allowed_student_ids:
                await uow.slots.replace_allowed_students(slot, allowed_student_ids)
            await uow.slots.reload_slot(slot)
        logger.info("Slot %s updated by %s: %s", slot.id, actor.id, sorted(values))
        return slot

    async def cancel_slot(
        self,
        slot_id: UUID,
        actor: User,
        reason: str | None = None,
    ) -> tuple[AvailabilitySlot, int]:
        """Cancel a slot together with all its confirmed bookings."""
        self._ensure_admin(actor, "cancel slots")
        async with self.uow_factory() as uow:
            slot = await uow.slots.get_slot_by_id(slot_id)
            if slot is None:
                raise NotFoundException("Slot not found")
            self._ensure_owner(slot, actor)
            if slot.status in TERMINAL_SLOT_STATUSES:
                raise InvalidStateException("Slot is already cancelled or completed")

            bookings = await uow.bookings.cancel_confirmed_for_slot(
                slot.id,
                BookingStatusEnum.CANCELLED_BY_PROFESSOR,
                utc_now(),
                reason,
            )
            updated = await uow.slots.conditional_update_slot(
                slot.id,
                slot.version,
                status=SlotStatusEnum.CANCELLED,
                current_participants=0,
            )
            if updated == 0:
                raise ConflictException("Slot was modified concurrently, please retry")
            await uow.slots.reload_slot(slot)

        logger.info("Slot %s cancelled by %s with %s bookings", slot.id, actor.id, len(bookings))
        for booking in bookings:
            try:
                self.notifier.notify_booking_cancelled(
                    slot,
                    slot.professor,
                    booking.student,
                    reason,
                    CancelledByEnum.PROFESSOR,
                )
            except Exception:
                logger.exception("Failed to enqueue cancellation for booking %s", booking.id)
        return slot, len(bookings)

    async def list_available_slots(
        self,
        student: User,
        starts_from: datetime | None,
        starts_before: datetime | None,
        slot_type: SlotTypeEnum | None,
        for_me_only: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilitySlot], int]:
        """Future open slots the student may book."""
        now = utc_now()
        lower_bound = max(ensure_utc(starts_from), now) if starts_from is not None else now
        upper_bound = ensure_utc(starts_before) if starts_before is not None else None
        async with self.uow_factory() as uow:
            return await uow.slots.list_available_slots(
                student_id=student.id,
                starts_from=lower_bound,
                starts_before=upper_bound,
                slot_type=slot_type,
                for_me_only=for_me_only,
                limit=limit,
                offset=offset,
            )

    async def list_professor_slots(
        self,
        actor: User,
        status: SlotStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilitySlot], int]:
        self._ensure_admin(actor, "list own slots")
        async with self.uow_factory() as uow:
            return await uow.slots.list_professor_slots(actor.id, status, limit, offset)


async def get_scheduling_service(
    uow_factory: UnitOfWorkFactory = Depends(get_unit_of_work_factory),
    notifier: BookingNotifier = Depends(get_booking_notifier),
) -> SchedulingService:
    """Dependency provider for scheduling service."""
    return SchedulingService(
        uow_factory,
        notifier,
        generate_weeks_ahead=get_settings().recurring_generate_weeks_ahead,
    )
