"""Scheduling repository layer."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, and_, case, func, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tutorbook.core.enums import TERMINAL_SLOT_STATUSES, SlotStatusEnum, SlotTypeEnum
from tutorbook.modules.scheduling.models import AvailabilitySlot, RecurringPattern, SlotAllowedStudent
from tutorbook.shared.utils import utc_now

_SLOT_STATUS_TYPE = AvailabilitySlot.__table__.c.status.type


class SchedulingRepository:
    """DB access for scheduling domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _slot_query(self) -> Select[tuple[AvailabilitySlot]]:
        return select(AvailabilitySlot).options(
            selectinload(AvailabilitySlot.allowed_students),
            selectinload(AvailabilitySlot.professor),
        )

    async def create_slot(
        self,
        professor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        slot_type: SlotTypeEnum,
        max_participants: int,
        title: str | None,
        description: str | None,
        is_private: bool,
        allowed_student_ids: Iterable[UUID] = (),
        recurring_pattern_id: UUID | None = None,
    ) -> AvailabilitySlot:
        slot = AvailabilitySlot(
            professor_id=professor_id,
            start_at=start_at,
            end_at=end_at,
            slot_type=slot_type,
            max_participants=max_participants,
            current_participants=0,
            status=SlotStatusEnum.AVAILABLE,
            version=1,
            title=title,
            description=description,
            is_private=is_private,
            recurring_pattern_id=recurring_pattern_id,
            allowed_students=[SlotAllowedStudent(student_id=student_id) for student_id in allowed_student_ids],
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def get_slot_by_id(self, slot_id: UUID) -> AvailabilitySlot | None:
        stmt = self._slot_query().where(AvailabilitySlot.id == slot_id)
        return await self.session.scalar(stmt)

    async def reload_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        """Pull columns changed by a Core UPDATE back into the loaded instance."""
        await self.session.refresh(
            slot,
            attribute_names=[
                "current_participants",
                "status",
                "version",
                "meeting_room_name",
                "start_at",
                "end_at",
                "max_participants",
                "title",
                "description",
                "is_private",
                "updated_at",
            ],
        )
        return slot

    async def find_overlapping_slot(
        self,
        professor_id: UUID,
        start_at: datetime,
        end_at: datetime,
        exclude_slot_id: UUID | None = None,
    ) -> AvailabilitySlot | None:
        stmt = select(AvailabilitySlot).where(
            AvailabilitySlot.professor_id == professor_id,
            AvailabilitySlot.status.not_in(TERMINAL_SLOT_STATUSES),
            AvailabilitySlot.start_at < end_at,
            AvailabilitySlot.end_at > start_at,
        )
        if exclude_slot_id is not None:
            stmt = stmt.where(AvailabilitySlot.id != exclude_slot_id)
        return await self.session.scalar(stmt.limit(1))

    async def conditional_update_slot(
        self,
        slot_id: UUID,
        expected_version: int,
        **values: Any,
    ) -> int:
        """Apply ``values`` only if the row still carries ``expected_version``.

        Returns the number of affected rows: 0 means another writer won. The
        version is always incremented by exactly one. A meeting room name is
        set-once: an existing name is never overwritten.
        """
        if "meeting_room_name" in values:
            values["meeting_room_name"] = func.coalesce(
                AvailabilitySlot.meeting_room_name,
                values["meeting_room_name"],
            )
        stmt = (
            update(AvailabilitySlot)
            .where(
                AvailabilitySlot.id == slot_id,
                AvailabilitySlot.version == expected_version,
            )
            .values(**values, version=AvailabilitySlot.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def release_capacity(self, slot_id: UUID) -> int:
        """Decrement the participant count by one, floored at zero.

        Open slots get their status derived from the new count; in-progress and
        terminal slots keep theirs.
        """
        remaining = func.greatest(AvailabilitySlot.current_participants - 1, 0)
        reopened_status = case(
            (
                AvailabilitySlot.status.in_((SlotStatusEnum.AVAILABLE, SlotStatusEnum.FULLY_BOOKED)),
                case(
                    (
                        remaining >= AvailabilitySlot.max_participants,
                        literal(SlotStatusEnum.FULLY_BOOKED, type_=_SLOT_STATUS_TYPE),
                    ),
                    else_=literal(SlotStatusEnum.AVAILABLE, type_=_SLOT_STATUS_TYPE),
                ),
            ),
            else_=AvailabilitySlot.status,
        )
        stmt = (
            update(AvailabilitySlot)
            .where(AvailabilitySlot.id == slot_id)
            .values(
                current_participants=remaining,
                status=reopened_status,
                version=AvailabilitySlot.version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def replace_allowed_students(self, slot: AvailabilitySlot, student_ids: Iterable[UUID]) -> None:
        """Sync the invite list, keeping rows for students that stay invited.

        Removed rows are flushed before new ones are added so the
        (slot_id, student_id) unique constraint never sees a duplicate.
        """
        wanted = list(dict.fromkeys(student_ids))
        wanted_set = set(wanted)
        stale = [row for row in slot.allowed_students if row.student_id not in wanted_set]
        for row in stale:
            slot.allowed_students.remove(row)
        if stale:
            await self.session.flush()

        existing = {row.student_id for row in slot.allowed_students}
        for student_id in wanted:
            if student_id not in existing:
                slot.allowed_students.append(SlotAllowedStudent(student_id=student_id))
        await self.session.flush()

    async def list_available_slots(
        self,
        student_id: UUID,
        starts_from: datetime,
        starts_before: datetime | None,
        slot_type: SlotTypeEnum | None,
        for_me_only: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilitySlot], int]:
        invited = AvailabilitySlot.allowed_students.any(SlotAllowedStudent.student_id == student_id)
        if for_me_only:
            visibility = and_(AvailabilitySlot.is_private.is_(True), invited)
        else:
            visibility = or_(AvailabilitySlot.is_private.is_(False), invited)

        base_stmt = self._slot_query().where(
            AvailabilitySlot.status == SlotStatusEnum.AVAILABLE,
            AvailabilitySlot.start_at >= starts_from,
            visibility,
        )
        if starts_before is not None:
            base_stmt = base_stmt.where(AvailabilitySlot.start_at <= starts_before)
        if slot_type is not None:
            base_stmt = base_stmt.where(AvailabilitySlot.slot_type == slot_type)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(AvailabilitySlot.start_at.asc()).limit(limit).offset(offset)
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def list_professor_slots(
        self,
        professor_id: UUID,
        status: SlotStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilitySlot], int]:
        base_stmt = self._slot_query().where(AvailabilitySlot.professor_id == professor_id)
        if status is not None:
            base_stmt = base_stmt.where(AvailabilitySlot.status == status)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(AvailabilitySlot.start_at.asc()).limit(limit).offset(offset)
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def create_recurring_pattern(
        self,
        professor_id: UUID,
        days_of_week: list[int],
        start_time: str,
        end_time: str,
        start_date: date,
        end_date: date | None,
        slot_type: SlotTypeEnum,
        max_participants: int,
        title: str | None,
        description: str | None,
        is_private: bool,
        allowed_student_ids: list[UUID],
    ) -> RecurringPattern:
        pattern = RecurringPattern(
            professor_id=professor_id,
            days_of_week=sorted(set(days_of_week)),
            start_time=start_time,
            end_time=end_time,
            start_date=start_date,
            end_date=end_date,
            slot_type=slot_type,
            max_participants=max_participants,
            title=title,
            description=description,
            is_private=is_private,
            allowed_student_ids=[str(student_id) for student_id in allowed_student_ids],
            is_active=True,
        )
        self.session.add(pattern)
        await self.session.flush()
        return pattern

    async def get_recurring_pattern(self, pattern_id: UUID) -> RecurringPattern | None:
        stmt = select(RecurringPattern).where(RecurringPattern.id == pattern_id)
        return await self.session.scalar(stmt)

    async def list_recurring_patterns(self, professor_id: UUID) -> list[RecurringPattern]:
        stmt = (
            select(RecurringPattern)
            .where(RecurringPattern.professor_id == professor_id)
            .order_by(RecurringPattern.created_at.desc())
        )
        return list((await self.session.scalars(stmt)).all())

    async def cancel_unbooked_future_slots(self, pattern_id: UUID, now: datetime) -> int:
        """Cancel the pattern's upcoming slots that nobody has booked yet."""
        stmt = (
            update(AvailabilitySlot)
            .where(
                AvailabilitySlot.recurring_pattern_id == pattern_id,
                AvailabilitySlot.start_at > now,
                AvailabilitySlot.status == SlotStatusEnum.AVAILABLE,
                AvailabilitySlot.current_participants == 0,
            )
            .values(
                status=SlotStatusEnum.CANCELLED,
                version=AvailabilitySlot.version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def save_pattern(self, pattern: RecurringPattern) -> RecurringPattern:
        await self.session.flush()
        return pattern
