"""Meeting access rules."""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from uuid import UUID

from fastapi import Depends

from tutorbook.core.config import get_settings
from tutorbook.core.enums import SlotStatusEnum
from tutorbook.core.unit_of_work import UnitOfWorkFactory, get_unit_of_work_factory
from tutorbook.modules.identity.models import User
from tutorbook.modules.meetings.provider import MeetingProvider, get_meeting_provider
from tutorbook.modules.meetings.schemas import MeetingJoinRead
from tutorbook.shared.exceptions import ForbiddenException, InvalidStateException, NotFoundException
from tutorbook.shared.utils import utc_now

logger = logging.getLogger(__name__)


class MeetingAccessService:
    """Decide who may join a slot's meeting room and when."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        meeting_provider: MeetingProvider,
        *,
        early_join_minutes: int = 15,
        late_join_minutes: int = 30,
    ) -> None:
        self.uow_factory = uow_factory
        self.meeting_provider = meeting_provider
        self.early_join = timedelta(minutes=early_join_minutes)
        self.late_join = timedelta(minutes=late_join_minutes)

    async def join(self, slot_id: UUID, actor: User) -> MeetingJoinRead:
        """Return the join URL if the actor is the professor or a confirmed participant."""
        async with self.uow_factory() as uow:
            slot = await uow.slots.get_slot_by_id(slot_id)
            if slot is None:
                raise NotFoundException("Slot not found")
            if not slot.meeting_room_name:
                raise InvalidStateException("This slot does not have a meeting room yet")
            if slot.status == SlotStatusEnum.CANCELLED:
                raise ForbiddenException("This slot has been cancelled")

            is_professor = slot.professor_id == actor.id
            booking = None
            if not is_professor:
                booking = await uow.bookings.find_confirmed_booking(slot.id, actor.id)
                if booking is None:
                    raise ForbiddenException("You are not authorized to join this meeting")

        now = utc_now()
        if now < slot.start_at - self.early_join:
            minutes_left = math.ceil((slot.start_at - now).total_seconds() / 60)
            raise ForbiddenException(
                f"This meeting is not yet available; it starts in {minutes_left} minutes",
            )
        if now > slot.end_at + self.late_join:
            raise ForbiddenException("This meeting has ended")

        role = "professor" if is_professor else "student"
        logger.info("User %s joining meeting of slot %s as %s", actor.id, slot.id, role)
        return MeetingJoinRead(
            slot_id=slot.id,
            title=slot.title,
            start_at=slot.start_at,
            end_at=slot.end_at,
            role=role,
            meeting_url=self.meeting_provider.get_join_url(slot.meeting_room_name, actor.full_name),
            booking_id=booking.id if booking is not None else None,
        )


async def get_meeting_access_service(
    uow_factory: UnitOfWorkFactory = Depends(get_unit_of_work_factory),
) -> MeetingAccessService:
    """Dependency provider for meeting access service."""
    settings = get_settings()
    return MeetingAccessService(
        uow_factory,
        get_meeting_provider(),
        early_join_minutes=settings.meeting_early_join_minutes,
        late_join_minutes=settings.meeting_late_join_minutes,
    )
