"""Turn booking events into persisted user notifications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from tutorbook.core.database import SessionFactory, session_scope
from tutorbook.core.enums import CancelledByEnum, NotificationStatusEnum
from tutorbook.modules.notifications.repository import NotificationsRepository
from tutorbook.shared.utils import utc_now

BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"


@dataclass(slots=True, frozen=True)
class BookingEvent:
    """Snapshot of a committed booking transition, safe to hand across tasks."""

    event_type: str
    slot_id: UUID
    slot_title: str | None
    start_at: datetime
    professor_id: UUID
    professor_name: str
    student_id: UUID
    student_name: str
    reason: str | None = None
    cancelled_by: CancelledByEnum | None = None


@dataclass(slots=True)
class NotificationMessage:
    user_id: UUID
    title: str
    body: str
    channel: str = "email"


def _describe_lesson(event: BookingEvent) -> str:
    label = event.slot_title or "your lesson"
    return f"{label} on {event.start_at:%Y-%m-%d %H:%M} UTC"


def build_messages(event: BookingEvent) -> list[NotificationMessage]:
    """Return the notifications an event produces, one per recipient."""
    lesson = _describe_lesson(event)

    if event.event_type == BOOKING_CONFIRMED:
        return [
            NotificationMessage(
                user_id=event.student_id,
                title="Booking confirmed",
                body=f"Your booking for {lesson} with {event.professor_name} is confirmed.",
            ),
            NotificationMessage(
                user_id=event.professor_id,
                title="New booking",
                body=f"{event.student_name} booked {lesson}.",
            ),
        ]

    if event.event_type == BOOKING_CANCELLED:
        reason_suffix = f" Reason: {event.reason}" if event.reason else ""
        if event.cancelled_by == CancelledByEnum.STUDENT:
            return [
                NotificationMessage(
                    user_id=event.student_id,
                    title="Booking cancelled",
                    body=f"You cancelled your booking for {lesson}.{reason_suffix}",
                ),
                NotificationMessage(
                    user_id=event.professor_id,
                    title="Booking cancelled by student",
                    body=f"{event.student_name} cancelled their booking for {lesson}.{reason_suffix}",
                ),
            ]
        return [
            NotificationMessage(
                user_id=event.student_id,
                title="Booking cancelled",
                body=f"{event.professor_name} cancelled your booking for {lesson}.{reason_suffix}",
            ),
        ]

    raise ValueError(f"Unsupported booking event type: {event.event_type}")


class NotificationWriter:
    """Persist the messages of one event in a dedicated transaction."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        now_provider=utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.now_provider = now_provider

    async def __call__(self, event: BookingEvent) -> int:
        messages = build_messages(event)
        async with session_scope(self.session_factory) as session:
            repository = NotificationsRepository(session)
            for message in messages:
                notification = await repository.create_notification(
                    user_id=message.user_id,
                    event_type=event.event_type,
                    channel=message.channel,
                    title=message.title,
                    body=message.body,
                    slot_id=event.slot_id,
                )
                await repository.set_status(notification, NotificationStatusEnum.SENT, self.now_provider())
        return len(messages)
