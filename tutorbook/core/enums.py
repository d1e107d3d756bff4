"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """System roles. Admin is the professor who owns the schedule."""

    STUDENT = "student"
    ADMIN = "admin"


class SlotTypeEnum(StrEnum):
    """Kind of lesson a slot hosts."""

    INDIVIDUAL = "individual"
    GROUP = "group"


class SlotStatusEnum(StrEnum):
    """Availability slot status."""

    AVAILABLE = "available"
    FULLY_BOOKED = "fully_booked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_SLOT_STATUSES = (SlotStatusEnum.CANCELLED, SlotStatusEnum.COMPLETED)


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    CONFIRMED = "confirmed"
    CANCELLED_BY_STUDENT = "cancelled_by_student"
    CANCELLED_BY_PROFESSOR = "cancelled_by_professor"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class CancelledByEnum(StrEnum):
    """Who initiated a booking cancellation."""

    STUDENT = "student"
    PROFESSOR = "professor"


class NotificationStatusEnum(StrEnum):
    """Notification delivery status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
