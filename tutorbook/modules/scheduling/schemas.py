"""Scheduling schemas."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tutorbook.core.enums import SlotStatusEnum, SlotTypeEnum
from tutorbook.modules.identity.schemas import UserBrief

MAX_SLOT_PARTICIPANTS = 20
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class SlotOptions(BaseModel):
    """Fields shared by every way of creating slots."""

    slot_type: SlotTypeEnum = SlotTypeEnum.INDIVIDUAL
    max_participants: int = Field(default=1, ge=1, le=MAX_SLOT_PARTICIPANTS)
    title: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_private: bool = False
    allowed_student_ids: list[UUID] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_options(self) -> "SlotOptions":
        if self.slot_type == SlotTypeEnum.INDIVIDUAL and self.max_participants != 1:
            raise ValueError("Individual slots must have exactly one participant")
        if self.is_private and not self.allowed_student_ids:
            raise ValueError("Private slots must have at least one allowed student")
        if not self.is_private and self.allowed_student_ids:
            raise ValueError("Only private slots can restrict students")
        return self


class SlotCreate(SlotOptions):
    """Create a single availability slot."""

    start_at: datetime
    end_at: datetime

    @model_validator(mode="after")
    def validate_range(self) -> "SlotCreate":
        if self.end_at <= self.start_at:
            raise ValueError("End time must be after start time")
        return self


class WeeklyTimeRange(SlotOptions):
    """Days of week (0 = Sunday) and a time-of-day range."""

    days_of_week: list[int] = Field(min_length=1)
    start_time: str = Field(pattern=TIME_OF_DAY_PATTERN)
    end_time: str = Field(pattern=TIME_OF_DAY_PATTERN)

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("Days of week must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def validate_times(self) -> "WeeklyTimeRange":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class SlotBulkCreate(WeeklyTimeRange):
    """Create one slot per matching day in a date range."""

    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_dates(self) -> "SlotBulkCreate":
        if self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self


class RecurringPatternCreate(WeeklyTimeRange):
    """Persist a weekly rule and generate its upcoming slots."""

    start_date: date
    end_date: date | None = None
    generate_weeks_ahead: int | None = Field(default=None, ge=1, le=12)

    @model_validator(mode="after")
    def validate_dates(self) -> "RecurringPatternCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self


class SlotUpdate(BaseModel):
    """Administrative edit. Participant counts are never editable."""

    start_at: datetime | None = None
    end_at: datetime | None = None
    max_participants: int | None = Field(default=None, ge=1, le=MAX_SLOT_PARTICIPANTS)
    title: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_private: bool | None = None
    allowed_student_ids: list[UUID] | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "SlotUpdate":
        if self.start_at is not None and self.end_at is not None and self.end_at <= self.start_at:
            raise ValueError("End time must be after start time")
        return self


class SlotCancelRequest(BaseModel):
    """Cancel a slot and all of its bookings."""

    reason: str | None = Field(default=None, max_length=500)


class SlotCancelResult(BaseModel):
    slot_id: UUID
    cancelled_bookings: int


class SlotBrief(BaseModel):
    """Slot fields embedded in booking responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professor_id: UUID
    start_at: datetime
    end_at: datetime
    slot_type: SlotTypeEnum
    status: SlotStatusEnum
    title: str | None


class SlotRead(BaseModel):
    """Availability slot response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professor_id: UUID
    start_at: datetime
    end_at: datetime
    slot_type: SlotTypeEnum
    max_participants: int
    current_participants: int
    status: SlotStatusEnum
    version: int
    is_private: bool
    allowed_student_ids: list[UUID]
    title: str | None
    description: str | None
    recurring_pattern_id: UUID | None
    meeting_url: str | None = None
    created_at: datetime
    updated_at: datetime


class RecurringPatternRead(BaseModel):
    """Recurring pattern response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    professor_id: UUID
    days_of_week: list[int]
    start_time: str
    end_time: str
    start_date: date
    end_date: date | None
    slot_type: SlotTypeEnum
    max_participants: int
    title: str | None
    description: str | None
    is_private: bool
    allowed_student_ids: list[UUID]
    is_active: bool
    created_at: datetime


class RecurringPatternCreated(BaseModel):
    pattern: RecurringPatternRead
    slots: list[SlotRead]


class PatternDeactivationResult(BaseModel):
    pattern_id: UUID
    cancelled_slots: int


class ParticipantRead(BaseModel):
    """Confirmed participant of a slot."""

    model_config = ConfigDict(from_attributes=True)

    booking_id: UUID
    booked_at: datetime
    student: UserBrief
