"""Scheduling ORM models."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutorbook.core.database import Base, BaseModelMixin
from tutorbook.core.enums import SlotStatusEnum, SlotTypeEnum

if TYPE_CHECKING:
    from tutorbook.modules.booking.models import Booking
    from tutorbook.modules.identity.models import User


class AvailabilitySlot(BaseModelMixin, Base):
    """Bookable time interval owned by a professor.

    ``version`` is the optimistic lock token: every guarded mutation matches on
    the version it read and increments it by one.
    """

    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("current_participants >= 0", name="participants_non_negative"),
        CheckConstraint("current_participants <= max_participants", name="participants_within_capacity"),
        CheckConstraint("max_participants >= 1", name="capacity_positive"),
        CheckConstraint("end_at > start_at", name="end_after_start"),
    )

    professor_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    slot_type: Mapped[SlotTypeEnum] = mapped_column(
        SAEnum(SlotTypeEnum, name="slot_type_enum", native_enum=False),
        default=SlotTypeEnum.INDIVIDUAL,
        nullable=False,
    )
    max_participants: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[SlotStatusEnum] = mapped_column(
        SAEnum(SlotStatusEnum, name="slot_status_enum", native_enum=False),
        default=SlotStatusEnum.AVAILABLE,
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    meeting_room_name: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    recurring_pattern_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("recurring_patterns.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    professor: Mapped["User"] = relationship()
    allowed_students: Mapped[list["SlotAllowedStudent"]] = relationship(
        back_populates="slot",
        cascade="all, delete-orphan",
    )
    bookings: Mapped[list["Booking"]] = relationship(back_populates="slot")
    recurring_pattern: Mapped["RecurringPattern | None"] = relationship(back_populates="slots")

    @property
    def allowed_student_ids(self) -> list[UUID]:
        return [row.student_id for row in self.allowed_students]


class SlotAllowedStudent(BaseModelMixin, Base):
    """Allow-list entry of a private slot."""

    __tablename__ = "slot_allowed_students"
    __table_args__ = (UniqueConstraint("slot_id", "student_id", name="uq_slot_allowed_students_slot_student"),)

    slot_id: Mapped[UUID] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    slot: Mapped[AvailabilitySlot] = relationship(back_populates="allowed_students")


class RecurringPattern(BaseModelMixin, Base):
    """Weekly rule that slots are generated from."""

    __tablename__ = "recurring_patterns"

    professor_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 0 = Sunday ... 6 = Saturday
    days_of_week: Mapped[list[int]] = mapped_column(JSONB, default=list, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    slot_type: Mapped[SlotTypeEnum] = mapped_column(
        SAEnum(SlotTypeEnum, name="slot_type_enum", native_enum=False),
        default=SlotTypeEnum.INDIVIDUAL,
        nullable=False,
    )
    max_participants: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allowed_student_ids: Mapped[list[str]] = mapped_column(JSONB, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    slots: Mapped[list[AvailabilitySlot]] = relationship(back_populates="recurring_pattern")
