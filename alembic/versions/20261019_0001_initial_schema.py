"""Initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Non-native enums persist member names.
role_enum = sa.Enum("STUDENT", "ADMIN", name="role_enum", native_enum=False)
slot_type_enum = sa.Enum("INDIVIDUAL", "GROUP", name="slot_type_enum", native_enum=False)
slot_status_enum = sa.Enum(
    "AVAILABLE",
    "FULLY_BOOKED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    name="slot_status_enum",
    native_enum=False,
)
booking_status_enum = sa.Enum(
    "CONFIRMED",
    "CANCELLED_BY_STUDENT",
    "CANCELLED_BY_PROFESSOR",
    "COMPLETED",
    "NO_SHOW",
    name="booking_status_enum",
    native_enum=False,
)
notification_status_enum = sa.Enum("PENDING", "SENT", "FAILED", name="notification_status_enum", native_enum=False)


def _id_col() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_col() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_col() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "roles",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("name", role_enum, nullable=False),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "users",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_users_role_id_roles", ondelete="RESTRICT"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "recurring_patterns",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("professor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("days_of_week", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("slot_type", slot_type_enum, nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False),
        sa.Column("allowed_student_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(
            ["professor_id"],
            ["users.id"],
            name="fk_recurring_patterns_professor_id_users",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_recurring_patterns_professor_id", "recurring_patterns", ["professor_id"], unique=False)

    op.create_table(
        "availability_slots",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("professor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("slot_type", slot_type_enum, nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False),
        sa.Column("status", slot_status_enum, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("meeting_room_name", sa.String(length=255), nullable=True),
        sa.Column("recurring_pattern_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["professor_id"],
            ["users.id"],
            name="fk_availability_slots_professor_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["recurring_pattern_id"],
            ["recurring_patterns.id"],
            name="fk_availability_slots_recurring_pattern_id_recurring_patterns",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("meeting_room_name", name="uq_availability_slots_meeting_room_name"),
        sa.CheckConstraint(
            "current_participants >= 0",
            name="ck_availability_slots_participants_non_negative",
        ),
        sa.CheckConstraint(
            "current_participants <= max_participants",
            name="ck_availability_slots_participants_within_capacity",
        ),
        sa.CheckConstraint("max_participants >= 1", name="ck_availability_slots_capacity_positive"),
        sa.CheckConstraint("end_at > start_at", name="ck_availability_slots_end_after_start"),
    )
    op.create_index("ix_availability_slots_professor_id", "availability_slots", ["professor_id"], unique=False)
    op.create_index("ix_availability_slots_start_at", "availability_slots", ["start_at"], unique=False)
    op.create_index("ix_availability_slots_status", "availability_slots", ["status"], unique=False)
    op.create_index(
        "ix_availability_slots_recurring_pattern_id",
        "availability_slots",
        ["recurring_pattern_id"],
        unique=False,
    )

    op.create_table(
        "slot_allowed_students",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("slot_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["slot_id"],
            ["availability_slots.id"],
            name="fk_slot_allowed_students_slot_id_availability_slots",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["student_id"],
            ["users.id"],
            name="fk_slot_allowed_students_student_id_users",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("slot_id", "student_id", name="uq_slot_allowed_students_slot_student"),
    )
    op.create_index("ix_slot_allowed_students_slot_id", "slot_allowed_students", ["slot_id"], unique=False)

    op.create_table(
        "bookings",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("slot_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", booking_status_enum, nullable=False),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=512), nullable=True),
        sa.ForeignKeyConstraint(
            ["slot_id"],
            ["availability_slots.id"],
            name="fk_bookings_slot_id_availability_slots",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], name="fk_bookings_student_id_users", ondelete="CASCADE"),
    )
    op.create_index("ix_bookings_slot_id", "bookings", ["slot_id"], unique=False)
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index(
        "uq_bookings_confirmed_slot_student",
        "bookings",
        ["slot_id", "student_id"],
        unique=True,
        postgresql_where=sa.text("status = 'CONFIRMED'"),
    )

    op.create_table(
        "notifications",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slot_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", notification_status_enum, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_notifications_user_id_users", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["slot_id"],
            ["availability_slots.id"],
            name="fk_notifications_slot_id_availability_slots",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_status", "notifications", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_notifications_status", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("uq_bookings_confirmed_slot_student", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_student_id", table_name="bookings")
    op.drop_index("ix_bookings_slot_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_slot_allowed_students_slot_id", table_name="slot_allowed_students")
    op.drop_table("slot_allowed_students")

    op.drop_index("ix_availability_slots_recurring_pattern_id", table_name="availability_slots")
    op.drop_index("ix_availability_slots_status", table_name="availability_slots")
    op.drop_index("ix_availability_slots_start_at", table_name="availability_slots")
    op.drop_index("ix_availability_slots_professor_id", table_name="availability_slots")
    op.drop_table("availability_slots")

    op.drop_index("ix_recurring_patterns_professor_id", table_name="recurring_patterns")
    op.drop_table("recurring_patterns")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    op.drop_table("roles")
