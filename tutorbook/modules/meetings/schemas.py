"""Meeting schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class MeetingJoinRead(BaseModel):
    """Granted meeting access."""

    slot_id: UUID
    title: str | None
    start_at: datetime
    end_at: datetime
    role: Literal["professor", "student"]
    meeting_url: str
    booking_id: UUID | None = None
