"""Meetings API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from tutorbook.modules.identity.service import get_current_user
from tutorbook.modules.meetings.schemas import MeetingJoinRead
from tutorbook.modules.meetings.service import MeetingAccessService, get_meeting_access_service

router = APIRouter(prefix="/meetings", tags=["meetings"])


@router.post("/slots/{slot_id}/join", response_model=MeetingJoinRead)
async def join_meeting(
    slot_id: UUID,
    service: MeetingAccessService = Depends(get_meeting_access_service),
    current_user=Depends(get_current_user),
) -> MeetingJoinRead:
    """Validate access and return the meeting join URL."""
    return await service.join(slot_id, current_user)
