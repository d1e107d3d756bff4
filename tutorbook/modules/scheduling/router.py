"""Scheduling API router."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from tutorbook.core.enums import RoleEnum, SlotStatusEnum, SlotTypeEnum
from tutorbook.modules.booking.service import ReservationService, get_reservation_service
from tutorbook.modules.identity.schemas import UserBrief
from tutorbook.modules.identity.service import get_current_user, require_roles
from tutorbook.modules.scheduling.schemas import (
    ParticipantRead,
    PatternDeactivationResult,
    RecurringPatternCreate,
    RecurringPatternCreated,
    RecurringPatternRead,
    SlotBulkCreate,
    SlotCancelRequest,
    SlotCancelResult,
    SlotCreate,
    SlotRead,
    SlotUpdate,
)
from tutorbook.modules.scheduling.service import SchedulingService, get_scheduling_service
from tutorbook.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


@router.post("/slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    """Create availability slot."""
    slot = await service.create_slot(payload, current_user)
    return SlotRead.model_validate(slot)


@router.post("/slots/bulk", response_model=list[SlotRead], status_code=status.HTTP_201_CREATED)
async def bulk_create_slots(
    payload: SlotBulkCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> list[SlotRead]:
    """Create one slot per matching day in a date range."""
    slots = await service.bulk_create_slots(payload, current_user)
    return [SlotRead.model_validate(slot) for slot in slots]


@router.get("/slots/available", response_model=Page[SlotRead])
async def list_available_slots(
    starts_from: datetime | None = Query(default=None),
    starts_before: datetime | None = Query(default=None),
    slot_type: SlotTypeEnum | None = Query(default=None),
    for_me_only: bool = Query(default=False),
    pagination=Depends(get_pagination_params),
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(require_roles(RoleEnum.STUDENT)),
) -> Page[SlotRead]:
    """List slots the current student can book."""
    items, total = await service.list_available_slots(
        current_user,
        starts_from,
        starts_before,
        slot_type,
        for_me_only,
        pagination.limit,
        pagination.offset,
    )
    serialized = [SlotRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/slots/mine", response_model=Page[SlotRead])
async def list_my_slots(
    slot_status: SlotStatusEnum | None = Query(default=None, alias="status"),
    pagination=Depends(get_pagination_params),
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> Page[SlotRead]:
    """List slots owned by the current professor."""
    items, total = await service.list_professor_slots(
        current_user,
        slot_status,
        pagination.limit,
        pagination.offset,
    )
    serialized = [SlotRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.get("/slots/{slot_id}", response_model=SlotRead)
async def get_slot(
    slot_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    """Return slot details."""
    slot = await service.get_slot(slot_id, current_user)
    return SlotRead.model_validate(slot)


@router.patch("/slots/{slot_id}", response_model=SlotRead)
async def update_slot(
    slot_id: UUID,
    payload: SlotUpdate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    """Edit slot times, capacity, texts or privacy."""
    slot = await service.update_slot(slot_id, payload, current_user)
    return SlotRead.model_validate(slot)


@router.post("/slots/{slot_id}/cancel", response_model=SlotCancelResult)
async def cancel_slot(
    slot_id: UUID,
    payload: SlotCancelRequest,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotCancelResult:
    """Cancel a slot and every confirmed booking on it."""
    slot, cancelled = await service.cancel_slot(slot_id, current_user, payload.reason)
    return SlotCancelResult(slot_id=slot.id, cancelled_bookings=cancelled)


@router.get("/slots/{slot_id}/participants", response_model=list[ParticipantRead])
async def list_participants(
    slot_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user=Depends(get_current_user),
) -> list[ParticipantRead]:
    """List confirmed participants of a slot."""
    bookings = await service.list_participants(slot_id, current_user)
    return [
        ParticipantRead(
            booking_id=booking.id,
            booked_at=booking.booked_at,
            student=UserBrief.model_validate(booking.student),
        )
        for booking in bookings
    ]


@router.post(
    "/recurring-patterns",
    response_model=RecurringPatternCreated,
    status_code=status.HTTP_201_CREATED,
)
async def create_recurring_pattern(
    payload: RecurringPatternCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> RecurringPatternCreated:
    """Create a weekly pattern and generate its upcoming slots."""
    pattern, slots = await service.create_recurring_pattern(payload, current_user)
    return RecurringPatternCreated(
        pattern=RecurringPatternRead.model_validate(pattern),
        slots=[SlotRead.model_validate(slot) for slot in slots],
    )


@router.get("/recurring-patterns", response_model=list[RecurringPatternRead])
async def list_recurring_patterns(
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> list[RecurringPatternRead]:
    """List recurring patterns of the current professor."""
    patterns = await service.list_recurring_patterns(current_user)
    return [RecurringPatternRead.model_validate(pattern) for pattern in patterns]


@router.delete("/recurring-patterns/{pattern_id}", response_model=PatternDeactivationResult)
async def deactivate_recurring_pattern(
    pattern_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> PatternDeactivationResult:
    """Deactivate a pattern and cancel its upcoming unbooked slots."""
    cancelled = await service.deactivate_recurring_pattern(pattern_id, current_user)
    return PatternDeactivationResult(pattern_id=pattern_id, cancelled_slots=cancelled)
