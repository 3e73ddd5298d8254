# backend/live_sessions/routes/v1/availability.py
"""
Instructor availability routes - API v1

Versioned availability endpoints under /api/v1/availability.
All business logic delegated to AvailabilityService.

Endpoints:
    POST / - Publish a window and generate its slots
    GET /upcoming - Windows of the next N days
    GET /stats - Slot utilization
    POST /slots/generate - Regenerate slots for a date range
    GET /slots - Bookable slots of an instructor
    POST /check - Conflicts of a time range
    POST /slots/{slot_id}/block - Take a slot out of booking
    POST /slots/{slot_id}/unblock - Put a slot back
    PUT /slots/{slot_id}/auto-accept - Per-slot auto-accept override
    GET /{availability_id} - Window details
    PATCH /{availability_id} - Update a window
    DELETE /{availability_id} - Delete a window
"""

import asyncio
from datetime import datetime
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ...api.dependencies import (
    get_availability_service,
    get_current_instructor,
    get_current_user,
)
from ...core.enums import AutoAcceptOverride
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.availability import (
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    AvailabilityCreate,
    AvailabilityResponse,
    AvailabilityStatsResponse,
    AvailabilityUpdate,
    SlotBlockRequest,
    SlotGenerationResponse,
    SlotRangeRequest,
    TimeSlotResponse,
)
from ...services.availability_service import AvailabilityService
from .errors import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["availability-v1"])


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post(
    "",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Window overlaps another window"}},
)
async def create_availability(
    data: AvailabilityCreate = Body(...),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Publish a bookable window; its slots are generated in the same transaction."""
    try:
        availability = await asyncio.to_thread(service.create_availability, current_user.id, data)
        return AvailabilityResponse.model_validate(availability)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/upcoming", response_model=List[AvailabilityResponse])
async def get_upcoming_availability(
    days: int = Query(7, ge=1, le=90),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityResponse]:
    try:
        windows = await asyncio.to_thread(
            service.get_upcoming_availability, current_user.id, days=days
        )
        return [AvailabilityResponse.model_validate(window) for window in windows]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/stats", response_model=AvailabilityStatsResponse)
async def get_availability_stats(
    since: Optional[datetime] = Query(None),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityStatsResponse:
    try:
        stats = await asyncio.to_thread(service.get_availability_stats, current_user.id, since)
        return AvailabilityStatsResponse(**stats)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/slots/generate", response_model=SlotGenerationResponse)
async def generate_slots(
    data: SlotRangeRequest = Body(...),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> SlotGenerationResponse:
    """Regenerate slots of every window in the range; windows with bookings are skipped."""
    try:
        result = await asyncio.to_thread(
            service.generate_slots_for_range, current_user.id, data.start_date, data.end_date
        )
        return SlotGenerationResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/slots", response_model=List[TimeSlotResponse])
async def get_available_slots(
    instructor_id: str = Query(..., pattern=ULID_PATH_PATTERN),
    start: datetime = Query(...),
    end: datetime = Query(...),
    offering_id: Optional[str] = Query(None, pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
) -> List[TimeSlotResponse]:
    """Slots a student can book right now, optionally long enough for an offering."""
    try:
        slots = await asyncio.to_thread(
            service.get_available_slots, instructor_id, start, end, offering_id
        )
        return [TimeSlotResponse.model_validate(slot) for slot in slots]
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/check", response_model=AvailabilityCheckResponse)
async def check_availability(
    data: AvailabilityCheckRequest = Body(...),
    instructor_id: str = Query(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityCheckResponse:
    try:
        result = await asyncio.to_thread(
            service.check_availability, instructor_id, data.start, data.end
        )
        return AvailabilityCheckResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Slot routes
# ============================================================================


@router.post("/slots/{slot_id}/block", response_model=TimeSlotResponse)
async def block_slot(
    slot_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: Optional[SlotBlockRequest] = Body(None),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> TimeSlotResponse:
    try:
        reason = data.reason if data else None
        slot = await asyncio.to_thread(service.block_slot, slot_id, current_user.id, reason)
        return TimeSlotResponse.model_validate(slot)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/slots/{slot_id}/unblock", response_model=TimeSlotResponse)
async def unblock_slot(
    slot_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> TimeSlotResponse:
    try:
        slot = await asyncio.to_thread(service.unblock_slot, slot_id, current_user.id)
        return TimeSlotResponse.model_validate(slot)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/slots/{slot_id}/auto-accept", response_model=TimeSlotResponse)
async def set_slot_auto_accept(
    slot_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    override: AutoAcceptOverride = Query(...),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> TimeSlotResponse:
    try:
        slot = await asyncio.to_thread(
            service.set_slot_auto_accept, slot_id, current_user.id, override
        )
        return TimeSlotResponse.model_validate(slot)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 3: Window routes
# ============================================================================


@router.get("/{availability_id}", response_model=AvailabilityResponse)
async def get_availability(
    availability_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    try:
        availability = await asyncio.to_thread(
            service.get_availability, availability_id, current_user.id
        )
        return AvailabilityResponse.model_validate(availability)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{availability_id}", response_model=AvailabilityResponse)
async def update_availability(
    availability_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: AvailabilityUpdate = Body(...),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    try:
        availability = await asyncio.to_thread(
            service.update_availability, availability_id, current_user.id, data
        )
        return AvailabilityResponse.model_validate(availability)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{availability_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_availability(
    availability_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_instructor),
    service: AvailabilityService = Depends(get_availability_service),
) -> None:
    try:
        await asyncio.to_thread(service.delete_availability, availability_id, current_user.id)
    except DomainException as e:
        handle_domain_exception(e)
