# backend/live_sessions/routes/v1/booking_requests.py
"""
Booking request routes - API v1

Versioned booking endpoints under /api/v1/booking-requests.
All business logic delegated to BookingRequestService.

Endpoints:
    POST / - Book an offering (auto-accepted or left pending)
    GET / - Bookings of the current user
    GET /stats - Counts and acceptance/completion rates
    POST /expire - Sweep overdue pending requests (admin)
    GET /{request_id} - Booking details
    PATCH /{request_id} - Student edits a pending request
    POST /{request_id}/accept - Instructor accepts
    POST /{request_id}/reject - Instructor rejects
    POST /{request_id}/cancel - Student or instructor cancels
    POST /{request_id}/reschedule - Move to another slot
    POST /{request_id}/complete - Mark delivered (instructor)
    POST /{request_id}/payment-intent - Authorize payment (student)
    POST /{request_id}/payment-status - Settlement callback (admin)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from ...api.dependencies import (
    get_booking_request_service,
    get_current_admin,
    get_current_user,
    is_admin,
    visibility_scope,
)
from ...core.enums import BookingRequestStatus
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.booking import (
    BookingAccept,
    BookingCancel,
    BookingReject,
    BookingRequestCreate,
    BookingRequestListResponse,
    BookingRequestResponse,
    BookingRequestUpdate,
    BookingReschedule,
    BookingStatsResponse,
    ExpirySweepResponse,
    PaymentStatusUpdate,
)
from ...services.booking_request_service import BookingRequestService
from .errors import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["booking-requests-v1"])


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post(
    "",
    response_model=BookingRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Offering or slot not found"},
        409: {"description": "Slot full, unavailable or already requested"},
        400: {"description": "Business rule violation (e.g., price below floor)"},
    },
)
async def create_booking_request(
    data: BookingRequestCreate = Body(...),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    """
    Book an offering.

    The auto-approval policy decides whether the booking is accepted right
    away (a live session is created with it) or waits for the instructor.
    """
    try:
        request = await asyncio.to_thread(service.create_request, current_user.id, data)
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=BookingRequestListResponse)
async def list_booking_requests(
    status_filter: Optional[BookingRequestStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestListResponse:
    try:
        requests = await asyncio.to_thread(
            service.list_requests,
            status=status_filter,
            skip=skip,
            limit=limit,
            **visibility_scope(current_user),
        )
        return BookingRequestListResponse(
            items=[BookingRequestResponse.model_validate(r) for r in requests],
            skip=skip,
            limit=limit,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/stats", response_model=BookingStatsResponse)
async def get_booking_stats(
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingStatsResponse:
    try:
        stats = await asyncio.to_thread(
            service.get_request_stats, **visibility_scope(current_user)
        )
        return BookingStatsResponse(**stats)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/expire", response_model=ExpirySweepResponse)
async def expire_pending_requests(
    batch_size: int = Query(500, ge=1, le=5000),
    current_user: User = Depends(get_current_admin),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> ExpirySweepResponse:
    """Run the expiry sweep now instead of waiting for the scheduled task."""
    try:
        result = await asyncio.to_thread(service.expire_pending_requests, batch_size=batch_size)
        return ExpirySweepResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Routes on a single booking request
# ============================================================================


@router.get("/{request_id}", response_model=BookingRequestResponse)
async def get_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    try:
        actor_id = None if is_admin(current_user) else current_user.id
        request = await asyncio.to_thread(service.get_request, request_id, actor_id)
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{request_id}", response_model=BookingRequestResponse)
async def update_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: BookingRequestUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    """Change the slot, offer, preferred window or message of a pending request."""
    try:
        request = await asyncio.to_thread(
            service.update_request, request_id, current_user.id, data
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/accept", response_model=BookingRequestResponse)
async def accept_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: BookingAccept = Body(...),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    try:
        request = await asyncio.to_thread(
            service.accept_request,
            request_id,
            current_user.id,
            final_price=data.final_price,
            time_slot_id=data.time_slot_id,
            message=data.message,
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/reject", response_model=BookingRequestResponse)
async def reject_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: BookingReject = Body(...),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    try:
        request = await asyncio.to_thread(
            service.reject_request, request_id, current_user.id, data.reason
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/cancel", response_model=BookingRequestResponse)
async def cancel_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: BookingCancel = Body(...),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    """Cancel as the student or the instructor; any refund follows the cancellation policy."""
    try:
        request = await asyncio.to_thread(
            service.cancel_request, request_id, current_user.id, data.reason
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/reschedule", response_model=BookingRequestResponse)
async def reschedule_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: BookingReschedule = Body(...),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    try:
        request = await asyncio.to_thread(
            service.reschedule_request, request_id, current_user.id, data.new_slot_id
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/complete", response_model=BookingRequestResponse)
async def complete_booking_request(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    try:
        request = await asyncio.to_thread(service.get_request, request_id)
        if request.instructor_id != current_user.id and not is_admin(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the instructor can complete a booking",
            )
        request = await asyncio.to_thread(service.complete_request, request_id)
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/payment-intent", response_model=BookingRequestResponse)
async def create_payment_intent(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    """Authorize the agreed price; captured when the session ends."""
    try:
        request = await asyncio.to_thread(
            service.create_payment_intent, request_id, current_user.id
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{request_id}/payment-status", response_model=BookingRequestResponse)
async def update_payment_status(
    request_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: PaymentStatusUpdate = Body(...),
    current_user: User = Depends(get_current_admin),
    service: BookingRequestService = Depends(get_booking_request_service),
) -> BookingRequestResponse:
    try:
        request = await asyncio.to_thread(
            service.update_payment_status, request_id, data.status, data.payment_intent_id
        )
        return BookingRequestResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)
