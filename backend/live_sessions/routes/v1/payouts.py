# backend/live_sessions/routes/v1/payouts.py
"""
Instructor payout routes - API v1

Versioned payout endpoints under /api/v1/payouts.
All business logic delegated to PayoutService.

Endpoints:
    POST / - Pay out the current instructor's eligible sessions
    GET / - Payouts of the current user
    GET /stats - Payout totals
    POST /process - Run automatic payouts for every instructor (admin)
    POST /webhooks/transfer - Transfer status webhook (signature verified)
    GET /{payout_id} - Payout details
    POST /{payout_id}/status - Manual status change (admin)
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, status
from pydantic import ValidationError
import stripe

from ...api.dependencies import (
    get_current_admin,
    get_current_instructor,
    get_current_user,
    get_payout_service,
    is_admin,
    visibility_scope,
)
from ...core.config import settings
from ...core.enums import PayoutStatus
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.payout import (
    AutomaticPayoutResponse,
    PayoutCreate,
    PayoutResponse,
    PayoutStatsResponse,
    PayoutStatusUpdate,
    TransferWebhookEvent,
)
from ...services.payout_service import PayoutService
from .errors import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payouts-v1"])


def _verify_webhook(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """
    Check the provider signature and decode the event.

    Unsigned events are only accepted when the fake gateway is configured.
    """
    secret = settings.stripe_webhook_secret
    if secret is not None:
        if not sig_header:
            logger.warning("Transfer webhook received without signature")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), sig_header, secret.get_secret_value()
            )
        except stripe.SignatureVerificationError:
            logger.error("Transfer webhook signature verification failed")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")
    elif settings.payment_provider != "fake":
        logger.error("No webhook secret configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook configuration error"
        )

    try:
        return json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed payload")


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post("", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def create_payout(
    data: PayoutCreate = Body(...),
    current_user: User = Depends(get_current_instructor),
    service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    """Roll the instructor's completed, paid sessions into one payout and send it."""
    try:
        payout = await asyncio.to_thread(
            service.create_payout, current_user.id, data.period_start, data.period_end
        )
        return PayoutResponse.model_validate(payout)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=List[PayoutResponse])
async def list_payouts(
    status_filter: Optional[PayoutStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
) -> List[PayoutResponse]:
    scope = visibility_scope(current_user)
    if "student_id" in scope:
        return []
    try:
        payouts = await asyncio.to_thread(
            service.list_payouts, status=status_filter, skip=skip, limit=limit, **scope
        )
        return [PayoutResponse.model_validate(p) for p in payouts]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/stats", response_model=PayoutStatsResponse)
async def get_payout_stats(
    current_user: User = Depends(get_current_instructor),
    service: PayoutService = Depends(get_payout_service),
) -> PayoutStatsResponse:
    try:
        stats = await asyncio.to_thread(service.get_payout_stats, current_user.id)
        return PayoutStatsResponse(**stats)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/process", response_model=AutomaticPayoutResponse)
async def process_automatic_payouts(
    current_user: User = Depends(get_current_admin),
    service: PayoutService = Depends(get_payout_service),
) -> AutomaticPayoutResponse:
    try:
        result = await asyncio.to_thread(service.process_automatic_payouts)
        return AutomaticPayoutResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/webhooks/transfer")
async def handle_transfer_webhook(
    request: Request,
    service: PayoutService = Depends(get_payout_service),
) -> Dict[str, Any]:
    """
    Receive transfer status updates from the payment provider.

    Note:
        This endpoint has no user authentication as it uses webhook signature verification
    """
    payload = await request.body()
    event_data = _verify_webhook(payload, request.headers.get("stripe-signature"))
    try:
        event = TransferWebhookEvent.model_validate(event_data)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event")

    try:
        payout = await asyncio.to_thread(service.handle_transfer_webhook, event)
    except DomainException as e:
        handle_domain_exception(e)

    logger.info("Transfer webhook processed: %s", event.type)
    return {
        "status": "success",
        "event_type": event.type,
        "payout_id": payout.id if payout is not None else None,
    }


# ============================================================================
# SECTION 2: Routes on a single payout
# ============================================================================


@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_payout(
    payout_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    try:
        actor_id = None if is_admin(current_user) else current_user.id
        payout = await asyncio.to_thread(service.get_payout, payout_id, actor_id)
        return PayoutResponse.model_validate(payout)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payout_id}/status", response_model=PayoutResponse)
async def update_payout_status(
    payout_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: PayoutStatusUpdate = Body(...),
    current_user: User = Depends(get_current_admin),
    service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    try:
        payout = await asyncio.to_thread(
            service.update_payout_status,
            payout_id,
            data.status,
            transfer_id=data.transfer_id,
            failure_reason=data.failure_reason,
        )
        return PayoutResponse.model_validate(payout)
    except DomainException as e:
        handle_domain_exception(e)
