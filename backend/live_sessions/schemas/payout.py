# backend/live_sessions/schemas/payout.py
"""Instructor payout schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import PayoutStatus
from ._strict_base import StrictRequestModel
from .base import Money, StandardizedModel


class PayoutCreate(StrictRequestModel):
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class PayoutStatusUpdate(StrictRequestModel):
    status: PayoutStatus
    transfer_id: Optional[str] = Field(None, max_length=255)
    failure_reason: Optional[str] = Field(None, max_length=1000)


class TransferWebhookEvent(BaseModel):
    """Subset of a payment provider transfer webhook; other event fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class PayoutSessionResponse(StandardizedModel):
    session_id: str
    amount: Money
    platform_fee: Money
    net_amount: Money


class PayoutResponse(StandardizedModel):
    id: str
    instructor_id: str
    amount: Money
    currency: str
    status: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    payout_sessions: List[PayoutSessionResponse] = Field(default_factory=list)


class AutomaticPayoutResponse(StandardizedModel):
    instructors: int
    created: int
    failed: int
    payout_ids: List[str] = Field(default_factory=list)
    errors: List[Dict[str, str]] = Field(default_factory=list)


class PayoutStatsResponse(StandardizedModel):
    payout_count: int
    total_paid: float
    pending_amount: float
    average_payout: float
