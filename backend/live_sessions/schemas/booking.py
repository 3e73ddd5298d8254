# backend/live_sessions/schemas/booking.py
"""
Booking request schemas.

DIRECT bookings name a generated time slot. REQUEST bookings may name a slot
or propose a preferred window that the instructor confirms on accept.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import BookingMode, PaymentStatus
from ._strict_base import StrictRequestModel
from .base import Money, StandardizedModel


class BookingRequestCreate(StrictRequestModel):
    """Book an offering, optionally at a specific slot."""

    offering_id: str
    time_slot_id: Optional[str] = None
    mode: BookingMode = BookingMode.DIRECT
    offered_price: Optional[Money] = Field(
        None, description="Price the student offers; defaults to the offering's base price"
    )
    preferred_start: Optional[datetime] = None
    preferred_end: Optional[datetime] = None
    message: Optional[str] = Field(None, max_length=1000)

    @field_validator("message")
    @classmethod
    def clean_message(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator("offered_price")
    @classmethod
    def non_negative_price(cls, v: Optional[Money]) -> Optional[Money]:
        if v is not None and v < 0:
            raise ValueError("offered_price cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_mode(self) -> "BookingRequestCreate":
        if self.mode == BookingMode.DIRECT and not self.time_slot_id:
            raise ValueError("time_slot_id is required for DIRECT bookings")
        if self.preferred_start and self.preferred_end and self.preferred_end <= self.preferred_start:
            raise ValueError("preferred_end must be after preferred_start")
        return self


class BookingRequestUpdate(StrictRequestModel):
    """Student edits a request while it is still pending; omitted fields stay as they are."""

    time_slot_id: Optional[str] = None
    offered_price: Optional[Money] = None
    preferred_start: Optional[datetime] = None
    preferred_end: Optional[datetime] = None
    message: Optional[str] = Field(None, max_length=1000)

    @field_validator("message")
    @classmethod
    def clean_message(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v

    @field_validator("offered_price")
    @classmethod
    def non_negative_price(cls, v: Optional[Money]) -> Optional[Money]:
        if v is not None and v < 0:
            raise ValueError("offered_price cannot be negative")
        return v


class BookingAccept(StrictRequestModel):
    final_price: Optional[Money] = None
    time_slot_id: Optional[str] = None
    message: Optional[str] = Field(None, max_length=1000)


class BookingReject(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingReschedule(StrictRequestModel):
    new_slot_id: str


class PaymentStatusUpdate(StrictRequestModel):
    """Settlement callback from the payment provider."""

    status: PaymentStatus
    payment_intent_id: Optional[str] = None


class BookingRequestResponse(StandardizedModel):
    id: str
    offering_id: str
    student_id: str
    instructor_id: str
    time_slot_id: Optional[str] = None
    mode: str
    status: str
    offered_price: Money
    final_price: Optional[Money] = None
    currency: str
    message: Optional[str] = None
    instructor_response: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    expires_at: datetime
    reschedule_count: int
    payment_status: str
    payment_intent_id: Optional[str] = None
    refund_amount: Optional[Money] = None
    created_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    live_session_id: Optional[str] = None


class BookingRequestListResponse(StandardizedModel):
    items: List[BookingRequestResponse]
    skip: int
    limit: int


class ExpirySweepResponse(StandardizedModel):
    examined: int
    expired: int
    skipped: int
    failed: int


class BookingStatsResponse(StandardizedModel):
    total: int
    by_status: Dict[str, int]
    pending: int
    accepted: int
    rejected: int
    cancelled: int
    expired: int
    completed: int
    acceptance_rate: float
    completion_rate: float
