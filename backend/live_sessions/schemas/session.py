# backend/live_sessions/schemas/session.py
"""Live session, participant and attendance schemas."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import AttendanceStatus, ParticipantRole
from ._strict_base import StrictRequestModel
from .base import Money, StandardizedModel


class LiveSessionCreate(StrictRequestModel):
    """Schedule a session directly, outside the booking workflow."""

    instructor_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    scheduled_start: datetime
    scheduled_end: datetime
    max_participants: int = Field(1, ge=1, le=500)
    price_per_person: Money = Money("0")
    currency: str = Field("USD", min_length=3, max_length=3)
    offering_id: Optional[str] = None
    time_slot_id: Optional[str] = None
    booking_request_id: Optional[str] = None
    platform_fee_rate: Optional[float] = Field(None, ge=0, lt=1)

    @field_validator("price_per_person")
    @classmethod
    def non_negative_price(cls, v: Money) -> Money:
        if v < 0:
            raise ValueError("price_per_person cannot be negative")
        return v


class LiveSessionUpdate(StrictRequestModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    max_participants: Optional[int] = Field(None, ge=1, le=500)


class SessionReschedule(StrictRequestModel):
    new_start: datetime
    new_end: datetime

    @model_validator(mode="after")
    def validate_order(self) -> "SessionReschedule":
        if self.new_end <= self.new_start:
            raise ValueError("new_end must be after new_start")
        return self


class SessionCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class SessionEnd(StrictRequestModel):
    actual_end: Optional[datetime] = None


class ParticipantAdd(StrictRequestModel):
    user_id: str
    role: ParticipantRole = ParticipantRole.STUDENT
    paid_amount: Optional[Money] = None


class AttendanceUpdate(StrictRequestModel):
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    status: Optional[AttendanceStatus] = None
    camera_on_time: Optional[int] = Field(None, ge=0)
    mic_active_time: Optional[int] = Field(None, ge=0)
    chat_messages: Optional[int] = Field(None, ge=0)
    questions_asked: Optional[int] = Field(None, ge=0)
    poll_responses: Optional[int] = Field(None, ge=0)


class ParticipantResponse(StandardizedModel):
    id: str
    session_id: str
    user_id: str
    role: str
    status: str
    paid_amount: Optional[Money] = None
    joined_at: Optional[datetime] = None


class AttendanceResponse(StandardizedModel):
    id: str
    session_id: str
    user_id: str
    status: str
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    duration_minutes: int
    camera_on_time: int
    mic_active_time: int
    chat_messages: int
    questions_asked: int
    poll_responses: int
    engagement_score: int


class LiveSessionResponse(StandardizedModel):
    id: str
    booking_request_id: Optional[str] = None
    offering_id: Optional[str] = None
    instructor_id: str
    time_slot_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None
    status: str
    max_participants: int
    current_participants: int
    price_per_person: Money
    total_revenue: Money
    platform_fee: Money
    instructor_payout: Money
    currency: str
    payment_status: str
    payout_status: str
    meeting_url: Optional[str] = None
    recording_url: Optional[str] = None
    cancellation_reason: Optional[str] = None
    participants: List[ParticipantResponse] = Field(default_factory=list)


class SessionStatsResponse(StandardizedModel):
    total_sessions: int
    by_status: Dict[str, int]
    scheduled_sessions: int
    in_progress_sessions: int
    completed_sessions: int
    cancelled_sessions: int
    total_revenue: float
    completion_rate: float
    cancellation_rate: float
