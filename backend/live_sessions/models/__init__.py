"""
Database models for the live sessions engine.

The models are organized by functionality:
- Users and instructor booking preferences
- Session offerings
- Availability windows and their generated time slots
- Booking requests
- Live sessions, participants and attendance
- Instructor payouts
"""

from .availability import InstructorAvailability, TimeSlot
from .booking_request import BookingRequest
from .live_session import AttendanceRecord, LiveSession, SessionParticipant
from .offering import SessionOffering
from .payout import InstructorPayout, PayoutSession
from .user import InstructorProfile, User

__all__ = [
    "AttendanceRecord",
    "BookingRequest",
    "InstructorAvailability",
    "InstructorPayout",
    "InstructorProfile",
    "LiveSession",
    "PayoutSession",
    "SessionOffering",
    "SessionParticipant",
    "TimeSlot",
    "User",
]
