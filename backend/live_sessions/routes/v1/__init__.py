# backend/live_sessions/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import availability, booking_requests, live_sessions, payouts

__all__ = ["availability", "booking_requests", "live_sessions", "payouts"]
