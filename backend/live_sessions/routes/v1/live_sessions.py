# backend/live_sessions/routes/v1/live_sessions.py
"""
Live session routes - API v1

Versioned session endpoints under /api/v1/live-sessions.
All business logic delegated to LiveSessionService.

Endpoints:
    POST / - Schedule a session outside the booking workflow
    GET / - Sessions of the current user
    GET /upcoming - Sessions of the next N days
    GET /stats - Counts, revenue and rates
    GET /{session_id} - Session details
    PATCH /{session_id} - Update title, description or capacity
    POST /{session_id}/confirm - Instructor confirms
    POST /{session_id}/start - Open the video room
    POST /{session_id}/end - Close the room and capture payment
    POST /{session_id}/cancel - Cancel and refund
    POST /{session_id}/reschedule - Move to a new time
    POST /{session_id}/no-show - Mark as no-show
    GET /{session_id}/participants - Roster of the session
    GET /{session_id}/attendance - Attendance records of the session
    POST /{session_id}/participants - Enroll a participant
    DELETE /{session_id}/participants/{user_id} - Drop a participant
    PUT /{session_id}/attendance/{user_id} - Record attendance
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from ...api.dependencies import (
    get_current_instructor,
    get_current_user,
    get_live_session_service,
    is_admin,
    visibility_scope,
)
from ...core.enums import LiveSessionStatus
from ...core.exceptions import DomainException
from ...models.live_session import LiveSession
from ...models.user import User
from ...schemas.session import (
    AttendanceResponse,
    AttendanceUpdate,
    LiveSessionCreate,
    LiveSessionResponse,
    LiveSessionUpdate,
    ParticipantAdd,
    ParticipantResponse,
    SessionCancel,
    SessionEnd,
    SessionReschedule,
    SessionStatsResponse,
)
from ...services.live_session_service import LiveSessionService
from .errors import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["live-sessions-v1"])


def _actor(user: User) -> Optional[str]:
    """Admins act without the ownership check."""
    return None if is_admin(user) else user.id


def _ensure_visible(session: LiveSession, user: User) -> None:
    if is_admin(user) or session.instructor_id == user.id:
        return
    if any(p.user_id == user.id for p in session.participants):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You are not part of this session",
    )


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post(
    "",
    response_model=LiveSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Instructor already has a session at this time"}},
)
async def create_session(
    data: LiveSessionCreate = Body(...),
    current_user: User = Depends(get_current_instructor),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    if data.instructor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Instructors can only schedule their own sessions",
        )
    try:
        session = await asyncio.to_thread(service.create_session, data)
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=List[LiveSessionResponse])
async def list_sessions(
    status_filter: Optional[LiveSessionStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> List[LiveSessionResponse]:
    try:
        sessions = await asyncio.to_thread(
            service.list_sessions,
            status=status_filter,
            skip=skip,
            limit=limit,
            **visibility_scope(current_user),
        )
        return [LiveSessionResponse.model_validate(s) for s in sessions]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/upcoming", response_model=List[LiveSessionResponse])
async def get_upcoming_sessions(
    days: int = Query(7, ge=1, le=90),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> List[LiveSessionResponse]:
    try:
        sessions = await asyncio.to_thread(
            service.get_upcoming_sessions, days=days, **visibility_scope(current_user)
        )
        return [LiveSessionResponse.model_validate(s) for s in sessions]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/stats", response_model=SessionStatsResponse)
async def get_session_stats(
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> SessionStatsResponse:
    try:
        stats = await asyncio.to_thread(
            service.get_session_stats, **visibility_scope(current_user)
        )
        return SessionStatsResponse(**stats)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Routes on a single session
# ============================================================================


@router.get("/{session_id}", response_model=LiveSessionResponse)
async def get_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(service.get_session, session_id)
        _ensure_visible(session, current_user)
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{session_id}", response_model=LiveSessionResponse)
async def update_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: LiveSessionUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(
            service.update_session, session_id, data, _actor(current_user)
        )
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/confirm", response_model=LiveSessionResponse)
async def confirm_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(
            service.confirm_session, session_id, _actor(current_user)
        )
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{session_id}/start",
    response_model=LiveSessionResponse,
    responses={502: {"description": "Video provider unavailable"}},
)
async def start_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(
            service.start_session, session_id, actor_id=_actor(current_user)
        )
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/end", response_model=LiveSessionResponse)
async def end_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: Optional[SessionEnd] = Body(None),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    """Close the room and capture payment; a capture failure leaves the payout FAILED."""
    try:
        session = await asyncio.to_thread(
            service.end_session,
            session_id,
            actual_end=data.actual_end if data else None,
            actor_id=_actor(current_user),
        )
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/cancel", response_model=LiveSessionResponse)
async def cancel_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: SessionCancel = Body(...),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(
            service.cancel_session,
            session_id,
            reason=data.reason,
            actor_id=_actor(current_user),
        )
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/reschedule", response_model=LiveSessionResponse)
async def reschedule_session(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: SessionReschedule = Body(...),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(
            service.reschedule_session,
            session_id,
            data.new_start,
            data.new_end,
            _actor(current_user),
        )
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/no-show", response_model=LiveSessionResponse)
async def mark_no_show(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> LiveSessionResponse:
    try:
        session = await asyncio.to_thread(service.mark_no_show, session_id, _actor(current_user))
        return LiveSessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 3: Participants and attendance
# ============================================================================


async def _require_instructor_of(
    service: LiveSessionService, session_id: str, user: User
) -> LiveSession:
    session = await asyncio.to_thread(service.get_session, session_id)
    if not is_admin(user) and session.instructor_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the session's instructor can do this",
        )
    return session


@router.get("/{session_id}/participants", response_model=List[ParticipantResponse])
async def list_participants(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> List[ParticipantResponse]:
    try:
        await _require_instructor_of(service, session_id, current_user)
        participants = await asyncio.to_thread(service.get_session_participants, session_id)
        return [ParticipantResponse.model_validate(p) for p in participants]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{session_id}/attendance", response_model=List[AttendanceResponse])
async def list_attendance(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> List[AttendanceResponse]:
    try:
        await _require_instructor_of(service, session_id, current_user)
        records = await asyncio.to_thread(service.get_session_attendance, session_id)
        return [AttendanceResponse.model_validate(r) for r in records]
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{session_id}/participants",
    response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_participant(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: ParticipantAdd = Body(...),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> ParticipantResponse:
    try:
        await _require_instructor_of(service, session_id, current_user)
        participant = await asyncio.to_thread(
            service.add_participant, session_id, data.user_id, data.role, data.paid_amount
        )
        return ParticipantResponse.model_validate(participant)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete(
    "/{session_id}/participants/{user_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_participant(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    user_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> None:
    try:
        await _require_instructor_of(service, session_id, current_user)
        await asyncio.to_thread(service.remove_participant, session_id, user_id)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{session_id}/attendance/{user_id}", response_model=AttendanceResponse)
async def update_attendance(
    session_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    user_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    data: AttendanceUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    service: LiveSessionService = Depends(get_live_session_service),
) -> AttendanceResponse:
    """Record join/leave times and engagement; the score is recomputed on every update."""
    try:
        await _require_instructor_of(service, session_id, current_user)
        record = await asyncio.to_thread(service.update_attendance, session_id, user_id, data)
        return AttendanceResponse.model_validate(record)
    except DomainException as e:
        handle_domain_exception(e)
