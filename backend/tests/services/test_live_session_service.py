from datetime import timedelta
from decimal import Decimal

import pytest

from live_sessions.core.enums import (
    AttendanceStatus,
    BookingRequestStatus,
    LiveSessionStatus,
    NotificationType,
    ParticipantStatus,
    PaymentStatus,
    PayoutStatus,
)
from live_sessions.core.exceptions import (
    BookingConflictException,
    CapacityExceededException,
    ConflictException,
    ExternalServiceException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PolicyViolationException,
    ValidationException,
)
from live_sessions.core.timezone_utils import utc_now
from live_sessions.core.ulid_helper import generate_ulid
from live_sessions.models.availability import TimeSlot
from live_sessions.models.booking_request import BookingRequest
from live_sessions.models.live_session import LiveSession
from live_sessions.models.offering import SessionOffering
from live_sessions.schemas.booking import BookingRequestCreate
from live_sessions.schemas.session import AttendanceUpdate, LiveSessionCreate
from live_sessions.services.live_session_service import (
    attendance_minutes,
    calculate_engagement_score,
    price_breakdown,
)


@pytest.fixture
def booked(booking_service, student, offering, slot):
    """An auto-accepted booking and its live session."""
    request = booking_service.create_request(
        student.id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id)
    )
    return request, request.live_session


@pytest.fixture
def standalone(session_service, instructor):
    start = (utc_now() + timedelta(days=10)).replace(microsecond=0)
    return session_service.create_session(
        LiveSessionCreate(
            instructor_id=instructor.id,
            title="Open jam",
            scheduled_start=start,
            scheduled_end=start + timedelta(hours=1),
            max_participants=2,
            price_per_person=Decimal("25"),
        )
    )


class TestPricing:
    def test_platform_keeps_its_share(self):
        breakdown = price_breakdown(Decimal("100"), 3, 0.2)

        assert breakdown.total_revenue == Decimal("300.00")
        assert breakdown.platform_fee == Decimal("60.00")
        assert breakdown.instructor_payout == Decimal("240.00")

    def test_split_adds_up_after_rounding(self):
        breakdown = price_breakdown(Decimal("33.33"), 1, 0.15)

        assert breakdown.platform_fee + breakdown.instructor_payout == breakdown.total_revenue

    def test_engagement_score(self):
        assert calculate_engagement_score(60, camera_on_time=30, chat_messages=2, questions_asked=1) == 35

    def test_engagement_score_is_capped(self):
        assert calculate_engagement_score(
            10, camera_on_time=10, chat_messages=10, questions_asked=10, poll_responses=10
        ) == 100

    def test_attendance_minutes_never_negative(self):
        now = utc_now()

        assert attendance_minutes(now, now + timedelta(minutes=42)) == 42
        assert attendance_minutes(now, now - timedelta(minutes=5)) == 0


class TestCreateSession:
    def test_standalone_session(self, standalone):
        assert standalone.status == LiveSessionStatus.SCHEDULED
        assert standalone.current_participants == 0
        assert standalone.duration_minutes == 60
        assert standalone.total_revenue == Decimal("25.00")
        assert standalone.platform_fee == Decimal("5.00")
        assert standalone.instructor_payout == Decimal("20.00")

    def test_overlapping_session_is_rejected(self, session_service, instructor, standalone):
        with pytest.raises(BookingConflictException) as exc_info:
            session_service.create_session(
                LiveSessionCreate(
                    instructor_id=instructor.id,
                    title="Clash",
                    scheduled_start=standalone.scheduled_start + timedelta(minutes=30),
                    scheduled_end=standalone.scheduled_end + timedelta(minutes=30),
                )
            )
        assert exc_info.value.details["conflicting_session_id"] == standalone.id

    def test_back_to_back_sessions_do_not_conflict(self, session_service, instructor, standalone):
        follow_up = session_service.create_session(
            LiveSessionCreate(
                instructor_id=instructor.id,
                title="Follow-up",
                scheduled_start=standalone.scheduled_end,
                scheduled_end=standalone.scheduled_end + timedelta(hours=1),
            )
        )

        assert follow_up.status == LiveSessionStatus.SCHEDULED

    def test_only_instructors_host(self, session_service, student):
        start = utc_now() + timedelta(days=2)
        with pytest.raises(ValidationException):
            session_service.create_session(
                LiveSessionCreate(
                    instructor_id=student.id,
                    title="Nope",
                    scheduled_start=start,
                    scheduled_end=start + timedelta(hours=1),
                )
            )

    def test_unknown_instructor(self, session_service):
        start = utc_now() + timedelta(days=2)
        with pytest.raises(NotFoundException) as exc_info:
            session_service.create_session(
                LiveSessionCreate(
                    instructor_id=generate_ulid(),
                    title="Ghost",
                    scheduled_start=start,
                    scheduled_end=start + timedelta(hours=1),
                )
            )
        assert exc_info.value.code == "INSTRUCTOR_NOT_FOUND"

    def test_session_pinned_to_slot_takes_a_seat(self, db, session_service, instructor, slot):
        session_service.create_session(
            LiveSessionCreate(
                instructor_id=instructor.id,
                title="Pinned",
                scheduled_start=slot.start_at,
                scheduled_end=slot.end_at,
                time_slot_id=slot.id,
            )
        )

        db.expire_all()
        assert db.get(TimeSlot, slot.id).current_bookings == 1


class TestStartAndEnd:
    def test_start_opens_room_and_marks_attendance(self, db, session_service, notifications, student, booked):
        _, session = booked

        started = session_service.start_session(session.id, actor_id=session.instructor_id)

        db.expire_all()
        assert started.status == LiveSessionStatus.IN_PROGRESS
        assert started.meeting_url.startswith("https://video.test/fake_room_")
        assert started.actual_start is not None
        assert db.get(LiveSession, session.id).participants[0].status == ParticipantStatus.ATTENDED
        assert [n.user_id for n in notifications.of_type(NotificationType.SESSION_STARTING)] == [student.id]

    def test_room_failure_leaves_session_untouched(self, db, session_service, video_provider, booked):
        _, session = booked
        video_provider.set_error("create_room", ExternalServiceException("video_provider", "timeout"))

        with pytest.raises(ExternalServiceException):
            session_service.start_session(session.id)

        db.expire_all()
        reloaded = db.get(LiveSession, session.id)
        assert reloaded.status == LiveSessionStatus.SCHEDULED
        assert reloaded.meeting_room_id is None

    def test_lost_start_race_closes_the_new_room(self, session_service, video_provider, booked):
        _, session = booked
        create_room = video_provider.create_room

        def create_room_while_cancelled(session_id, host_id):
            room = create_room(session_id, host_id)
            session_service.cancel_session(session_id, reason="instructor ill")
            return room

        video_provider.create_room = create_room_while_cancelled

        with pytest.raises(InvalidTransitionException):
            session_service.start_session(session.id)

        closed = [c["room_id"] for c in video_provider.calls if c["method"] == "end_room"]
        assert len(closed) == 1
        assert closed[0].startswith("fake_room_")

    def test_only_host_can_start(self, seed, session_service, booked):
        _, session = booked

        with pytest.raises(ForbiddenException):
            session_service.start_session(session.id, actor_id=seed.instructor().id)

    def test_start_twice_is_rejected(self, session_service, booked):
        _, session = booked
        session_service.start_session(session.id)

        with pytest.raises(InvalidTransitionException):
            session_service.start_session(session.id)

    def test_end_captures_payment_and_completes_booking(
        self, db, booking_service, session_service, payment_gateway, video_provider, student, booked
    ):
        request, session = booked
        intent_ref = booking_service.create_payment_intent(request.id, student.id).payment_intent_id
        started_at = utc_now()
        started = session_service.start_session(session.id, now=started_at)
        video_provider.recordings[started.meeting_room_id] = "https://video.test/recordings/1"

        ended = session_service.end_session(session.id, actual_end=started_at + timedelta(minutes=45))

        db.expire_all()
        assert ended.status == LiveSessionStatus.COMPLETED
        assert ended.actual_duration_minutes == 45
        assert ended.payment_status == PaymentStatus.PAID
        assert ended.payout_status == PayoutStatus.PENDING
        assert ended.recording_url == "https://video.test/recordings/1"
        assert ended.total_revenue == Decimal("100.00")
        assert ended.instructor_payout == Decimal("80.00")
        assert payment_gateway.intents[intent_ref]["captured"] is True

        completed_request = db.get(BookingRequest, request.id)
        assert completed_request.status == BookingRequestStatus.COMPLETED
        assert completed_request.payment_status == PaymentStatus.PAID

        offering = db.get(SessionOffering, request.offering_id)
        assert offering.total_bookings == 1
        assert offering.total_revenue == Decimal("100.00")

    def test_capture_failure_marks_payout_failed(self, booking_service, session_service, payment_gateway, student, booked):
        request, session = booked
        booking_service.create_payment_intent(request.id, student.id)
        payment_gateway.set_error("capture", ExternalServiceException("payment_gateway", "card declined"))

        ended = session_service.end_session(session.id)

        assert ended.status == LiveSessionStatus.COMPLETED
        assert ended.payout_status == PayoutStatus.FAILED
        assert ended.payment_status == PaymentStatus.PENDING

    def test_already_paid_booking_is_not_captured_again(
        self, booking_service, session_service, payment_gateway, student, booked
    ):
        request, session = booked
        booking_service.create_payment_intent(request.id, student.id)
        booking_service.update_payment_status(request.id, PaymentStatus.PAID)
        payment_gateway.set_error("capture", ExternalServiceException("payment_gateway", "must not be called"))

        ended = session_service.end_session(session.id)

        assert ended.payment_status == PaymentStatus.PAID
        assert ended.payout_status == PayoutStatus.PENDING

    def test_free_session_needs_no_capture(self, seed, booking_service, session_service, student, instructor, slot):
        free = seed.offering(instructor, base_price=Decimal("0"))
        request = booking_service.create_request(
            student.id, BookingRequestCreate(offering_id=free.id, time_slot_id=slot.id)
        )

        ended = session_service.end_session(request.live_session.id)

        assert ended.payment_status == PaymentStatus.FREE
        assert ended.payout_status == PayoutStatus.PENDING

    def test_unpaid_session_without_intent_cannot_pay_out(self, session_service, standalone):
        ended = session_service.end_session(standalone.id)

        assert ended.status == LiveSessionStatus.COMPLETED
        assert ended.payout_status == PayoutStatus.FAILED

    def test_recording_failure_is_ignored(self, session_service, video_provider, booked):
        _, session = booked
        session_service.start_session(session.id)
        video_provider.set_error("get_recording", ExternalServiceException("video_provider", "not ready"))

        ended = session_service.end_session(session.id)

        assert ended.status == LiveSessionStatus.COMPLETED
        assert ended.recording_url is None


class TestCancelAndReschedule:
    def test_cancel_refunds_paid_booking_in_full(
        self, db, booking_service, session_service, payment_gateway, notifications, student, slot, booked
    ):
        request, session = booked
        booking_service.create_payment_intent(request.id, student.id)
        booking_service.update_payment_status(request.id, PaymentStatus.PAID)

        cancelled = session_service.cancel_session(session.id, reason="Instructor ill", actor_id=session.instructor_id)

        db.expire_all()
        assert cancelled.status == LiveSessionStatus.CANCELLED
        assert cancelled.cancellation_reason == "Instructor ill"
        assert db.get(TimeSlot, slot.id).current_bookings == 0

        cancelled_request = db.get(BookingRequest, request.id)
        assert cancelled_request.status == BookingRequestStatus.CANCELLED
        assert cancelled_request.payment_status == PaymentStatus.REFUNDED
        assert cancelled_request.refund_amount == Decimal("100.00")
        assert [r.amount for r in payment_gateway.refunds] == [Decimal("100.00")]
        assert notifications.of_type(NotificationType.SESSION_CANCELLED)[0].user_id == student.id

    def test_cancel_in_progress_session_closes_room(self, session_service, video_provider, booked):
        _, session = booked
        started = session_service.start_session(session.id)

        session_service.cancel_session(session.id)

        assert {"method": "end_room", "room_id": started.meeting_room_id} in video_provider.calls

    def test_completed_session_cannot_be_cancelled(self, session_service, booked):
        _, session = booked
        session_service.end_session(session.id)

        with pytest.raises(ConflictException) as exc_info:
            session_service.cancel_session(session.id)
        assert exc_info.value.code == "SESSION_TERMINAL"

    def test_reschedule_moves_window(self, session_service, standalone):
        new_start = standalone.scheduled_start + timedelta(days=1)

        moved = session_service.reschedule_session(standalone.id, new_start, new_start + timedelta(minutes=90))

        assert moved.status == LiveSessionStatus.SCHEDULED
        assert moved.scheduled_start == new_start
        assert moved.duration_minutes == 90

    def test_reschedule_into_busy_window_is_rejected(self, db, session_service, instructor, standalone):
        other_start = standalone.scheduled_start + timedelta(days=1)
        session_service.create_session(
            LiveSessionCreate(
                instructor_id=instructor.id,
                title="Other",
                scheduled_start=other_start,
                scheduled_end=other_start + timedelta(hours=1),
            )
        )

        with pytest.raises(BookingConflictException):
            session_service.reschedule_session(standalone.id, other_start, other_start + timedelta(hours=1))

        db.expire_all()
        assert db.get(LiveSession, standalone.id).status == LiveSessionStatus.SCHEDULED

    def test_running_session_cannot_be_rescheduled(self, session_service, booked):
        _, session = booked
        session_service.start_session(session.id)
        new_start = session.scheduled_start + timedelta(days=1)

        with pytest.raises(InvalidTransitionException):
            session_service.reschedule_session(session.id, new_start, new_start + timedelta(hours=1))

    def test_booked_session_moves_only_through_its_booking(self, db, session_service, slot, booked):
        request, session = booked
        new_start = session.scheduled_start + timedelta(days=1)

        with pytest.raises(PolicyViolationException) as exc_info:
            session_service.reschedule_session(session.id, new_start, new_start + timedelta(hours=1))
        assert exc_info.value.code == "RESCHEDULE_VIA_BOOKING"

        db.expire_all()
        unchanged = db.get(LiveSession, session.id)
        assert unchanged.scheduled_start == session.scheduled_start
        assert unchanged.time_slot_id == slot.id
        assert db.get(BookingRequest, request.id).reschedule_count == 0
        assert db.get(TimeSlot, slot.id).current_bookings == 1

    def test_reschedule_gives_back_the_slot_seat(self, db, session_service, instructor, slot):
        pinned = session_service.create_session(
            LiveSessionCreate(
                instructor_id=instructor.id,
                title="Pinned",
                scheduled_start=slot.start_at,
                scheduled_end=slot.end_at,
                time_slot_id=slot.id,
            )
        )
        new_start = slot.start_at + timedelta(days=1)

        moved = session_service.reschedule_session(pinned.id, new_start, new_start + timedelta(hours=1))

        db.expire_all()
        assert moved.time_slot_id is None
        assert db.get(TimeSlot, slot.id).current_bookings == 0

    def test_cancel_voids_authorized_payment(
        self, db, booking_service, session_service, payment_gateway, student, booked
    ):
        request, session = booked
        intent_ref = booking_service.create_payment_intent(request.id, student.id).payment_intent_id

        session_service.cancel_session(session.id)

        db.expire_all()
        assert payment_gateway.intents[intent_ref]["canceled"] is True
        assert payment_gateway.refunds == []
        assert db.get(BookingRequest, request.id).payment_status == PaymentStatus.CANCELED
        assert db.get(LiveSession, session.id).payment_status == PaymentStatus.CANCELED

    def test_void_failure_leaves_payment_pending(
        self, db, booking_service, session_service, payment_gateway, student, booked
    ):
        request, session = booked
        booking_service.create_payment_intent(request.id, student.id)
        payment_gateway.set_error("cancel_intent", ExternalServiceException("payment_gateway", "timeout"))

        session_service.cancel_session(session.id)

        db.expire_all()
        cancelled = db.get(BookingRequest, request.id)
        assert cancelled.status == BookingRequestStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.PENDING

    def test_confirm_then_no_show(self, db, session_service, booked):
        _, session = booked

        assert session_service.confirm_session(session.id).status == LiveSessionStatus.CONFIRMED
        closed = session_service.mark_no_show(session.id)

        db.expire_all()
        assert closed.status == LiveSessionStatus.NO_SHOW
        assert db.get(LiveSession, session.id).participants[0].status == ParticipantStatus.NO_SHOW


class TestParticipants:
    def test_group_session_fills_up(self, db, seed, session_service, standalone):
        session_service.add_participant(standalone.id, seed.student().id)
        session_service.add_participant(standalone.id, seed.student().id)

        with pytest.raises(CapacityExceededException) as exc_info:
            session_service.add_participant(standalone.id, seed.student().id)
        assert exc_info.value.message == "This session is full"

        db.expire_all()
        assert db.get(LiveSession, standalone.id).current_participants == 2

    def test_participant_joins_once(self, session_service, student, standalone):
        session_service.add_participant(standalone.id, student.id)

        with pytest.raises(ConflictException) as exc_info:
            session_service.add_participant(standalone.id, student.id)
        assert exc_info.value.code == "PARTICIPANT_EXISTS"

    def test_unknown_user_cannot_join(self, session_service, standalone):
        with pytest.raises(NotFoundException) as exc_info:
            session_service.add_participant(standalone.id, generate_ulid())
        assert exc_info.value.code == "USER_NOT_FOUND"

    def test_removing_frees_the_seat(self, db, seed, session_service, standalone):
        leaving = seed.student()
        session_service.add_participant(standalone.id, leaving.id)
        session_service.add_participant(standalone.id, seed.student().id)

        assert session_service.remove_participant(standalone.id, leaving.id) is True
        session_service.add_participant(standalone.id, seed.student().id)

        db.expire_all()
        assert db.get(LiveSession, standalone.id).current_participants == 2

    def test_attendance_duration_and_engagement(self, session_service, student, booked):
        _, session = booked
        joined = session.scheduled_start

        record = session_service.update_attendance(
            session.id,
            student.id,
            AttendanceUpdate(
                joined_at=joined,
                left_at=joined + timedelta(minutes=50),
                camera_on_time=25,
                chat_messages=1,
            ),
        )

        assert record.duration_minutes == 50
        assert record.status == AttendanceStatus.PRESENT
        assert record.engagement_score == 20

    def test_leaving_before_joining_is_rejected(self, session_service, student, booked):
        _, session = booked
        joined = session.scheduled_start

        with pytest.raises(ValidationException):
            session_service.update_attendance(
                session.id,
                student.id,
                AttendanceUpdate(joined_at=joined, left_at=joined - timedelta(minutes=1)),
            )

    def test_attendance_needs_enrollment(self, seed, session_service, booked):
        _, session = booked

        with pytest.raises(NotFoundException) as exc_info:
            session_service.update_attendance(session.id, seed.student().id, AttendanceUpdate(chat_messages=1))
        assert exc_info.value.code == "ATTENDANCE_NOT_FOUND"


class TestReads:
    def test_upcoming_sessions_for_student(self, session_service, student, booked, standalone):
        _, session = booked

        upcoming = session_service.get_upcoming_sessions(student_id=student.id, days=7)

        assert [s.id for s in upcoming] == [session.id]

    def test_stats(self, session_service, instructor, booked, standalone):
        _, session = booked
        session_service.end_session(session.id)
        session_service.cancel_session(standalone.id)

        stats = session_service.get_session_stats(instructor_id=instructor.id)

        assert stats["total_sessions"] == 2
        assert stats["completed_sessions"] == 1
        assert stats["cancelled_sessions"] == 1
        assert stats["total_revenue"] == 80.0
        assert stats["completion_rate"] == 50.0

    def test_roster_and_attendance(self, seed, session_service, instructor, standalone):
        first, second = seed.student(), seed.student()
        session_service.add_participant(standalone.id, first.id)
        session_service.add_participant(standalone.id, second.id)

        roster = session_service.get_session_participants(standalone.id, actor_id=instructor.id)
        attendance = session_service.get_session_attendance(standalone.id, actor_id=instructor.id)

        assert {p.user_id for p in roster} == {first.id, second.id}
        assert all(p.status == ParticipantStatus.ENROLLED for p in roster)
        assert {a.user_id for a in attendance} == {first.id, second.id}

    def test_roster_is_for_the_instructor(self, session_service, student, booked):
        _, session = booked

        with pytest.raises(ForbiddenException):
            session_service.get_session_participants(session.id, actor_id=student.id)
        with pytest.raises(ForbiddenException):
            session_service.get_session_attendance(session.id, actor_id=student.id)

    def test_unknown_session(self, session_service):
        with pytest.raises(NotFoundException) as exc_info:
            session_service.get_session(generate_ulid())
        assert exc_info.value.code == "SESSION_NOT_FOUND"
