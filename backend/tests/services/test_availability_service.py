from datetime import datetime, time, timedelta, timezone

import pytest

from live_sessions.core.enums import AutoAcceptOverride, BookingMode
from live_sessions.core.exceptions import (
    AvailabilityOverlapException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from live_sessions.core.timezone_utils import utc_now
from live_sessions.core.ulid_helper import generate_ulid
from live_sessions.models.availability import InstructorAvailability, TimeSlot
from live_sessions.schemas.availability import AvailabilityCreate, AvailabilityUpdate
from live_sessions.schemas.booking import BookingRequestCreate


def _window_start(availability: InstructorAvailability) -> datetime:
    return datetime.combine(availability.specific_date, availability.start_time, tzinfo=timezone.utc)


class TestCreateAvailability:
    def test_generates_slots_in_the_same_unit_of_work(self, seed, instructor):
        availability = seed.availability(instructor, start="09:00", end="12:00")

        slots = seed.slots(availability)
        assert len(slots) == 3
        assert slots[0].start_at == _window_start(availability)
        assert all(s.max_bookings == 1 and s.current_bookings == 0 for s in slots)
        assert all(s.instructor_id == instructor.id for s in slots)

    def test_buffer_and_group_capacity_flow_into_slots(self, seed, instructor):
        availability = seed.availability(
            instructor, start="09:00", end="11:00", slot_duration_minutes=45, buffer_minutes=15,
            max_sessions_per_slot=4,
        )

        slots = seed.slots(availability)
        assert [s.duration_minutes for s in slots] == [45, 45]
        assert slots[1].start_at - slots[0].start_at == timedelta(hours=1)
        assert {s.max_bookings for s in slots} == {4}

    def test_window_override_is_copied_to_slots(self, seed, instructor):
        availability = seed.availability(instructor, auto_accept=False)

        assert availability.auto_accept_override == AutoAcceptOverride.FALSE
        assert {s.auto_accept_override for s in seed.slots(availability)} == {AutoAcceptOverride.FALSE}

    def test_overlapping_window_is_rejected(self, seed, instructor, availability):
        with pytest.raises(AvailabilityOverlapException) as exc_info:
            seed.availability(instructor, specific_date=availability.specific_date, start="11:00", end="13:00")

        assert exc_info.value.code == "AVAILABILITY_OVERLAP"
        assert exc_info.value.details["conflicting_window"] == "09:00-12:00"

    def test_adjacent_window_is_allowed(self, seed, instructor, availability):
        later = seed.availability(
            instructor, specific_date=availability.specific_date, start="12:00", end="13:00"
        )

        assert len(seed.slots(later)) == 1

    def test_end_before_start_is_rejected(self, seed, instructor):
        with pytest.raises(ValidationException):
            seed.availability(instructor, start="12:00", end="09:00")

    def test_min_advance_above_max_advance_is_rejected(self, seed, instructor):
        with pytest.raises(ValidationException):
            seed.availability(instructor, min_advance_hours=48, max_advance_hours=24)

    def test_students_cannot_publish_availability(self, availability_service, student):
        data = AvailabilityCreate(specific_date=utc_now().date(), start_time="09:00", end_time="10:00")

        with pytest.raises(ValidationException):
            availability_service.create_availability(student.id, data)

    def test_hhmm_strings_are_parsed(self):
        data = AvailabilityCreate(specific_date="2026-07-01", start_time="09:30", end_time="17:00")

        assert data.start_time == time(9, 30)
        assert data.end_time == time(17, 0)


class TestUpdateAvailability:
    def test_structural_change_regenerates_slots(self, seed, db, availability_service, instructor, availability):
        old_ids = {s.id for s in seed.slots(availability)}

        availability_service.update_availability(
            availability.id, instructor.id, AvailabilityUpdate(slot_duration_minutes=30)
        )

        db.expire_all()
        slots = seed.slots(availability)
        assert len(slots) == 6
        assert not old_ids & {s.id for s in slots}

    def test_structural_change_refused_once_a_slot_is_booked(
        self, seed, availability_service, booking_service, instructor, availability
    ):
        offering = seed.offering(instructor)
        slot = seed.slots(availability)[0]
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id)
        )

        with pytest.raises(ConflictException) as exc_info:
            availability_service.update_availability(
                availability.id, instructor.id, AvailabilityUpdate(end_time="11:00")
            )
        assert exc_info.value.code == "SLOTS_REFERENCED"

    def test_override_change_propagates_to_unreferenced_slots(
        self, seed, db, availability_service, booking_service, instructor, availability
    ):
        offering = seed.offering(instructor)
        booked = seed.slots(availability)[0]
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=booked.id)
        )

        availability_service.update_availability(
            availability.id, instructor.id, AvailabilityUpdate(auto_accept=False)
        )

        db.expire_all()
        overrides = {s.id: s.auto_accept_override for s in seed.slots(availability)}
        assert overrides.pop(booked.id) == AutoAcceptOverride.UNSET
        assert set(overrides.values()) == {AutoAcceptOverride.FALSE}

    def test_clear_override_resets_to_unset(self, seed, db, availability_service, instructor):
        availability = seed.availability(instructor, auto_accept=True)

        updated = availability_service.update_availability(
            availability.id, instructor.id, AvailabilityUpdate(clear_auto_accept=True)
        )

        db.expire_all()
        assert updated.auto_accept_override == AutoAcceptOverride.UNSET
        assert {s.auto_accept_override for s in seed.slots(availability)} == {AutoAcceptOverride.UNSET}

    def test_deactivation_withdraws_slots(self, seed, db, availability_service, instructor, availability):
        availability_service.update_availability(
            availability.id, instructor.id, AvailabilityUpdate(is_active=False)
        )

        db.expire_all()
        assert not any(s.is_available for s in seed.slots(availability))

    def test_other_instructor_cannot_update(self, seed, availability_service, availability):
        other = seed.instructor()

        with pytest.raises(ForbiddenException):
            availability_service.update_availability(
                availability.id, other.id, AvailabilityUpdate(notes="mine now")
            )


class TestDeleteAvailability:
    def test_delete_removes_window_and_slots(self, seed, db, availability_service, instructor, availability):
        assert availability_service.delete_availability(availability.id, instructor.id) is True

        db.expire_all()
        assert db.query(InstructorAvailability).count() == 0
        assert db.query(TimeSlot).count() == 0

    def test_delete_refused_with_bookings(self, seed, availability_service, booking_service, instructor, availability):
        offering = seed.offering(instructor)
        slot = seed.slots(availability)[0]
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id)
        )

        with pytest.raises(ConflictException) as exc_info:
            availability_service.delete_availability(availability.id, instructor.id)
        assert exc_info.value.code == "SLOTS_REFERENCED"

    def test_unknown_window(self, availability_service, instructor):
        with pytest.raises(NotFoundException):
            availability_service.delete_availability(generate_ulid(), instructor.id)


class TestSlotQueries:
    def test_available_slots_respect_advance_window(self, seed, availability_service, instructor):
        availability = seed.availability(instructor, min_advance_hours=2, max_advance_hours=720)
        slots = seed.slots(availability)
        window_start = _window_start(availability)

        # 90 minutes before the window only the slots at least 2h out qualify
        now = window_start - timedelta(minutes=90)
        found = availability_service.get_available_slots(
            instructor.id, window_start - timedelta(days=1), window_start + timedelta(days=1), now=now
        )

        assert [s.id for s in found] == [s.id for s in slots[1:]]

    def test_available_slots_skip_full_and_blocked(self, seed, availability_service, booking_service, instructor, availability):
        offering = seed.offering(instructor)
        slots = seed.slots(availability)
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slots[0].id)
        )
        availability_service.block_slot(slots[1].id, instructor.id, "dentist")

        window_start = _window_start(availability)
        found = availability_service.get_available_slots(
            instructor.id, window_start, window_start + timedelta(hours=5)
        )

        assert [s.id for s in found] == [slots[2].id]

    def test_available_slots_filter_by_offering_duration(self, seed, availability_service, instructor, availability):
        long_offering = seed.offering(instructor, duration_minutes=90)
        window_start = _window_start(availability)

        found = availability_service.get_available_slots(
            instructor.id, window_start, window_start + timedelta(hours=5), offering_id=long_offering.id
        )

        assert found == []

    def test_available_slots_unknown_offering(self, seed, availability_service, instructor):
        other_offering = seed.offering(seed.instructor())
        now = utc_now()

        with pytest.raises(NotFoundException):
            availability_service.get_available_slots(
                instructor.id, now, now + timedelta(days=1), offering_id=other_offering.id
            )

    def test_check_availability_reports_sessions_and_blocked_slots(
        self, seed, availability_service, booking_service, instructor, availability
    ):
        offering = seed.offering(instructor)
        slots = seed.slots(availability)
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slots[0].id)
        )
        availability_service.block_slot(slots[2].id, instructor.id)
        window_start = _window_start(availability)

        result = availability_service.check_availability(
            instructor.id, window_start, window_start + timedelta(hours=3)
        )

        assert result["available"] is False
        kinds = {(c["kind"], c["status"]) for c in result["conflicts"]}
        assert ("session", "SCHEDULED") in kinds
        assert ("slot", "BOOKED") in kinds
        assert ("slot", "BLOCKED") in kinds

    def test_check_availability_free_range(self, availability_service, instructor, availability):
        window_start = _window_start(availability)

        result = availability_service.check_availability(
            instructor.id, window_start, window_start + timedelta(hours=3)
        )

        assert result == {"available": True, "conflicts": []}


class TestSlotAdministration:
    def test_block_and_unblock(self, availability_service, instructor, slot):
        blocked = availability_service.block_slot(slot.id, instructor.id, "travel")
        assert blocked.is_blocked is True
        assert blocked.block_reason == "travel"

        unblocked = availability_service.unblock_slot(slot.id, instructor.id)
        assert unblocked.is_blocked is False
        assert unblocked.block_reason is None

    def test_cannot_block_booked_slot(self, seed, availability_service, booking_service, instructor, slot):
        offering = seed.offering(instructor)
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id)
        )

        with pytest.raises(ConflictException) as exc_info:
            availability_service.block_slot(slot.id, instructor.id)
        assert exc_info.value.code == "SLOT_HAS_BOOKINGS"

    def test_other_instructor_cannot_block(self, seed, availability_service, slot):
        with pytest.raises(ForbiddenException):
            availability_service.block_slot(slot.id, seed.instructor().id)

    def test_set_slot_auto_accept(self, availability_service, instructor, slot):
        updated = availability_service.set_slot_auto_accept(slot.id, instructor.id, AutoAcceptOverride.TRUE)

        assert updated.auto_accept_override == AutoAcceptOverride.TRUE


class TestRangeAndStats:
    def test_generate_slots_for_range_skips_windows_with_bookings(
        self, seed, db, availability_service, booking_service, instructor, availability
    ):
        other_day = seed.availability(instructor, specific_date=availability.specific_date + timedelta(days=1))
        offering = seed.offering(instructor)
        booking_service.create_request(
            seed.student().id,
            BookingRequestCreate(offering_id=offering.id, time_slot_id=seed.slots(availability)[0].id),
        )

        result = availability_service.generate_slots_for_range(
            instructor.id, availability.specific_date, other_day.specific_date
        )

        assert result["generated"] == 3
        assert result["availability_ids"] == [other_day.id]
        assert result["skipped"][0]["availability_id"] == availability.id
        assert result["skipped"][0]["reason"] == "slots_referenced"

    def test_generate_slots_range_is_capped(self, availability_service, instructor):
        today = utc_now().date()

        with pytest.raises(ValidationException):
            availability_service.generate_slots_for_range(instructor.id, today, today + timedelta(days=120))

    def test_upcoming_availability(self, seed, availability_service, instructor, availability):
        seed.availability(instructor, specific_date=availability.specific_date + timedelta(days=30))

        upcoming = availability_service.get_upcoming_availability(instructor.id, days=7)

        assert [a.id for a in upcoming] == [availability.id]

    def test_stats(self, seed, availability_service, booking_service, instructor, availability):
        offering = seed.offering(instructor)
        slots = seed.slots(availability)
        booking_service.create_request(
            seed.student().id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slots[0].id)
        )
        availability_service.block_slot(slots[1].id, instructor.id)

        stats = availability_service.get_availability_stats(instructor.id)

        assert stats["total_slots"] == 3
        assert stats["booked_slots"] == 1
        assert stats["blocked_slots"] == 1
        assert stats["available_slots"] == 1
        assert stats["utilization_rate"] == pytest.approx(33.33)

    def test_booking_mode_default_is_direct(self):
        assert BookingRequestCreate(offering_id="x", time_slot_id="y").mode == BookingMode.DIRECT
