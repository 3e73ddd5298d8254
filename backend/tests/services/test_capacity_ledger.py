import logging

import pytest

from live_sessions.core.enums import BookingMode, BookingRequestStatus
from live_sessions.core.exceptions import (
    CapacityExceededException,
    ConflictException,
    NotFoundException,
)
from live_sessions.core.ulid_helper import generate_ulid
from live_sessions.schemas.booking import BookingRequestCreate
from live_sessions.services.capacity_ledger import CapacityLedger


@pytest.fixture
def group_slot(seed, instructor):
    availability = seed.availability(instructor, start="14:00", end="15:00", max_sessions_per_slot=2)
    return seed.slots(availability)[0]


def test_reserve_takes_seats_until_full(db, group_slot):
    ledger = CapacityLedger(db)

    assert ledger.ensure_capacity(ledger.lock_slot(group_slot.id)) == 2
    slot = ledger.reserve(group_slot.id)
    assert slot.current_bookings == 1
    assert slot.is_booked is False

    slot = ledger.reserve(group_slot.id)
    assert slot.current_bookings == 2
    assert slot.is_booked is True

    with pytest.raises(CapacityExceededException):
        ledger.reserve(group_slot.id)
    db.commit()

    db.expire_all()
    assert ledger.lock_slot(group_slot.id).current_bookings == 2


def test_precheck_counts_pending_claims(db, seed, booking_service):
    instructor = seed.instructor(auto_accept=False)
    availability = seed.availability(instructor, start="14:00", end="15:00", max_sessions_per_slot=2)
    slot = seed.slots(availability)[0]
    offering = seed.offering(instructor)
    ledger = CapacityLedger(db)

    first = booking_service.create_request(
        seed.student().id,
        BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id, mode=BookingMode.REQUEST),
    )
    booking_service.create_request(
        seed.student().id,
        BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id, mode=BookingMode.REQUEST),
    )
    assert first.status == BookingRequestStatus.PENDING

    db.expire_all()
    locked = ledger.lock_slot(slot.id)
    assert locked.current_bookings == 0
    with pytest.raises(CapacityExceededException) as exc_info:
        ledger.ensure_capacity(locked)
    assert exc_info.value.details["pending_requests"] == 2

    # A request re-checking its own claim does not count against itself
    assert ledger.ensure_capacity(locked, exclude_request_id=first.id) == 1


def test_blocked_slot_is_unavailable(db, availability_service, instructor, group_slot):
    availability_service.block_slot(group_slot.id, instructor.id, "vacation")
    ledger = CapacityLedger(db)

    db.expire_all()
    with pytest.raises(ConflictException) as exc_info:
        ledger.ensure_capacity(ledger.lock_slot(group_slot.id))
    assert exc_info.value.code == "SLOT_UNAVAILABLE"

    with pytest.raises(CapacityExceededException):
        ledger.reserve(group_slot.id)


def test_release_returns_a_seat(db, group_slot):
    ledger = CapacityLedger(db)
    ledger.reserve(group_slot.id)
    ledger.reserve(group_slot.id)

    slot = ledger.release(group_slot.id)

    assert slot.current_bookings == 1
    assert slot.is_booked is False


def test_release_of_empty_slot_is_ignored(db, group_slot, caplog):
    ledger = CapacityLedger(db)

    with caplog.at_level(logging.WARNING):
        slot = ledger.release(group_slot.id)

    assert slot.current_bookings == 0
    assert "no bookings" in caplog.text


def test_release_without_slot_is_noop(db):
    assert CapacityLedger(db).release(None) is None


def test_unknown_slot(db):
    with pytest.raises(NotFoundException) as exc_info:
        CapacityLedger(db).lock_slot(generate_ulid())

    assert exc_info.value.code == "SLOT_NOT_FOUND"


def test_counter_never_exceeds_maximum(db, group_slot):
    ledger = CapacityLedger(db)
    outcomes = []
    for _ in range(5):
        try:
            ledger.reserve(group_slot.id)
            outcomes.append("reserved")
        except CapacityExceededException:
            outcomes.append("full")

    db.expire_all()
    slot = ledger.lock_slot(group_slot.id)
    assert outcomes.count("reserved") == 2
    assert slot.current_bookings == slot.max_bookings == 2
