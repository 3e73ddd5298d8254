# backend/live_sessions/services/capacity_ledger.py
"""
Capacity ledger.

The single writer of ``TimeSlot.current_bookings`` and ``TimeSlot.is_booked``.
It never commits: every call runs inside the caller's unit of work, so a
failed reservation rolls back together with the booking that needed it.

Two layers protect a slot:

1. ``ensure_capacity`` is the optimistic pre-check. It counts seats already
   taken plus PENDING requests that still hold a claim on the slot.
2. ``reserve`` is the authoritative check. It is a single conditional UPDATE
   (``... WHERE current_bookings < max_bookings AND NOT is_blocked``), so two
   writers racing for the last seat cannot both succeed even if both passed
   the pre-check on a stale read.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.exceptions import CapacityExceededException, ConflictException, NotFoundException
from ..models.availability import TimeSlot
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.booking_request_repository import BookingRequestRepository
from ..repositories.time_slot_repository import TimeSlotRepository

logger = logging.getLogger(__name__)


class CapacityLedger:
    """Per-slot seat accounting."""

    def __init__(
        self,
        db: Session,
        slot_repository: Optional[TimeSlotRepository] = None,
        request_repository: Optional[BookingRequestRepository] = None,
    ):
        self.db = db
        self.slot_repository = slot_repository or RepositoryFactory.create_time_slot_repository(db)
        self.request_repository = (
            request_repository or RepositoryFactory.create_booking_request_repository(db)
        )

    def lock_slot(self, slot_id: str) -> TimeSlot:
        """Load a slot for a booking decision, row-locked where supported."""
        slot = self.slot_repository.get_for_update(slot_id)
        if slot is None:
            raise NotFoundException(f"Time slot {slot_id} not found", code="SLOT_NOT_FOUND")
        return slot

    def ensure_capacity(self, slot: TimeSlot, exclude_request_id: Optional[str] = None) -> int:
        """
        Reject a booking the slot cannot take.

        Returns the number of seats still free after counting pending claims.

        Raises:
            ConflictException: the slot is blocked or withdrawn
            CapacityExceededException: ``current_bookings + pending >= max_bookings``
        """
        if slot.is_blocked or not slot.is_available:
            raise ConflictException(
                "This time slot is not open for booking",
                code="SLOT_UNAVAILABLE",
                details={"slot_id": slot.id, "blocked": bool(slot.is_blocked)},
            )
        pending = self.request_repository.count_pending_for_slot(slot.id, exclude_request_id)
        taken = int(slot.current_bookings or 0) + pending
        if taken >= int(slot.max_bookings):
            prometheus_metrics.inc_capacity_conflict("precheck")
            raise CapacityExceededException(
                details={
                    "slot_id": slot.id,
                    "current_bookings": slot.current_bookings,
                    "pending_requests": pending,
                    "max_bookings": slot.max_bookings,
                }
            )
        return int(slot.max_bookings) - taken

    def reserve(self, slot_id: str) -> TimeSlot:
        """
        Take one seat with a compare-and-swap UPDATE.

        Raises:
            CapacityExceededException: the slot filled up (or was blocked)
                between the pre-check and this write
        """
        if not self.slot_repository.try_increment(slot_id):
            prometheus_metrics.inc_capacity_conflict("ledger")
            logger.info("Capacity reservation lost for slot %s", slot_id)
            raise CapacityExceededException(details={"slot_id": slot_id})
        slot = self.slot_repository.reload(slot_id)
        if slot is None:
            raise NotFoundException(f"Time slot {slot_id} not found", code="SLOT_NOT_FOUND")
        return slot

    def release(self, slot_id: Optional[str]) -> Optional[TimeSlot]:
        """Give back one seat. Releasing an empty slot is logged and ignored."""
        if not slot_id:
            return None
        if not self.slot_repository.try_decrement(slot_id):
            logger.warning("Release requested for slot %s with no bookings", slot_id)
        return self.slot_repository.reload(slot_id)
