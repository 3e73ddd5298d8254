# backend/live_sessions/services/availability_service.py
"""
Availability service.

Owns InstructorAvailability windows and the TimeSlots generated from them.
Slots are never edited one by one apart from blocking and the auto-accept
override: any change to a window's time range or slot shape deletes its
slots and regenerates them, which is refused once a booking request or live
session points at one of them.
"""

from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import AutoAcceptOverride, RoleName
from ..core.exceptions import (
    AvailabilityOverlapException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.state_machine import state_value
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.publisher import EventPublisher
from ..models.availability import InstructorAvailability, TimeSlot
from ..repositories import RepositoryFactory
from ..schemas.availability import AvailabilityCreate, AvailabilityUpdate
from .base import BaseService
from .slot_generator import SlotBoundary, generate_for_availability, generate_slot_boundaries

logger = logging.getLogger(__name__)

# Fields whose change invalidates the generated slots
STRUCTURAL_FIELDS = (
    "start_time",
    "end_time",
    "slot_duration_minutes",
    "buffer_minutes",
    "max_sessions_per_slot",
)

MAX_GENERATION_RANGE_DAYS = 90


class AvailabilityService(BaseService):
    """
    Service for availability windows and their time slots.

    Ownership is enforced on every mutation: an instructor can only touch
    their own windows and slots.
    """

    def __init__(self, db: Session, event_publisher: Optional[EventPublisher] = None):
        super().__init__(db, event_publisher)
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.slot_repository = RepositoryFactory.create_time_slot_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.offering_repository = RepositoryFactory.create_offering_repository(db)
        self.session_repository = RepositoryFactory.create_live_session_repository(db)

    # Validation helpers

    def _require_instructor(self, instructor_id: str) -> None:
        user = self.user_repository.get_active(instructor_id)
        if user is None:
            raise NotFoundException(f"Instructor {instructor_id} not found", code="INSTRUCTOR_NOT_FOUND")
        if state_value(user.role) != RoleName.INSTRUCTOR.value:
            raise ValidationException("Only instructors can publish availability")

    def _get_owned(self, availability_id: str, instructor_id: str) -> InstructorAvailability:
        availability = self.repository.get_by_id(availability_id)
        if availability is None:
            raise NotFoundException(
                f"Availability {availability_id} not found", code="AVAILABILITY_NOT_FOUND"
            )
        if availability.instructor_id != instructor_id:
            raise ForbiddenException("You can only manage your own availability")
        return availability

    def _get_owned_slot(self, slot_id: str, instructor_id: str) -> TimeSlot:
        slot = self.slot_repository.get_by_id(slot_id)
        if slot is None:
            raise NotFoundException(f"Time slot {slot_id} not found", code="SLOT_NOT_FOUND")
        if slot.instructor_id != instructor_id:
            raise ForbiddenException("You can only manage your own time slots")
        return slot

    @staticmethod
    def _validate_advance_window(min_advance_hours: int, max_advance_hours: int) -> None:
        if min_advance_hours > max_advance_hours:
            raise ValidationException(
                "Minimum advance hours cannot exceed maximum advance hours",
                details={"min_advance_hours": min_advance_hours, "max_advance_hours": max_advance_hours},
            )

    def _ensure_no_overlap(
        self,
        instructor_id: str,
        specific_date: date,
        start_time: Any,
        end_time: Any,
        exclude_id: Optional[str] = None,
    ) -> None:
        existing = self.repository.find_overlapping(
            instructor_id, specific_date, start_time, end_time, exclude_id
        )
        if existing is not None:
            raise AvailabilityOverlapException(
                specific_date=specific_date.isoformat(),
                new_range=f"{start_time.strftime('%H:%M')}-{end_time.strftime('%H:%M')}",
                conflicting_range=existing.window_label,
            )

    # Slot generation

    def _slot_rows(
        self, availability: InstructorAvailability, boundaries: List[SlotBoundary]
    ) -> List[Dict[str, Any]]:
        override = AutoAcceptOverride.coerce(availability.auto_accept_override)
        return [
            {
                "availability_id": availability.id,
                "instructor_id": availability.instructor_id,
                "start_at": boundary.start_at,
                "end_at": boundary.end_at,
                "duration_minutes": boundary.duration_minutes,
                "max_bookings": availability.max_sessions_per_slot,
                "is_available": bool(availability.is_active),
                "auto_accept_override": override,
            }
            for boundary in boundaries
        ]

    def _create_slots(self, availability: InstructorAvailability) -> List[TimeSlot]:
        slots = self.slot_repository.bulk_create(
            self._slot_rows(availability, generate_for_availability(availability))
        )
        self.db.expire(availability, ["time_slots"])
        return slots

    def _expire_slots(self, availability: InstructorAvailability) -> None:
        # Bulk updates bypass the identity map
        for slot in availability.time_slots:
            self.db.expire(slot)
        self.db.expire(availability, ["time_slots"])

    def _regenerate_slots(self, availability: InstructorAvailability) -> List[TimeSlot]:
        """
        Replace every slot of ``availability``.

        Raises:
            ConflictException: a booking request or live session references a slot
        """
        referenced = self.repository.get_referenced_slot_ids(availability.id)
        if referenced:
            raise ConflictException(
                "Cannot regenerate slots that already have bookings",
                code="SLOTS_REFERENCED",
                details={"availability_id": availability.id, "slot_ids": sorted(referenced)},
            )
        deleted = self.slot_repository.delete_for_availability(availability.id)
        self.logger.debug("Deleted %d slots of availability %s", deleted, availability.id)
        return self._create_slots(availability)

    # Windows

    @BaseService.measure_operation("create_availability")
    def create_availability(
        self, instructor_id: str, data: AvailabilityCreate
    ) -> InstructorAvailability:
        """
        Publish a window and generate its slots in one unit of work.

        Raises:
            ValidationException: invalid window, slot shape or timezone
            AvailabilityOverlapException: overlaps another active window that day
        """
        self.log_operation("create_availability", instructor_id=instructor_id, date=str(data.specific_date))
        self._require_instructor(instructor_id)
        self._validate_advance_window(data.min_advance_hours, data.max_advance_hours)
        # Surfaces ordering, shape and timezone errors before anything is written
        generate_slot_boundaries(
            data.specific_date,
            data.start_time,
            data.end_time,
            data.slot_duration_minutes,
            data.buffer_minutes,
            data.timezone,
        )

        with self.transaction():
            self._ensure_no_overlap(instructor_id, data.specific_date, data.start_time, data.end_time)
            availability = self.repository.create(
                instructor_id=instructor_id,
                specific_date=data.specific_date,
                start_time=data.start_time,
                end_time=data.end_time,
                timezone=data.timezone,
                slot_duration_minutes=data.slot_duration_minutes,
                buffer_minutes=data.buffer_minutes,
                min_advance_hours=data.min_advance_hours,
                max_advance_hours=data.max_advance_hours,
                max_sessions_per_slot=data.max_sessions_per_slot,
                auto_accept_override=AutoAcceptOverride.from_optional(data.auto_accept),
                price_override=data.price_override,
                currency=data.currency,
                notes=data.notes,
            )
            slots = self._create_slots(availability)

        self.logger.info(
            "Created availability %s with %d slots for instructor %s",
            availability.id,
            len(slots),
            instructor_id,
        )
        return availability

    @BaseService.measure_operation("update_availability")
    def update_availability(
        self, availability_id: str, instructor_id: str, data: AvailabilityUpdate
    ) -> InstructorAvailability:
        """
        Update a window.

        Changing the time range or slot shape regenerates the slots. Other
        fields are updated in place and the auto-accept override is copied
        onto every slot nobody has booked yet.

        Raises:
            ConflictException: regeneration needed but slots are referenced
        """
        updates = data.model_dump(exclude_unset=True)
        with self.transaction():
            availability = self._get_owned(availability_id, instructor_id)

            structural_changes = {
                field: updates[field]
                for field in STRUCTURAL_FIELDS
                if updates.get(field) is not None and updates[field] != getattr(availability, field)
            }
            start_time = structural_changes.get("start_time", availability.start_time)
            end_time = structural_changes.get("end_time", availability.end_time)
            min_advance = updates.get("min_advance_hours")
            if min_advance is None:
                min_advance = availability.min_advance_hours
            max_advance = updates.get("max_advance_hours")
            if max_advance is None:
                max_advance = availability.max_advance_hours
            self._validate_advance_window(min_advance, max_advance)

            if structural_changes:
                generate_slot_boundaries(
                    availability.specific_date,
                    start_time,
                    end_time,
                    structural_changes.get("slot_duration_minutes", availability.slot_duration_minutes),
                    structural_changes.get("buffer_minutes", availability.buffer_minutes),
                    availability.timezone,
                )
                self._ensure_no_overlap(
                    instructor_id, availability.specific_date, start_time, end_time, availability.id
                )

            for field, value in structural_changes.items():
                setattr(availability, field, value)
            availability.min_advance_hours = min_advance
            availability.max_advance_hours = max_advance
            if "price_override" in updates:
                availability.price_override = updates["price_override"]
            if "notes" in updates:
                availability.notes = updates["notes"]

            override_changed = False
            if data.clear_auto_accept:
                availability.auto_accept_override = AutoAcceptOverride.UNSET
                override_changed = True
            elif "auto_accept" in updates and updates["auto_accept"] is not None:
                availability.auto_accept_override = AutoAcceptOverride.from_optional(
                    updates["auto_accept"]
                )
                override_changed = True

            activation_changed = (
                updates.get("is_active") is not None
                and bool(updates["is_active"]) != bool(availability.is_active)
            )
            if activation_changed:
                availability.is_active = bool(updates["is_active"])
            self.repository.flush()

            if structural_changes:
                self._regenerate_slots(availability)
            else:
                if override_changed:
                    self._propagate_auto_accept(availability)
                if activation_changed:
                    self.slot_repository.set_available_for_availability(
                        availability.id, bool(availability.is_active)
                    )
                    self._expire_slots(availability)

        self.log_operation(
            "update_availability",
            availability_id=availability_id,
            regenerated=bool(structural_changes),
        )
        return availability

    def _propagate_auto_accept(self, availability: InstructorAvailability) -> int:
        referenced = self.repository.get_referenced_slot_ids(availability.id)
        slot_ids = [
            slot.id
            for slot in self.slot_repository.get_by_availability(availability.id)
            if slot.id not in referenced
        ]
        updated = self.slot_repository.set_auto_accept_override(
            slot_ids, AutoAcceptOverride.coerce(availability.auto_accept_override)
        )
        self._expire_slots(availability)
        return updated

    @BaseService.measure_operation("delete_availability")
    def delete_availability(self, availability_id: str, instructor_id: str) -> bool:
        """
        Delete a window and its slots.

        Raises:
            ConflictException: a slot of the window has a booking request or session
        """
        with self.transaction():
            availability = self._get_owned(availability_id, instructor_id)
            referenced = self.repository.get_referenced_slot_ids(availability.id)
            if referenced:
                raise ConflictException(
                    "Cannot delete availability with booked slots",
                    code="SLOTS_REFERENCED",
                    details={"availability_id": availability_id, "slot_ids": sorted(referenced)},
                )
            self.repository.delete(availability.id)

        self.logger.info("Deleted availability %s", availability_id)
        return True

    @BaseService.measure_operation("generate_slots_for_range")
    def generate_slots_for_range(
        self, instructor_id: str, start_date: date, end_date: date
    ) -> Dict[str, Any]:
        """
        Regenerate slots for every active window in ``[start_date, end_date]``.

        Windows with referenced slots are skipped and reported, not failed.
        """
        if start_date > end_date:
            raise ValidationException("start_date must not be after end_date")
        if (end_date - start_date).days > MAX_GENERATION_RANGE_DAYS:
            raise ValidationException(
                f"Slot generation is limited to {MAX_GENERATION_RANGE_DAYS} days at a time"
            )

        generated: List[TimeSlot] = []
        availability_ids: List[str] = []
        skipped: List[Dict[str, Any]] = []
        with self.transaction():
            for availability in self.repository.get_for_range(instructor_id, start_date, end_date):
                referenced = self.repository.get_referenced_slot_ids(availability.id)
                if referenced:
                    skipped.append(
                        {
                            "availability_id": availability.id,
                            "reason": "slots_referenced",
                            "slot_count": len(referenced),
                        }
                    )
                    continue
                generated.extend(self._regenerate_slots(availability))
                availability_ids.append(availability.id)

        self.log_operation(
            "generate_slots_for_range",
            instructor_id=instructor_id,
            generated=len(generated),
            skipped=len(skipped),
        )
        return {
            "generated": len(generated),
            "availability_ids": availability_ids,
            "skipped": skipped,
            "slots": generated,
        }

    # Slots

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        instructor_id: str,
        start: datetime,
        end: datetime,
        offering_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[TimeSlot]:
        """Open slots in ``[start, end]`` that also sit inside their window's advance-booking range."""
        start, end = ensure_utc(start), ensure_utc(end)
        if start > end:
            raise ValidationException("start must not be after end")
        now = now or utc_now()

        min_duration: Optional[int] = None
        if offering_id:
            offering = self.offering_repository.get_by_id(offering_id)
            if offering is None or offering.instructor_id != instructor_id:
                raise NotFoundException(f"Offering {offering_id} not found", code="OFFERING_NOT_FOUND")
            min_duration = offering.duration_minutes

        slots = self.slot_repository.get_for_instructor(
            instructor_id, start, end, bookable_only=True, min_duration_minutes=min_duration
        )
        result = []
        for slot in slots:
            availability = slot.availability
            if availability is None or not availability.is_active:
                continue
            earliest = now + timedelta(hours=availability.min_advance_hours)
            latest = now + timedelta(hours=availability.max_advance_hours)
            if earliest <= slot.start_at <= latest:
                result.append(slot)
        return result

    @BaseService.measure_operation("check_availability")
    def check_availability(self, instructor_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
        """Conflicts of ``[start, end)`` with active sessions and booked or blocked slots."""
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            raise ValidationException("start must be before end")

        conflicts: List[Dict[str, Any]] = []
        for session in self.session_repository.find_overlapping(instructor_id, start, end):
            conflicts.append(
                {
                    "kind": "session",
                    "id": session.id,
                    "start": session.scheduled_start,
                    "end": session.scheduled_end,
                    "status": state_value(session.status),
                }
            )
        for slot in self.slot_repository.get_conflicting(instructor_id, start, end):
            conflicts.append(
                {
                    "kind": "slot",
                    "id": slot.id,
                    "start": slot.start_at,
                    "end": slot.end_at,
                    "status": "BLOCKED" if slot.is_blocked else "BOOKED",
                }
            )
        return {"available": not conflicts, "conflicts": conflicts}

    @BaseService.measure_operation("block_slot")
    def block_slot(self, slot_id: str, instructor_id: str, reason: Optional[str] = None) -> TimeSlot:
        """
        Take a slot out of booking.

        Raises:
            ConflictException: the slot already has bookings
        """
        with self.transaction():
            slot = self._get_owned_slot(slot_id, instructor_id)
            if slot.is_booked or slot.current_bookings > 0:
                raise ConflictException(
                    "Cannot block a slot that already has bookings",
                    code="SLOT_HAS_BOOKINGS",
                    details={"slot_id": slot_id, "current_bookings": slot.current_bookings},
                )
            if not self.slot_repository.set_blocked(slot_id, True, reason):
                # Someone booked it between the read and the write
                raise ConflictException(
                    "Cannot block a slot that already has bookings", code="SLOT_HAS_BOOKINGS"
                )
            slot = self.slot_repository.reload(slot_id)

        self.log_operation("block_slot", slot_id=slot_id, reason=reason)
        return slot

    @BaseService.measure_operation("unblock_slot")
    def unblock_slot(self, slot_id: str, instructor_id: str) -> TimeSlot:
        with self.transaction():
            self._get_owned_slot(slot_id, instructor_id)
            self.slot_repository.set_blocked(slot_id, False)
            slot = self.slot_repository.reload(slot_id)

        self.log_operation("unblock_slot", slot_id=slot_id)
        return slot

    @BaseService.measure_operation("set_slot_auto_accept")
    def set_slot_auto_accept(
        self, slot_id: str, instructor_id: str, override: AutoAcceptOverride
    ) -> TimeSlot:
        """Set the per-slot auto-accept override (UNSET defers to the window)."""
        with self.transaction():
            self._get_owned_slot(slot_id, instructor_id)
            self.slot_repository.set_auto_accept_override([slot_id], override)
            slot = self.slot_repository.reload(slot_id)
        return slot

    # Reads

    def get_availability(self, availability_id: str, instructor_id: str) -> InstructorAvailability:
        return self._get_owned(availability_id, instructor_id)

    @BaseService.measure_operation("get_upcoming_availability")
    def get_upcoming_availability(
        self, instructor_id: str, days: int = 7, today: Optional[date] = None
    ) -> List[InstructorAvailability]:
        if days < 1:
            raise ValidationException("days must be at least 1")
        start_date = today or utc_now().date()
        return self.repository.get_for_range(
            instructor_id, start_date, start_date + timedelta(days=days)
        )

    @BaseService.measure_operation("get_availability_stats")
    def get_availability_stats(
        self, instructor_id: str, since: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Slot counts and utilization (booked / total, as a percentage)."""
        stats = self.slot_repository.get_stats_for_instructor(instructor_id, since)
        total = stats["total_slots"]
        stats["utilization_rate"] = round(stats["booked_slots"] / total * 100, 2) if total else 0.0
        return stats
