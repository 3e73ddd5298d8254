# backend/live_sessions/services/auto_approval.py
"""
Auto-approval policy.

Decides whether a new booking request may skip manual review. The effective
auto-accept flag is resolved slot first, then availability window, then the
instructor profile default. An offering can veto auto-approval with an
explicit FALSE but can never force it on.

Every failing condition is collected so the booking workflow can log why a
request went to manual review.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Tuple

from ..core.enums import AutoAcceptOverride
from ..core.timezone_utils import hours_between

if TYPE_CHECKING:
    from ..models.availability import InstructorAvailability, TimeSlot
    from ..models.offering import SessionOffering
    from ..models.user import InstructorProfile

AUTO_ACCEPT_DISABLED = "auto_accept_disabled"
OFFERING_FORBIDS = "offering_forbids_auto_accept"
NO_SLOT = "no_slot"
OUTSIDE_ADVANCE_WINDOW = "outside_advance_window"
NO_CAPACITY = "no_capacity"
NOT_ACCEPTING_STUDENTS = "not_accepting_students"
LIVE_SESSIONS_DISABLED = "live_sessions_disabled"


@dataclass(frozen=True)
class AutoApprovalInput:
    profile_default: bool
    slot_override: AutoAcceptOverride = AutoAcceptOverride.UNSET
    availability_override: AutoAcceptOverride = AutoAcceptOverride.UNSET
    offering_override: AutoAcceptOverride = AutoAcceptOverride.UNSET
    hours_until_slot: Optional[float] = None
    min_advance_hours: float = 0
    max_advance_hours: float = float("inf")
    remaining_capacity: int = 0
    accepting_students: bool = True
    live_sessions_enabled: bool = True


@dataclass(frozen=True)
class AutoApprovalDecision:
    approved: bool
    resolved_auto_accept: bool
    resolved_from: str
    failed_conditions: Tuple[str, ...] = field(default_factory=tuple)

    def to_log_context(self) -> dict[str, Any]:
        return {
            "auto_approved": self.approved,
            "auto_accept_source": self.resolved_from,
            "failed_conditions": list(self.failed_conditions),
        }


def resolve_auto_accept(
    slot_override: AutoAcceptOverride,
    availability_override: AutoAcceptOverride,
    profile_default: bool,
) -> Tuple[bool, str]:
    """Effective auto-accept flag and the level it came from."""
    if slot_override.is_set:
        return slot_override.resolve(profile_default), "slot"
    if availability_override.is_set:
        return availability_override.resolve(profile_default), "availability"
    return bool(profile_default), "profile"


def evaluate_auto_approval(policy_input: AutoApprovalInput) -> AutoApprovalDecision:
    resolved, source = resolve_auto_accept(
        policy_input.slot_override, policy_input.availability_override, policy_input.profile_default
    )

    failed = []
    if not resolved:
        failed.append(AUTO_ACCEPT_DISABLED)
    if policy_input.offering_override is AutoAcceptOverride.FALSE:
        failed.append(OFFERING_FORBIDS)
    hours = policy_input.hours_until_slot
    if hours is None:
        failed.append(NO_SLOT)
    elif not (policy_input.min_advance_hours <= hours <= policy_input.max_advance_hours):
        failed.append(OUTSIDE_ADVANCE_WINDOW)
    if policy_input.remaining_capacity <= 0:
        failed.append(NO_CAPACITY)
    if not policy_input.accepting_students:
        failed.append(NOT_ACCEPTING_STUDENTS)
    if not policy_input.live_sessions_enabled:
        failed.append(LIVE_SESSIONS_DISABLED)

    return AutoApprovalDecision(
        approved=not failed,
        resolved_auto_accept=resolved,
        resolved_from=source,
        failed_conditions=tuple(failed),
    )


def build_policy_input(
    *,
    profile: Optional["InstructorProfile"],
    offering: "SessionOffering",
    slot: Optional["TimeSlot"],
    availability: Optional["InstructorAvailability"],
    remaining_capacity: int,
    now: datetime,
) -> AutoApprovalInput:
    """Gather the policy inputs from persisted rows."""
    hours_until: Optional[float] = None
    min_advance: float = 0
    max_advance: float = float("inf")
    if slot is not None:
        hours_until = hours_between(now, slot.start_at)
    if availability is not None:
        min_advance = availability.min_advance_hours
        max_advance = availability.max_advance_hours

    return AutoApprovalInput(
        profile_default=bool(profile.auto_accept_bookings) if profile else False,
        slot_override=AutoAcceptOverride.coerce(slot.auto_accept_override if slot else None),
        availability_override=AutoAcceptOverride.coerce(
            availability.auto_accept_override if availability else None
        ),
        offering_override=AutoAcceptOverride.coerce(offering.auto_accept_override),
        hours_until_slot=hours_until,
        min_advance_hours=min_advance,
        max_advance_hours=max_advance,
        remaining_capacity=remaining_capacity,
        accepting_students=bool(profile.is_accepting_students) if profile else False,
        live_sessions_enabled=bool(profile.live_sessions_enabled) if profile else False,
    )
