# backend/live_sessions/services/payout_service.py
"""
Instructor payout service.

Rolls an instructor's completed, paid sessions into one payout and sends it
to their connected account. A session enters at most one live payout: once
attached its payout_status moves to PROCESSING, and only a failed or
cancelled payout hands it back (PENDING) for the next run.
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, FrozenSet, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.enums import PayoutStatus
from ..core.exceptions import (
    ExternalServiceException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.state_machine import state_value
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.publisher import EventPublisher
from ..events.session_events import PayoutProcessed
from ..integrations import build_payment_gateway
from ..integrations.payment_gateway import PaymentGateway
from ..models.live_session import LiveSession
from ..models.payout import InstructorPayout
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..schemas.payout import TransferWebhookEvent
from .base import BaseService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Net share used for sessions whose payout amount was never snapshotted
FALLBACK_NET_SHARE = Decimal("0.8")

PAYOUT_TRANSITIONS: Dict[PayoutStatus, FrozenSet[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset(
        {PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED, PayoutStatus.CANCELLED}
    ),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.PAID, PayoutStatus.FAILED}),
    PayoutStatus.PAID: frozenset(),
    PayoutStatus.FAILED: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
}

WEBHOOK_STATUS_MAP = {
    "transfer.paid": PayoutStatus.PAID,
    "transfer.failed": PayoutStatus.FAILED,
    "transfer.reversed": PayoutStatus.FAILED,
    "transfer.canceled": PayoutStatus.CANCELLED,
}


def session_net_amount(session: LiveSession) -> Decimal:
    """Instructor's share of a session: the snapshotted payout, or 80% of revenue."""
    if session.instructor_payout is not None and Decimal(str(session.instructor_payout)) > 0:
        return Decimal(str(session.instructor_payout))
    return (Decimal(str(session.total_revenue or 0)) * FALLBACK_NET_SHARE).quantize(CENT)


class PayoutService(BaseService):
    """Service for payout aggregation and settlement."""

    def __init__(
        self,
        db: Session,
        event_publisher: Optional[EventPublisher] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        config: Settings = default_settings,
    ):
        super().__init__(db, event_publisher)
        self.config = config
        self.repository = RepositoryFactory.create_payout_repository(db)
        self.session_repository = RepositoryFactory.create_live_session_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.payment_gateway = payment_gateway or build_payment_gateway(config)

    def _get_payout(self, payout_id: str) -> InstructorPayout:
        payout = self.repository.get_by_id(payout_id)
        if payout is None:
            raise NotFoundException(f"Payout {payout_id} not found", code="PAYOUT_NOT_FOUND")
        return payout

    @BaseService.measure_operation("create_payout")
    def create_payout(
        self,
        instructor_id: str,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        *,
        ended_before: Optional[datetime] = None,
    ) -> InstructorPayout:
        """
        Batch the instructor's eligible sessions into a payout and send it.

        Phases:
        1. Create the payout and claim its sessions (transaction)
        2. Transfer to the connected account (no transaction)
        3. Record the transfer, or the failure (transaction)

        Without a connected account the payout stays PENDING for a manual
        settlement callback.

        Raises:
            ValidationException: no eligible sessions
        """
        # ========== PHASE 1: Aggregate (transaction) ==========
        with self.transaction():
            if self.user_repository.get_active(instructor_id) is None:
                raise NotFoundException(f"Instructor {instructor_id} not found", code="INSTRUCTOR_NOT_FOUND")
            sessions = self.session_repository.get_payout_eligible(
                instructor_id,
                period_start=ensure_utc(period_start) if period_start else None,
                period_end=ensure_utc(period_end) if period_end else None,
                ended_before=ended_before,
            )
            if not sessions:
                raise ValidationException(
                    "No completed, paid sessions are waiting for a payout",
                    code="NO_ELIGIBLE_SESSIONS",
                    details={"instructor_id": instructor_id},
                )

            total = sum((session_net_amount(s) for s in sessions), Decimal("0"))
            payout = self.repository.create(
                instructor_id=instructor_id,
                amount=total,
                currency=sessions[0].currency,
                status=PayoutStatus.PENDING,
                period_start=ensure_utc(period_start) if period_start else sessions[0].scheduled_start,
                period_end=ensure_utc(period_end) if period_end else sessions[-1].scheduled_start,
            )
            for session in sessions:
                self.repository.add_session(
                    payout.id,
                    session_id=session.id,
                    amount=Decimal(str(session.total_revenue or 0)),
                    platform_fee=Decimal(str(session.platform_fee or 0)),
                    net_amount=session_net_amount(session),
                )
            self.session_repository.set_payout_status(
                [s.id for s in sessions], PayoutStatus.PROCESSING
            )
            profile = self.user_repository.get_instructor_profile(instructor_id)
            destination = profile.stripe_account_id if profile is not None else None
            payout_id, amount, currency = payout.id, total, payout.currency

        prometheus_metrics.inc_payout(PayoutStatus.PENDING.value)
        self.log_operation(
            "create_payout", payout_id=payout_id, instructor_id=instructor_id, session_count=len(sessions)
        )
        if not destination:
            self.logger.warning("Instructor %s has no connected account; payout %s left pending", instructor_id, payout_id)
            return self._get_payout(payout_id)

        # ========== PHASE 2: Transfer (no transaction) ==========
        try:
            transfer_id = self.payment_gateway.transfer(
                destination, amount, currency, {"payout_id": payout_id, "instructor_id": instructor_id}
            )
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("payment_gateway", "transfer")
            self.logger.error("Transfer failed for payout %s: %s", payout_id, e)
            return self.update_payout_status(payout_id, PayoutStatus.FAILED, failure_reason=e.message)

        # ========== PHASE 3: Record ==========
        return self.update_payout_status(payout_id, PayoutStatus.PROCESSING, transfer_id=transfer_id)

    @BaseService.measure_operation("process_automatic_payouts")
    def process_automatic_payouts(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Pay out every instructor with sessions that ended at least
        ``payout_delay_hours`` ago. One instructor failing does not stop the run.
        """
        now = now or utc_now()
        ended_before = now - timedelta(hours=self.config.payout_delay_hours)
        with self.transaction():
            instructor_ids = self.session_repository.get_instructors_with_eligible_sessions(ended_before)

        payout_ids: List[str] = []
        errors: List[Dict[str, str]] = []
        for instructor_id in instructor_ids:
            try:
                payout = self.create_payout(instructor_id, ended_before=ended_before)
            except Exception as e:
                self.logger.exception("Automatic payout failed for instructor %s", instructor_id)
                errors.append({"instructor_id": instructor_id, "error": str(e)})
                continue
            payout_ids.append(payout.id)

        result = {
            "instructors": len(instructor_ids),
            "created": len(payout_ids),
            "failed": len(errors),
            "payout_ids": payout_ids,
            "errors": errors,
        }
        self.log_operation(
            "process_automatic_payouts", payouts_created=len(payout_ids), payouts_failed=len(errors)
        )
        return result

    @BaseService.measure_operation("update_payout_status")
    def update_payout_status(
        self,
        payout_id: str,
        status: Union[PayoutStatus, str],
        transfer_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InstructorPayout:
        """
        Settlement callback.

        PAID marks the covered sessions paid out; FAILED and CANCELLED return
        them to PENDING so the next payout picks them up again. Repeating the
        current status is a no-op, so webhook retries are harmless.

        Raises:
            InvalidTransitionException: the payout already settled differently
        """
        target = PayoutStatus(state_value(status))
        now = now or utc_now()
        with self.transaction():
            payout = self._get_payout(payout_id)
            current = PayoutStatus(state_value(payout.status))
            if current == target:
                return payout
            if target not in PAYOUT_TRANSITIONS[current]:
                raise InvalidTransitionException("payout", current.value, target.value)

            payout.status = target
            if transfer_id:
                payout.transfer_id = transfer_id
            session_ids = self.repository.get_session_ids(payout.id)
            if target == PayoutStatus.PAID:
                payout.paid_at = now
                self.session_repository.set_payout_status(session_ids, PayoutStatus.PAID)
            elif target in (PayoutStatus.FAILED, PayoutStatus.CANCELLED):
                payout.failed_at = now if target == PayoutStatus.FAILED else None
                payout.failure_reason = failure_reason
                self.session_repository.set_payout_status(session_ids, PayoutStatus.PENDING)
            self.repository.flush()

            if target in (PayoutStatus.PAID, PayoutStatus.FAILED):
                self.queue_event(
                    PayoutProcessed(
                        payout_id=payout.id,
                        instructor_id=payout.instructor_id,
                        amount=float(payout.amount),
                        currency=payout.currency,
                        status=target.value,
                    )
                )

        prometheus_metrics.inc_payout(target.value)
        self.log_operation("update_payout_status", payout_id=payout_id, status=target.value)
        return payout

    @BaseService.measure_operation("handle_transfer_webhook")
    def handle_transfer_webhook(self, event: TransferWebhookEvent) -> Optional[InstructorPayout]:
        """
        Map a transfer webhook onto ``update_payout_status``.

        Event types without a payout meaning are acknowledged and ignored.
        """
        target = WEBHOOK_STATUS_MAP.get(event.type)
        if target is None:
            self.logger.info("Ignoring transfer webhook of type %s", event.type)
            return None

        transfer = event.data.get("object", event.data)
        transfer_id = transfer.get("id")
        payout = self.repository.get_by_transfer_id(transfer_id) if transfer_id else None
        if payout is None:
            payout_id = (transfer.get("metadata") or {}).get("payout_id")
            if payout_id:
                payout = self.repository.get_by_id(payout_id)
        if payout is None:
            raise NotFoundException(
                "No payout matches this transfer",
                code="PAYOUT_NOT_FOUND",
                details={"transfer_id": transfer_id, "event_id": event.id},
            )

        failure_reason = transfer.get("failure_message") if target == PayoutStatus.FAILED else None
        return self.update_payout_status(
            payout.id, target, transfer_id=transfer_id, failure_reason=failure_reason
        )

    def get_payout(self, payout_id: str, actor_id: Optional[str] = None) -> InstructorPayout:
        payout = self._get_payout(payout_id)
        if actor_id is not None and payout.instructor_id != actor_id:
            raise ForbiddenException("Payouts are only visible to their instructor")
        return payout

    @BaseService.measure_operation("list_payouts")
    def list_payouts(
        self,
        *,
        instructor_id: Optional[str] = None,
        status: Optional[PayoutStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[InstructorPayout]:
        return self.repository.list_payouts(
            instructor_id=instructor_id, status=status, skip=skip, limit=limit
        )

    @BaseService.measure_operation("get_payout_stats")
    def get_payout_stats(self, instructor_id: Optional[str] = None) -> Dict[str, Any]:
        totals = self.repository.get_totals(instructor_id)
        count = totals["payout_count"]
        total_amount = Decimal(str(totals["total_amount"] or 0))
        return {
            "payout_count": count,
            "total_paid": float(totals["total_paid"] or 0),
            "pending_amount": float(totals["pending_amount"] or 0),
            "average_payout": round(float(total_amount / count), 2) if count else 0.0,
        }
