# backend/live_sessions/repositories/payout_repository.py
"""Instructor payout repository."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.enums import PayoutStatus
from ..core.exceptions import RepositoryException
from ..models.payout import InstructorPayout, PayoutSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PayoutRepository(BaseRepository[InstructorPayout]):
    """Data access for payouts and the sessions they cover."""

    def __init__(self, db: Session):
        super().__init__(db, InstructorPayout)

    def _apply_eager_loading(self, query):
        return query.options(selectinload(InstructorPayout.payout_sessions))

    def add_session(self, payout_id: str, **kwargs: Any) -> PayoutSession:
        try:
            row = PayoutSession(payout_id=payout_id, **kwargs)
            self.db.add(row)
            self.db.flush()
            return row
        except SQLAlchemyError as e:
            self.logger.error("Error attaching session to payout %s: %s", payout_id, e)
            raise RepositoryException(f"Failed to attach payout session: {e}") from e

    def get_session_ids(self, payout_id: str) -> List[str]:
        try:
            rows = (
                self.db.query(PayoutSession.session_id)
                .filter(PayoutSession.payout_id == payout_id)
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error("Error loading sessions for payout %s: %s", payout_id, e)
            raise RepositoryException(f"Failed to load payout sessions: {e}") from e

    def get_by_transfer_id(self, transfer_id: str) -> Optional[InstructorPayout]:
        return self.find_one_by(transfer_id=transfer_id)

    def list_payouts(
        self,
        *,
        instructor_id: Optional[str] = None,
        status: Optional[PayoutStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[InstructorPayout]:
        query = self._build_query()
        if instructor_id:
            query = query.filter(InstructorPayout.instructor_id == instructor_id)
        if status:
            query = query.filter(InstructorPayout.status == status)
        return self._execute_query(
            query.order_by(InstructorPayout.created_at.desc(), InstructorPayout.id.desc())
            .offset(skip)
            .limit(limit)
        )

    def get_totals(self, instructor_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            query = self.db.query(
                func.count(InstructorPayout.id),
                func.coalesce(
                    func.sum(
                        case(
                            (InstructorPayout.status == PayoutStatus.PAID, InstructorPayout.amount),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                InstructorPayout.status.in_(
                                    [PayoutStatus.PENDING, PayoutStatus.PROCESSING]
                                ),
                                InstructorPayout.amount,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(func.sum(InstructorPayout.amount), 0),
            )
            if instructor_id:
                query = query.filter(InstructorPayout.instructor_id == instructor_id)
            count, paid, pending, total = query.one()
            return {
                "payout_count": int(count or 0),
                "total_paid": paid,
                "pending_amount": pending,
                "total_amount": total,
            }
        except SQLAlchemyError as e:
            self.logger.error("Error computing payout totals: %s", e)
            raise RepositoryException(f"Failed to compute payout stats: {e}") from e
