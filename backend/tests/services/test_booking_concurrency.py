"""
Concurrent bookings against one seat, each on its own connection.

Uses a file-backed SQLite database so every worker thread gets a real
connection of its own instead of the shared in-memory one.
"""

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from live_sessions.core.enums import BookingRequestStatus
from live_sessions.core.exceptions import CapacityExceededException
from live_sessions.database import Base
from live_sessions.events.publisher import EventPublisher
from live_sessions.models.availability import TimeSlot
from live_sessions.models.booking_request import BookingRequest
from live_sessions.models.live_session import LiveSession
from live_sessions.schemas.booking import BookingRequestCreate
from live_sessions.services.booking_request_service import BookingRequestService
from live_sessions.services.live_session_service import LiveSessionService

WORKERS = 4


@pytest.fixture
def engine(tmp_path):
    import live_sessions.models  # noqa: F401  (register tables on Base.metadata)

    file_engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'bookings.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    Base.metadata.create_all(bind=file_engine)
    yield file_engine
    file_engine.dispose()


def test_only_one_of_many_simultaneous_bookings_gets_the_last_seat(
    db, seed, engine, payment_gateway, video_provider, notifications, offering, slot
):
    students = [seed.student().id for _ in range(WORKERS)]
    SessionMaker = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    barrier = threading.Barrier(WORKERS)

    def _worker(student_id: str) -> str:
        session = SessionMaker()
        try:
            publisher = EventPublisher(notifications)
            service = BookingRequestService(
                session,
                publisher,
                payment_gateway=payment_gateway,
                video_provider=video_provider,
                session_service=LiveSessionService(
                    session, publisher, payment_gateway=payment_gateway, video_provider=video_provider
                ),
            )
            barrier.wait(timeout=5)
            try:
                request = service.create_request(
                    student_id, BookingRequestCreate(offering_id=offering.id, time_slot_id=slot.id)
                )
            except CapacityExceededException:
                return "full"
            return request.status
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as executor:
        results = list(executor.map(_worker, students))

    assert results.count(BookingRequestStatus.ACCEPTED) == 1
    assert results.count("full") == WORKERS - 1

    db.expire_all()
    assert db.get(TimeSlot, slot.id).current_bookings == 1
    assert db.query(BookingRequest).count() == 1
    assert db.query(LiveSession).count() == 1
