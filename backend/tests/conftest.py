"""
Shared fixtures for the live sessions test suite.

Every test gets a fresh in-memory SQLite database, its own fake payment
gateway and video provider, and a notification dispatcher that records what
was sent. Conditional UPDATEs bypass the identity map, so tests that assert on
state changed through the ledger or a status transition call
``db.expire_all()`` first.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Generator, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from live_sessions.core.enums import CancellationPolicy, RoleName
from live_sessions.core.timezone_utils import utc_now
from live_sessions.core.ulid_helper import generate_ulid
from live_sessions.database import Base
from live_sessions.events.publisher import EventPublisher
from live_sessions.integrations import (
    FakePaymentGateway,
    FakeVideoProvider,
    InMemoryNotificationDispatcher,
)
from live_sessions.models.availability import InstructorAvailability, TimeSlot
from live_sessions.models.offering import SessionOffering
from live_sessions.models.user import InstructorProfile, User
from live_sessions.schemas.availability import AvailabilityCreate
from live_sessions.services.availability_service import AvailabilityService
from live_sessions.services.booking_request_service import BookingRequestService
from live_sessions.services.live_session_service import LiveSessionService
from live_sessions.services.payout_service import PayoutService


@pytest.fixture
def engine():
    import live_sessions.models  # noqa: F401  (register tables on Base.metadata)

    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def video_provider() -> FakeVideoProvider:
    return FakeVideoProvider()


@pytest.fixture
def notifications() -> InMemoryNotificationDispatcher:
    return InMemoryNotificationDispatcher()


@pytest.fixture
def publisher(notifications) -> EventPublisher:
    return EventPublisher(notifications)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def availability_service(db, publisher) -> AvailabilityService:
    return AvailabilityService(db, publisher)


@pytest.fixture
def session_service(db, publisher, payment_gateway, video_provider) -> LiveSessionService:
    return LiveSessionService(
        db, publisher, payment_gateway=payment_gateway, video_provider=video_provider
    )


@pytest.fixture
def booking_service(
    db, publisher, payment_gateway, video_provider, session_service
) -> BookingRequestService:
    return BookingRequestService(
        db,
        publisher,
        payment_gateway=payment_gateway,
        video_provider=video_provider,
        session_service=session_service,
    )


@pytest.fixture
def payout_service(db, publisher, payment_gateway) -> PayoutService:
    return PayoutService(db, publisher, payment_gateway=payment_gateway)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


class Seed:
    """Builders for the rows most tests need."""

    def __init__(self, db: Session, availability_service: AvailabilityService):
        self.db = db
        self.availability_service = availability_service

    def user(self, role: RoleName = RoleName.STUDENT, **overrides: Any) -> User:
        values = {
            "email": f"{generate_ulid().lower()}@example.com",
            "first_name": "Test",
            "last_name": role.value.title(),
            "role": role,
        }
        values.update(overrides)
        user = User(**values)
        self.db.add(user)
        self.db.commit()
        return user

    def student(self, **overrides: Any) -> User:
        return self.user(RoleName.STUDENT, **overrides)

    def admin(self, **overrides: Any) -> User:
        return self.user(RoleName.ADMIN, **overrides)

    def instructor(
        self,
        auto_accept: bool = True,
        stripe_account_id: Optional[str] = "acct_test_123",
        is_accepting_students: bool = True,
        live_sessions_enabled: bool = True,
        cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE,
    ) -> User:
        user = self.user(RoleName.INSTRUCTOR)
        self.db.add(
            InstructorProfile(
                user_id=user.id,
                auto_accept_bookings=auto_accept,
                is_accepting_students=is_accepting_students,
                live_sessions_enabled=live_sessions_enabled,
                default_cancellation_policy=cancellation_policy,
                stripe_account_id=stripe_account_id,
            )
        )
        self.db.commit()
        return user

    def offering(self, instructor: User, **overrides: Any) -> SessionOffering:
        values = {
            "instructor_id": instructor.id,
            "title": "Guitar fundamentals",
            "description": "Chords, strumming and a first song",
            "duration_minutes": 60,
            "max_participants": 1,
            "base_price": Decimal("100.00"),
            "currency": "USD",
            "cancellation_policy": CancellationPolicy.MODERATE,
        }
        values.update(overrides)
        offering = SessionOffering(**values)
        self.db.add(offering)
        self.db.commit()
        return offering

    def availability(
        self,
        instructor: User,
        specific_date: Optional[date] = None,
        start: str = "09:00",
        end: str = "12:00",
        **overrides: Any,
    ) -> InstructorAvailability:
        values = {
            "specific_date": specific_date or future_date(),
            "start_time": start,
            "end_time": end,
            "slot_duration_minutes": 60,
            "buffer_minutes": 0,
            "min_advance_hours": 0,
            "max_advance_hours": 720,
        }
        values.update(overrides)
        return self.availability_service.create_availability(
            instructor.id, AvailabilityCreate(**values)
        )

    def slots(self, availability: InstructorAvailability) -> list[TimeSlot]:
        return (
            self.db.query(TimeSlot)
            .filter(TimeSlot.availability_id == availability.id)
            .order_by(TimeSlot.start_at)
            .all()
        )


def future_date(days: int = 3) -> date:
    return (utc_now() + timedelta(days=days)).date()


@pytest.fixture
def seed(db, availability_service) -> Seed:
    return Seed(db, availability_service)


@pytest.fixture
def instructor(seed) -> User:
    return seed.instructor()


@pytest.fixture
def student(seed) -> User:
    return seed.student()


@pytest.fixture
def admin(seed) -> User:
    return seed.admin()


@pytest.fixture
def offering(seed, instructor) -> SessionOffering:
    return seed.offering(instructor)


@pytest.fixture
def availability(seed, instructor) -> InstructorAvailability:
    return seed.availability(instructor)


@pytest.fixture
def slot(seed, availability) -> TimeSlot:
    return seed.slots(availability)[0]


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(db, payment_gateway, video_provider, notifications) -> Generator[TestClient, None, None]:
    """TestClient whose routes share the test's database session and fakes."""
    from live_sessions.api.dependencies.database import get_db
    from live_sessions.api.dependencies.services import (
        get_notification_dispatcher,
        get_payment_gateway,
        get_video_provider,
    )
    from live_sessions.main import app

    def _override_get_db() -> Generator[Session, None, None]:
        db.expire_all()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_video_provider] = lambda: video_provider
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifications
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def auth_headers(user: User) -> dict[str, str]:
    return {"X-User-Id": user.id}


@pytest.fixture
def as_user():
    return auth_headers
