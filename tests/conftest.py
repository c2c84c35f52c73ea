"""
Pytest fixtures for testing
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app.api.deps import get_current_user_id, get_db
from app.config import Settings, get_settings
from app.infrastructure.db.session import Base
from app.infrastructure.db.models import BookingModel, PaymentTransaction, SavingsGoal


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sample_user_id():
    """Sample user ID for tests"""
    return 1


@pytest.fixture
def now():
    """Fixed evaluation instant (UTC)"""
    return datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_goal(db_session, sample_user_id):
    """Factory: insert a savings goal directly (amounts only through the engine)"""
    def _make(target="1000", frequency="custom", amount_per_frequency="0", user_id=None,
              title="Zanzibar trip", trip_id=None, last_contribution=None):
        goal = SavingsGoal(
            user_id=user_id if user_id is not None else sample_user_id,
            title=title,
            target_amount=Decimal(target),
            current_amount=Decimal("0"),
            progress=Decimal("0"),
            is_completed=False,
            frequency=frequency,
            amount_per_frequency=Decimal(amount_per_frequency),
            trip_id=trip_id,
            last_contribution=last_contribution,
        )
        db_session.add(goal)
        db_session.commit()
        return goal
    return _make


@pytest.fixture
def make_transaction(db_session, sample_user_id):
    """Factory: insert a pending ledger transaction"""
    def _make(amount="100", saving_id=None, booking_id=None, provider="mpesa",
              type="savings_contribution", status="pending", user_id=None):
        tx = PaymentTransaction(
            user_id=user_id if user_id is not None else sample_user_id,
            amount=Decimal(amount),
            type=type,
            provider=provider,
            status=status,
            saving_id=saving_id,
            booking_id=booking_id,
        )
        db_session.add(tx)
        db_session.commit()
        return tx
    return _make


@pytest.fixture
def make_booking(db_session, sample_user_id):
    def _make(total="2500", user_id=None):
        booking = BookingModel(
            user_id=user_id if user_id is not None else sample_user_id,
            trip_id="trip-1",
            total_amount=Decimal(total),
            status="pending",
            is_paid=False,
        )
        db_session.add(booking)
        db_session.commit()
        return booking
    return _make


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def api_settings():
    """Webhook checks disabled unless a test sets a secret"""
    return Settings(ENABLE_SCHEDULER=False)


@pytest.fixture
def client(session_factory, sample_user_id, api_settings):
    """Test client with a logged-in user, wired to the in-memory database"""
    from app.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user_id] = lambda: sample_user_id
    app.dependency_overrides[get_settings] = lambda: api_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(client):
    """Same app, no session user"""
    from app.main import app

    app.dependency_overrides.pop(get_current_user_id)
    return client
