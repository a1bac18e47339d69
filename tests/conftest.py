"""Pytest configuration: in-memory databases and household fixtures."""

import os
from datetime import date
from decimal import Decimal

# Keep tests away from any developer database or .env settings
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from expense_engine.config import reset_settings  # noqa: E402
from expense_engine.models import Base  # noqa: E402
from expense_engine.models.bill import BillType  # noqa: E402
from expense_engine.services.bill_service import BillService  # noqa: E402
from expense_engine.services.db import create_db_engine  # noqa: E402
from expense_engine.services.user_service import UserDirectory  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings from the environment for every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def db_session():
    """Create test database session."""
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def file_sessionmaker(tmp_path):
    """Session factory over a file database, for tests that need two sessions."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def directory(db_session):
    """User directory bound to the test session."""
    return UserDirectory(db_session)


@pytest.fixture
def users(directory):
    """Create three household members."""
    return {
        "alice": directory.create_user("Alice"),
        "bob": directory.create_user("Bob"),
        "carol": directory.create_user("Carol"),
    }


@pytest.fixture
def bill_service(db_session, directory):
    """Bill service bound to the test session."""
    return BillService(db_session, directory=directory)


@pytest.fixture
def draft_bill(bill_service):
    """Electricity bill of 100.00 for March 2024 in draft status."""
    return bill_service.create_bill(
        bill_type=BillType.ELECTRICITY,
        period_start=date(2024, 3, 1),
        period_end=date(2024, 3, 31),
        total_amount=Decimal("100.00"),
        total_units=Decimal("400"),
    )
