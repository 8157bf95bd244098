"""Pytest configuration for launchlens tests.

WHAT: Shared fixtures for service-level and HTTP endpoint tests
WHY: Every test gets an isolated in-memory database, a frozen clock and
     factories for the rows the attribution/launch flows depend on
REFERENCES:
    - launchlens/main.py: FastAPI application
    - launchlens/database.py: Database configuration
    - launchlens/deps.py: Dependency injection
"""

import os
import sys
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment (before any launchlens import)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ["LAUNCH_STATUS_SCHEDULER_ENABLED"] = "false"
os.environ["METRICS_CACHE_BACKEND"] = "memory"

from launchlens.models import (  # noqa: E402
    Account,
    AttributionStatusEnum,
    Base,
    Launch,
    Purchase,
    Visitor,
    VisitorSession,
)
from launchlens.services.launch_service import derive_status  # noqa: E402
from launchlens.services.metrics_cache import InMemoryMetricsCache  # noqa: E402
from launchlens.utils.clock import FrozenClock  # noqa: E402

NOW = datetime(2025, 3, 15, 12, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every session in a test (StaticPool)."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)

    yield test_engine

    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    """Frozen clock at 2025-03-15 12:00 UTC."""
    return FrozenClock(NOW)


@pytest.fixture
def cache():
    return InMemoryMetricsCache(default_ttl_seconds=3600)


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def account(db):
    acct = Account(id=uuid.uuid4(), name="Test Academy", email="owner@example.com", created_at=NOW)
    db.add(acct)
    db.commit()
    db.refresh(acct)
    return acct


@pytest.fixture
def other_account(db):
    """Second account (for isolation tests)."""
    acct = Account(id=uuid.uuid4(), name="Other Academy", created_at=NOW)
    db.add(acct)
    db.commit()
    db.refresh(acct)
    return acct


@pytest.fixture
def make_visitor(db, account):
    def _make(
        token=None,
        email=None,
        source="google",
        medium="cpc",
        campaign=None,
        fingerprint=None,
        created_at=None,
        account_id=None,
    ):
        visitor = Visitor(
            id=uuid.uuid4(),
            account_id=account_id or account.id,
            visitor_token=token or f"v_{uuid.uuid4().hex[:12]}",
            email=email,
            first_touch={"source": source, "medium": medium, "campaign": campaign},
            device_fingerprint=fingerprint,
            created_at=created_at or NOW - timedelta(days=1),
        )
        db.add(visitor)
        db.commit()
        db.refresh(visitor)
        return visitor

    return _make


@pytest.fixture
def make_session(db):
    def _make(visitor, source="facebook", medium="paid", campaign=None, timestamp=None):
        session = VisitorSession(
            id=uuid.uuid4(),
            visitor_id=visitor.id,
            session_token=f"s_{uuid.uuid4().hex[:12]}",
            source=source,
            medium=medium,
            campaign=campaign,
            timestamp=timestamp or NOW - timedelta(hours=1),
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return _make


@pytest.fixture
def make_purchase(db, account):
    """Insert a purchase row directly (bypasses attribution)."""
    def _make(
        amount="100.00",
        email=None,
        source=None,
        medium=None,
        campaign=None,
        purchased_at=None,
        launch_id=None,
        platform="kajabi",
        account_id=None,
    ):
        purchase = Purchase(
            id=uuid.uuid4(),
            account_id=account_id or account.id,
            email=email or f"buyer_{uuid.uuid4().hex[:8]}@example.com",
            amount=Decimal(amount),
            currency="USD",
            platform=platform,
            platform_purchase_id=f"ord_{uuid.uuid4().hex[:10]}",
            first_touch_source=source,
            first_touch_medium=medium,
            first_touch_campaign=campaign,
            attribution_status=(
                AttributionStatusEnum.matched.value if source else AttributionStatusEnum.unmatched.value
            ),
            launch_id=launch_id,
            purchased_at=purchased_at or NOW - timedelta(days=1),
            created_at=NOW,
        )
        db.add(purchase)
        db.commit()
        db.refresh(purchase)
        return purchase

    return _make


@pytest.fixture
def make_launch(db, account):
    """Insert a launch row directly with status derived from the frozen clock."""
    def _make(
        title="Spring cohort",
        start_date=None,
        end_date=None,
        status=None,
        revenue_goal=None,
        sales_goal=None,
        account_id=None,
    ):
        start_date = start_date or NOW - timedelta(days=3)
        end_date = end_date or NOW + timedelta(days=4)
        launch = Launch(
            id=uuid.uuid4(),
            account_id=account_id or account.id,
            title=title,
            start_date=start_date,
            end_date=end_date,
            revenue_goal=Decimal(revenue_goal) if revenue_goal is not None else None,
            sales_goal=sales_goal,
            status=status or derive_status(start_date, end_date, NOW).value,
            created_at=NOW,
        )
        db.add(launch)
        db.commit()
        db.refresh(launch)
        return launch

    return _make


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(db, account, clock, cache):
    """FastAPI app wired to the test session, frozen clock and fresh cache."""
    from launchlens.database import get_db
    from launchlens.deps import get_clock, get_current_account, get_metrics_cache
    from launchlens.main import create_app

    test_app = create_app()

    def override_get_db():
        yield db

    def override_current_account():
        return db.get(Account, account.id)

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_clock] = lambda: clock
    test_app.dependency_overrides[get_current_account] = override_current_account
    test_app.dependency_overrides[get_metrics_cache] = lambda: cache

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
