"""
Pytest configuration and shared fixtures.

Each test gets a fresh in-memory SQLite database. API tests go through
FastAPI's TestClient with the database session and tenant resolution
overridden.
"""

from __future__ import annotations

import base64
import os
from datetime import datetime, timedelta, timezone

# Must be set before practicehub.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["STORAGE_RETRY_BASE_DELAY"] = "0"
os.environ["DODO_PAYMENTS_WEBHOOK_SECRET"] = "whsec_" + base64.b64encode(
    b"practicehub-test-webhook-key"
).decode()
os.environ.pop("DODO_PAYMENTS_API_KEY", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from practicehub.auth import get_tenant_context  # noqa: E402
from practicehub.database import Base, get_db  # noqa: E402
from practicehub.main import app  # noqa: E402
from practicehub.models import (  # noqa: E402
    Client,
    Location,
    Membership,
    MembershipTier,
    Organization,
    Service,
    Staff,
    StaffWorkingHours,
)
from practicehub.tenant import TenantContext  # noqa: E402

WEBHOOK_SECRET = os.environ["DODO_PAYMENTS_WEBHOOK_SECRET"]

# Monday 4 March 2030, America/New_York is on EST (UTC-5)
MONDAY = datetime(2030, 3, 4, tzinfo=timezone.utc)


def utc(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def engine():
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
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def org(db) -> Organization:
    organization = Organization(name="Downtown Wellness")
    db.add(organization)
    db.commit()
    return organization


@pytest.fixture
def other_org(db) -> Organization:
    organization = Organization(name="Uptown Clinic")
    db.add(organization)
    db.commit()
    return organization


@pytest.fixture
def location(db, org) -> Location:
    loc = Location(organization_id=org.id, name="Main Street", timezone="America/New_York")
    db.add(loc)
    db.commit()
    return loc


@pytest.fixture
def staff(db, org) -> Staff:
    member = Staff(organization_id=org.id, name="Dr. Rivera")
    db.add(member)
    db.commit()
    for day in range(7):
        db.add(
            StaffWorkingHours(
                organization_id=org.id,
                staff_id=member.id,
                day_of_week=day,
                start_time="09:00",
                end_time="17:00",
            )
        )
    db.commit()
    return member


@pytest.fixture
def service(db, org) -> Service:
    svc = Service(organization_id=org.id, name="Consultation", duration_minutes=30, price=50.0)
    db.add(svc)
    db.commit()
    return svc


@pytest.fixture
def client_record(db, org) -> Client:
    record = Client(organization_id=org.id, name="Sam Lee", email="sam@example.com")
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def tier(db, org) -> MembershipTier:
    gold = MembershipTier(
        organization_id=org.id,
        name="Gold",
        monthly_price=99.0,
        monthly_credits=100.0,
        discount_percentage=10.0,
        points_multiplier=0.5,
        processor_product_id="pdt_gold",
    )
    db.add(gold)
    db.commit()
    return gold


@pytest.fixture
def membership(db, org, client_record, tier) -> Membership:
    record = Membership(
        organization_id=org.id,
        client_id=client_record.id,
        tier_id=tier.id,
        status="active",
        monthly_credits=100.0,
        used_credits=0.0,
        start_date=MONDAY - timedelta(days=10),
        end_date=datetime.now(timezone.utc) + timedelta(days=20),
        current_period_start=MONDAY - timedelta(days=10),
        auto_renew=True,
        processor_subscription_id="sub_123",
    )
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def tenant(org) -> TenantContext:
    return TenantContext(organization_id=org.id, user_id=1, role="clinic_admin")


@pytest.fixture
def client_tenant(org, client_record) -> TenantContext:
    return TenantContext(
        organization_id=org.id, user_id=2, role="client", client_id=client_record.id
    )


@pytest.fixture
def api(db, tenant):
    """TestClient bound to the test session, authenticated as a clinic admin"""
    state = {"tenant": tenant}

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tenant_context] = lambda: state["tenant"]
    # No context manager: skips the lifespan hook (table creation, Redis ping)
    test_client = TestClient(app)
    test_client.tenant_state = state
    yield test_client
    app.dependency_overrides.clear()
