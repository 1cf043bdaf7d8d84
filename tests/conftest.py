import os
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TWILIO_ENABLED"] = "false"
os.environ["BUSINESS_TIMEZONE"] = "Asia/Kolkata"

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salonqueue.core.auth import AuthUtils
from salonqueue.core.database import Base, enable_sqlite_savepoints, get_db
from salonqueue.core.rate_limiter import reset_rate_limits
from salonqueue.main import app
from salonqueue.models import Business, Service, Queue, ServiceProvider, ProviderService
from salonqueue.services import queue_service, time_utils
from salonqueue.services.notification_policy import Outbox
from salonqueue.services.rejections import is_rejection

IST = ZoneInfo("Asia/Kolkata")


def ist(hour, minute=0, day=10):
    """A wall-clock time on 2026-03-<day> in the salon's timezone, as UTC."""
    return datetime(2026, 3, day, hour, minute, tzinfo=IST).astimezone(timezone.utc)


NOW = ist(11, 0)


def minutes(n):
    return timedelta(minutes=n)


@pytest.fixture
def engine():
    test_engine = enable_sqlite_savepoints(create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    ))
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def salon(db):
    business = Business(name="Test Salon", slug="test-salon", open_time="09:00", close_time="20:00")
    db.add(business)
    db.flush()

    haircut = Service(business_id=business.id, name="Haircut", duration_minutes=30, price=300)
    beard = Service(business_id=business.id, name="Beard Trim", duration_minutes=15, price=150)
    db.add_all([haircut, beard])
    db.flush()

    queue = Queue(business_id=business.id, service_id=haircut.id, name="Haircut")
    db.add(queue)
    db.commit()
    return SimpleNamespace(business=business, haircut=haircut, beard=beard, queue=queue)


@pytest.fixture
def make_provider(db, salon):
    def _make(name="Asha", services=None, is_active=True):
        provider = ServiceProvider(business_id=salon.business.id, name=name, is_active=is_active)
        for service in (services if services is not None else [salon.haircut, salon.beard]):
            provider.capabilities.append(ProviderService(service_id=service.id))
        db.add(provider)
        db.commit()
        return provider
    return _make


@pytest.fixture
def join(db, salon):
    def _join(name="Guest", service_ids=None, phone="9876543210", now=NOW, outbox=None):
        result = queue_service.join_queue(
            db, salon.queue.id, outbox if outbox is not None else Outbox(),
            service_ids=service_ids, customer_name=name, phone=phone, now=now,
        )
        assert not is_rejection(result), result
        db.commit()
        return result.entry
    return _join


@pytest.fixture
def frozen_now(monkeypatch):
    """Pin every salonqueue module's clock to NOW."""
    original = time_utils.now_utc
    for name, module in list(sys.modules.items()):
        if name.startswith("salonqueue") and getattr(module, "now_utc", None) is original:
            monkeypatch.setattr(module, "now_utc", lambda: NOW)
    return NOW


@pytest.fixture
def client(db, frozen_now):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    reset_rate_limits()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def staff_headers():
    token = AuthUtils.create_access_token({"sub": "staff-1"})
    return {"Authorization": f"Bearer {token}"}
