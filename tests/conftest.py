import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from tripc.core.config import settings
from tripc.core.security import create_access_token
from tripc.db import session as db_session
from tripc.db.session import Base, get_db, make_engine
from tripc.main import app
from tripc.models.payment import PaymentTransaction
from tripc.models.resource import Resource
from tripc.models.user import User
from tripc.models.voucher import Voucher
from tripc.services import ledger_service, payment_service
from tripc.services.providers import get_provider, ProviderEvent, SUCCESS

MOMO_SECRET = "momo-test-secret"
MOMO_ACCESS = "momo-test-access"
VNPAY_SECRET = "vnpay-test-secret"

ALL_WEEK = json.dumps({d: {"open": "09:00", "close": "22:00"} for d in (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)})


# --- Database ---
@pytest.fixture
def session_factory(tmp_path, monkeypatch):
    """A fresh SQLite file per test; the app, workers and the test all open sessions from it."""
    engine = make_engine(f"sqlite:///{tmp_path / 'tripc.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(db_session, "SessionLocal", factory)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# --- External services ---
@pytest.fixture(autouse=True)
def provider_settings(monkeypatch):
    monkeypatch.setattr(settings, "PAYMENTS_SANDBOX", True)
    monkeypatch.setattr(settings, "MOMO_SECRET_KEY", MOMO_SECRET)
    monkeypatch.setattr(settings, "MOMO_ACCESS_KEY", MOMO_ACCESS)
    monkeypatch.setattr(settings, "MOMO_PARTNER_CODE", "MOMOTEST")
    monkeypatch.setattr(settings, "VNPAY_HASH_SECRET", VNPAY_SECRET)
    monkeypatch.setattr(settings, "VNPAY_TMN_CODE", "VNPTEST")
    monkeypatch.setattr(settings, "SENDGRID_API_KEY", "")


@pytest.fixture(autouse=True)
def mock_send_email(mocker):
    """No SMTP in tests; every notification is recorded as sent."""
    return mocker.patch("tripc.services.email_service.send_email")


# --- API client ---
@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# --- Data ---
def add_user(db, email="traveller@example.com", role="customer", balance=0) -> User:
    u = User(id=str(uuid.uuid4()), email=email, full_name="Test Traveller", role=role, balance=0, is_active=True)
    db.add(u)
    db.commit()
    if balance:
        ledger_service.post_entry(db, u.id, balance, "goodwill", description="test credit")
        db.commit()
    db.refresh(u)
    return u


def add_resource(db, category="dining", capacity=10, unit_price=2500, currency="USD", hours=ALL_WEEK, name=None) -> Resource:
    r = Resource(
        id=str(uuid.uuid4()),
        category=category,
        name=name or f"Test {category}",
        capacity=capacity,
        unit_price=unit_price,
        currency=currency,
        operating_hours_json=hours,
        is_active=True,
    )
    db.add(r)
    db.commit()
    return r


def add_voucher(db, code, **overrides) -> Voucher:
    values = dict(
        id=str(uuid.uuid4()),
        code=code,
        name=code,
        discount_type="fixed",
        discount_value=1000,
        max_discount=None,
        min_spend=0,
        currency="USD",
        category=None,
        is_purchasable=False,
        is_active=True,
        tcent_price=0,
        total_usage_limit=None,
        current_usage_count=0,
        per_user_limit=1,
    )
    values.update(overrides)
    v = Voucher(**values)
    db.add(v)
    db.commit()
    return v


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def future_slot(days=3, time_str="12:00") -> tuple[str, str]:
    return (datetime.now(timezone.utc) + timedelta(days=days)).date().isoformat(), time_str


def confirm_booking(db, booking_id: str, now=None) -> PaymentTransaction:
    """Drive a booking to confirmed through the same path a MoMo success webhook takes."""
    provider = get_provider("momo")
    ref = f"MOMO{uuid.uuid4().hex[:20].upper()}"
    txn = PaymentTransaction(
        id=str(uuid.uuid4()),
        booking_id=booking_id,
        provider="momo",
        provider_transaction_id=ref,
        amount=1,
        currency="VND",
        status="pending",
    )
    db.add(txn)
    db.commit()
    payment_service.apply_outcome(db, provider, ProviderEvent(provider_txn_id=ref, outcome=SUCCESS), None, now=now)
    db.expire_all()
    return txn


@pytest.fixture
def user(db):
    return add_user(db)


@pytest.fixture
def ops_user(db):
    return add_user(db, email="ops@example.com", role="ops")


@pytest.fixture
def restaurant(db):
    return add_resource(db, "dining", capacity=10, unit_price=2500)


@pytest.fixture
def activity(db):
    return add_resource(db, "activity", capacity=20, unit_price=3500, hours=json.dumps(
        {d: {"open": "07:00", "close": "16:00"} for d in (
            "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
        )}
    ))


@pytest.fixture
def hotel(db):
    return add_resource(db, "hotel", capacity=2, unit_price=9000, hours=None)
