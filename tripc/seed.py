import json
import logging
import uuid

from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError, OperationalError
from sqlalchemy.orm import Session

from tripc.db import session as db_session
from tripc.models.resource import Resource
from tripc.models.setting import Setting
from tripc.models.user import User
from tripc.models.voucher import Voucher
from tripc.services.settings_service import DEFAULT_USD_TO_VND

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _hours(open_: str, close: str) -> str:
    return json.dumps({d: {"open": open_, "close": close} for d in WEEKDAYS})


# (category, name, capacity, unit_price, currency, operating hours)
RESOURCES = [
    ("dining", "Madame Lam, Da Nang", 10, 2500, "USD", _hours("11:00", "22:00")),
    ("activity", "Marble Mountains Half-Day Tour", 20, 3500, "USD", _hours("07:00", "16:00")),
    ("wellness", "Herbal Spa 90 min", 4, 4500, "USD", _hours("09:00", "21:00")),
    ("beauty", "Hoi An Nail Studio", 3, 1500, "USD", _hours("09:00", "20:00")),
    ("event", "Da Nang Fireworks Grandstand", 200, 5000, "USD", None),
    ("hotel", "Seaside Deluxe King", 8, 9000, "USD", None),
    ("transport", "Da Nang - Hoi An Shuttle", 16, 120000, "VND", None),
]

VOUCHERS = [
    # code, name, type, value, max, min_spend, currency, category, purchasable, tcent_price, stock
    ("ACT_USD10", "$10 off activities", "fixed", 1000, None, 2000, "USD", "activity", False, 0, None),
    ("WELCOME10", "10% off your first booking", "percentage", 10, 1500, 0, "USD", None, False, 0, 1000),
    ("SPA_USD5", "$5 spa credit", "fixed", 500, None, 3000, "USD", "wellness", True, 500, 100),
]


def ensure_user(db: Session, email: str, role: str, name: str):
    u = db.query(User).filter(User.email == email).first()
    if u:
        return
    db.add(User(id=str(uuid.uuid4()), email=email, full_name=name, role=role, balance=0, is_active=True))
    db.commit()


def run(db=None):
    if db is None:
        db = db_session.SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "ops@tripc.local", "ops", "Ops")
        ensure_user(db, "admin@tripc.local", "admin", "Admin")

        if not db.get(Setting, "USD_TO_VND"):
            db.add(Setting(key="USD_TO_VND", int_value=DEFAULT_USD_TO_VND, str_value=None))
            db.commit()

        for category, name, capacity, price, currency, hours in RESOURCES:
            if db.query(Resource).filter(Resource.name == name).first():
                continue
            db.add(Resource(
                id=str(uuid.uuid4()),
                category=category,
                name=name,
                capacity=capacity,
                unit_price=price,
                currency=currency,
                operating_hours_json=hours,
                is_active=True,
            ))
        for code, name, kind, value, cap, min_spend, currency, category, purchasable, price, stock in VOUCHERS:
            if db.query(Voucher).filter(Voucher.code == code).first():
                continue
            db.add(Voucher(
                id=str(uuid.uuid4()),
                code=code,
                name=name,
                discount_type=kind,
                discount_value=value,
                max_discount=cap,
                min_spend=min_spend,
                currency=currency,
                category=category,
                is_purchasable=purchasable,
                tcent_price=price,
                total_usage_limit=stock,
                current_usage_count=0,
                per_user_limit=1,
                is_active=True,
            ))
        db.commit()
        logger.info("Seed complete")
    finally:
        db.close()


if __name__ == "__main__":
    run()
