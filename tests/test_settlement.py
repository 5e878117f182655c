import json

from sqlalchemy.exc import SQLAlchemyError

from tripc.models.booking import Booking
from tripc.models.booking_event import BookingEvent
from tripc.models.email_log import EmailLog
from tripc.models.ledger import LedgerEntry
from tripc.models.payment import PaymentTransaction
from tripc.models.shop_order import ShopOrder, ShopOrderItem
from tripc.models.voucher import UserVoucher, Voucher
from tripc.services import settlement_service

from tests.conftest import add_user, add_voucher, auth_headers, confirm_booking, future_slot


def _checkout(client, resource, user, voucher_code=None) -> str:
    date_str, time_str = future_slot()
    body = {"category": resource.category, "resourceId": resource.id, "date": date_str, "time": time_str}
    if voucher_code:
        body["voucherCode"] = voucher_code
    response = client.post("/api/v1/checkout", json=body, headers=auth_headers(user))
    assert response.status_code == 201, response.text
    return response.json()["bookingId"]


def _wallet_voucher(client, db, user) -> Voucher:
    v = add_voucher(db, "SPA_USD5", discount_value=500, is_purchasable=True, tcent_price=500, total_usage_limit=100)
    response = client.post("/api/v1/vouchers/redeem", json={"templateId": v.id}, headers=auth_headers(user))
    assert response.status_code == 200, response.text
    return v


def test_wallet_voucher_consumed_on_payment(client, db, restaurant):
    user = add_user(db, balance=1000)
    _wallet_voucher(client, db, user)
    booking_id = _checkout(client, restaurant, user, voucher_code="SPA_USD5")

    # Checkout only records the intent to use it
    assert db.query(UserVoucher).one().status == "available"

    confirm_booking(db, booking_id)

    uv = db.query(UserVoucher).one()
    assert uv.status == "used"
    assert uv.booking_id == booking_id
    b = db.get(Booking, booking_id)
    assert b.status == "confirmed"
    assert b.total_amount == 2000


def _attach_voucher(db, booking_id, source_id):
    """Give a booking the same voucher intent as another, as two simultaneous checkouts would."""
    source, b = db.get(Booking, source_id), db.get(Booking, booking_id)
    b.voucher_id, b.user_voucher_id = source.voucher_id, source.user_voucher_id
    b.discount_amount = source.discount_amount
    b.total_amount = b.subtotal_amount - b.discount_amount
    db.commit()


def test_second_live_booking_cannot_reuse_wallet_voucher(client, db, restaurant):
    user = add_user(db, balance=1000)
    _wallet_voucher(client, db, user)
    _checkout(client, restaurant, user, voucher_code="SPA_USD5")

    date_str, time_str = future_slot()
    response = client.post("/api/v1/checkout", headers=auth_headers(user), json={
        "category": "dining", "resourceId": restaurant.id, "date": date_str, "time": time_str, "voucherCode": "SPA_USD5",
    })

    assert response.status_code == 400
    assert response.json()["error"] == "Voucher is not in your wallet"


def test_voucher_conflict_still_confirms(client, db, restaurant):
    user = add_user(db, balance=1000)
    _wallet_voucher(client, db, user)
    first = _checkout(client, restaurant, user, voucher_code="SPA_USD5")
    second = _checkout(client, restaurant, user)
    _attach_voucher(db, second, first)

    confirm_booking(db, first)
    confirm_booking(db, second)

    assert db.get(Booking, second).status == "confirmed"
    failed = db.query(BookingEvent).filter_by(booking_id=second, event_type="VOUCHER_CONSUMPTION_FAILED").all()
    assert len(failed) == 1
    assert db.query(BookingEvent).filter_by(booking_id=first, event_type="VOUCHER_CONSUMPTION_FAILED").count() == 0
    # Loyalty still accrued for both
    assert db.query(LedgerEntry).filter_by(user_id=user.id, reason="loyalty_accrual").count() == 2


def test_per_user_limit_enforced_at_settlement(client, db, user, restaurant):
    v = add_voucher(db, "ONCE", discount_value=500, total_usage_limit=10)
    first = _checkout(client, restaurant, user, voucher_code="ONCE")
    second = _checkout(client, restaurant, user)
    _attach_voucher(db, second, first)

    confirm_booking(db, first)
    confirm_booking(db, second)

    db.expire_all()
    assert db.get(Voucher, v.id).current_usage_count == 1
    events = db.query(BookingEvent).filter_by(event_type="VOUCHER_CONSUMPTION_FAILED").all()
    assert [e.booking_id for e in events] == [second]


def test_wallet_voucher_stock_taken_once(client, db, restaurant):
    user = add_user(db, balance=1000)
    v = add_voucher(db, "LAST_ONE", discount_value=500, is_purchasable=True, tcent_price=500, total_usage_limit=1)
    client.post("/api/v1/vouchers/redeem", json={"templateId": v.id}, headers=auth_headers(user))
    booking_id = _checkout(client, restaurant, user, voucher_code="LAST_ONE")

    confirm_booking(db, booking_id)

    db.expire_all()
    assert db.get(Voucher, v.id).current_usage_count == 1
    assert db.query(UserVoucher).one().status == "used"
    assert db.query(BookingEvent).filter_by(event_type="VOUCHER_CONSUMPTION_FAILED").count() == 0


def test_stock_limited_voucher_counts_usage(client, db, user, restaurant):
    v = add_voucher(db, "WELCOME10", discount_type="percentage", discount_value=10, total_usage_limit=1000)
    booking_id = _checkout(client, restaurant, user, voucher_code="WELCOME10")

    confirm_booking(db, booking_id)

    assert db.get(Voucher, v.id).current_usage_count == 1


def test_notifier_failure_does_not_undo_settlement(client, db, user, restaurant, mocker):
    mocker.patch(
        "tripc.services.settlement_service.notify_booking_confirmed",
        side_effect=SQLAlchemyError("email_logs unavailable"),
    )
    booking_id = _checkout(client, restaurant, user)

    confirm_booking(db, booking_id)

    assert db.get(Booking, booking_id).status == "confirmed"
    assert db.query(LedgerEntry).filter_by(related_booking_id=booking_id).count() == 1


def test_failed_send_is_queued_for_retry(client, db, user, restaurant, mock_send_email):
    mock_send_email.side_effect = OSError("connection refused")
    booking_id = _checkout(client, restaurant, user)

    confirm_booking(db, booking_id)

    assert db.get(Booking, booking_id).status == "confirmed"
    log = db.query(EmailLog).one()
    assert log.status == "failed"
    assert log.attempts == 1
    assert log.related_booking_code == db.get(Booking, booking_id).booking_code


def test_settle_is_idempotent(client, db, user, restaurant):
    booking_id = _checkout(client, restaurant, user)
    txn = confirm_booking(db, booking_id)

    b = db.get(Booking, booking_id)
    assert settlement_service.settle(db, b, db.get(PaymentTransaction, txn.id)) is False
    db.rollback()
    assert db.query(LedgerEntry).filter_by(related_booking_id=booking_id).count() == 1


def test_guest_booking_accrues_no_loyalty(client, db, restaurant):
    date_str, time_str = future_slot()
    response = client.post("/api/v1/checkout", json={
        "category": "dining", "resourceId": restaurant.id, "date": date_str, "time": time_str,
        "contact": {"name": "Lan", "email": "lan@example.com"},
    })
    booking_id = response.json()["bookingId"]

    confirm_booking(db, booking_id)

    assert db.get(Booking, booking_id).status == "confirmed"
    assert db.query(LedgerEntry).count() == 0


def test_loyalty_points_from_vnd_total(db):
    b = Booking(total_amount=1272500, currency="VND")
    # 1,272,500 VND at 25450 = 50.00 USD
    assert settlement_service.loyalty_points(db, b) == 50


def test_paid_shop_booking_places_order(client, db, user):
    response = client.post("/api/v1/checkout", headers=auth_headers(user), json={
        "category": "shop",
        "items": [{"productId": "tee-01", "name": "TripC Tee", "price": 1200, "quantity": 2}, {"name": "Cap", "price": 900}],
    })
    booking_id = response.json()["bookingId"]

    confirm_booking(db, booking_id)

    order = db.query(ShopOrder).one()
    assert order.order_number.startswith("ORD-")
    assert (order.booking_id, order.user_id, order.subtotal) == (booking_id, user.id, 3300)
    items = db.query(ShopOrderItem).filter_by(order_id=order.id).order_by(ShopOrderItem.line_total.desc()).all()
    assert [(i.title_snapshot, i.qty, i.line_total) for i in items] == [("TripC Tee", 2, 2400), ("Cap", 1, 900)]
    event = db.query(BookingEvent).filter_by(booking_id=booking_id, event_type="SETTLEMENT_COMPLETED").one()
    assert json.loads(event.details_json)["orderNumber"] == order.order_number


def test_place_shop_order_is_idempotent(client, db, user):
    booking_id = client.post("/api/v1/checkout", headers=auth_headers(user), json={
        "category": "shop", "items": [{"name": "Cap", "price": 900}],
    }).json()["bookingId"]
    confirm_booking(db, booking_id)

    again = settlement_service.place_shop_order(db, db.get(Booking, booking_id))
    db.commit()

    assert db.query(ShopOrder).count() == 1
    assert again.id == db.query(ShopOrder).one().id


def test_non_shop_booking_places_no_order(client, db, user, restaurant):
    confirm_booking(db, _checkout(client, restaurant, user))
    assert db.query(ShopOrder).count() == 0
