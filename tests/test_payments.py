import asyncio
from datetime import timedelta

import requests

from tripc.core.config import settings
from tripc.core.timeutils import utcnow
from tripc.models.booking import Booking
from tripc.models.booking_event import BookingEvent
from tripc.models.ledger import LedgerEntry
from tripc.models.payment import PaymentTransaction
from tripc.services.availability_service import check_availability
from tripc.services.hold_service import expire_stale_holds
from tripc.services.providers import momo, vnpay

from tests.conftest import MOMO_ACCESS, MOMO_SECRET, VNPAY_SECRET, auth_headers, future_slot

RETURN_URL = "https://tripc.vn/checkout/return"


def _checkout(client, resource, user=None, party=1) -> str:
    date_str, time_str = future_slot()
    body = {"category": resource.category, "resourceId": resource.id, "date": date_str, "time": time_str, "partySize": party}
    if user is None:
        body["contact"] = {"name": "Lan", "email": "lan@example.com"}
    response = client.post("/api/v1/checkout", json=body, headers=auth_headers(user) if user else {})
    assert response.status_code == 201, response.text
    return response.json()["bookingId"]


def _intent(client, booking_id, provider="momo") -> dict:
    response = client.post("/api/v1/payments/create", json={"bookingId": booking_id, "provider": provider, "returnUrl": RETURN_URL})
    assert response.status_code == 200, response.text
    return response.json()


def momo_ipn(order_id, amount, booking_id, result_code=0) -> dict:
    payload = {
        "partnerCode": "MOMOTEST",
        "orderId": order_id,
        "requestId": order_id,
        "amount": amount,
        "orderInfo": f"Booking {booking_id}",
        "orderType": "momo_wallet",
        "transId": 4088878653,
        "resultCode": result_code,
        "message": "Successful." if result_code == 0 else "Declined",
        "payType": "qr",
        "responseTime": 1721720663942,
        "extraData": "",
    }
    payload["signature"] = momo.sign({**payload, "accessKey": MOMO_ACCESS}, momo.IPN_FIELDS, MOMO_SECRET)
    return payload


def _events(db, booking_id, event_type):
    return db.query(BookingEvent).filter_by(booking_id=booking_id, event_type=event_type).count()


def test_create_intent_converts_to_vnd(client, db, restaurant):
    booking_id = _checkout(client, restaurant)

    first = _intent(client, booking_id)
    second = _intent(client, booking_id)

    # 25.00 USD at the default 25450 VND/USD
    assert first["amount"] == 636250
    assert first["currency"] == "VND"
    assert first["providerTxnId"] != second["providerTxnId"]
    assert first["paymentUrl"]
    txns = db.query(PaymentTransaction).filter_by(booking_id=booking_id).all()
    assert sorted(t.status for t in txns) == ["pending", "pending"]


def test_create_intent_validation(client, db, restaurant):
    booking_id = _checkout(client, restaurant)

    unknown = client.post("/api/v1/payments/create", json={"bookingId": booking_id, "provider": "stripe", "returnUrl": RETURN_URL})
    missing = client.post("/api/v1/payments/create", json={"bookingId": "nope", "provider": "momo", "returnUrl": RETURN_URL})
    no_return = client.post("/api/v1/payments/create", json={"bookingId": booking_id, "provider": "momo", "returnUrl": ""})

    assert unknown.status_code == 400
    assert unknown.json()["error"] == "Provider stripe not supported"
    assert missing.status_code == 404
    assert no_return.status_code == 400
    assert db.query(PaymentTransaction).count() == 0


def test_paypal_intent_charges_usd(client, restaurant):
    booking_id = _checkout(client, restaurant)
    data = _intent(client, booking_id, provider="paypal")
    assert data["amount"] == 2500
    assert data["currency"] == "USD"


def test_provider_failure_marks_transaction_failed(client, db, restaurant, mocker, monkeypatch):
    booking_id = _checkout(client, restaurant)
    monkeypatch.setattr(settings, "PAYMENTS_SANDBOX", False)
    mocker.patch("tripc.services.providers.momo.requests.post", side_effect=requests.ConnectionError("gateway down"))

    response = client.post("/api/v1/payments/create", json={"bookingId": booking_id, "provider": "momo", "returnUrl": RETURN_URL})

    assert response.status_code == 502
    assert response.json()["error"].startswith("MoMo gateway error")
    assert db.query(PaymentTransaction).one().status == "failed"
    assert _events(db, booking_id, "PAYMENT_INTENT_FAILED") == 1


def test_momo_success_settles_once(client, db, user, restaurant, mock_send_email):
    booking_id = _checkout(client, restaurant, user=user)
    intent = _intent(client, booking_id)
    payload = momo_ipn(intent["providerTxnId"], intent["amount"], booking_id)

    first = client.post("/api/v1/payments/webhooks/momo", json=payload)
    second = client.post("/api/v1/payments/webhooks/momo", json=payload)

    assert first.status_code == 200
    assert first.json() == {"ok": True, "result": "processed"}
    assert second.json() == {"ok": True, "result": "already_processed"}

    b = db.get(Booking, booking_id)
    assert b.status == "confirmed"
    assert b.payment_status == "paid"
    assert b.expires_at is None
    assert db.query(PaymentTransaction).filter_by(booking_id=booking_id).one().status == "success"
    entries = db.query(LedgerEntry).filter_by(user_id=user.id, related_booking_id=booking_id).all()
    assert [(e.reason, e.delta) for e in entries] == [("loyalty_accrual", 25)]
    assert _events(db, booking_id, "SETTLEMENT_COMPLETED") == 1
    mock_send_email.assert_called_once()
    assert mock_send_email.call_args.args[0] == user.email


def test_second_successful_transaction_is_duplicate(client, db, user, restaurant):
    booking_id = _checkout(client, restaurant, user=user)
    first = _intent(client, booking_id)
    second = _intent(client, booking_id)

    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(first["providerTxnId"], first["amount"], booking_id))
    response = client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(second["providerTxnId"], second["amount"], booking_id))

    assert response.status_code == 200
    assert response.json()["result"] == "duplicate_payment"
    statuses = {t.provider_transaction_id: t.status for t in db.query(PaymentTransaction).all()}
    assert statuses == {first["providerTxnId"]: "success", second["providerTxnId"]: "pending"}
    assert db.query(LedgerEntry).filter_by(user_id=user.id, reason="loyalty_accrual").count() == 1
    assert _events(db, booking_id, "DUPLICATE_PAYMENT") == 1


def test_tampered_signature_rejected_without_writes(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id)
    payload = momo_ipn(intent["providerTxnId"], intent["amount"], booking_id)
    payload["amount"] = 1000

    response = client.post("/api/v1/payments/webhooks/momo", json=payload)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid signature"}
    assert db.get(Booking, booking_id).status == "held"
    assert db.query(PaymentTransaction).one().status == "pending"


def test_declined_payment_keeps_hold(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id)

    response = client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=1006))

    assert response.status_code == 200
    assert db.query(PaymentTransaction).one().status == "failed"
    b = db.get(Booking, booking_id)
    assert b.status == "held"
    assert b.payment_status == "unpaid"


def test_processing_result_moves_to_pending_payment(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id)

    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=7000))
    b = db.get(Booking, booking_id)
    assert (b.status, b.payment_status) == ("pending_payment", "pending")

    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id))
    db.expire_all()
    assert db.get(Booking, booking_id).status == "confirmed"


def test_pending_payment_extends_window(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    held_until = db.get(Booking, booking_id).expires_at
    intent = _intent(client, booking_id)

    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=7000))

    db.expire_all()
    b = db.get(Booking, booking_id)
    assert b.status == "pending_payment"
    assert b.expires_at is not None and b.expires_at > held_until


def test_failure_after_pending_reopens_hold(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id)
    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=7000))

    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=1006))

    db.expire_all()
    b = db.get(Booking, booking_id)
    assert (b.status, b.payment_status) == ("held", "unpaid")
    # A retry with a fresh intent is still possible
    assert _intent(client, booking_id)["providerTxnId"] != intent["providerTxnId"]


def test_failure_after_pending_window_releases_capacity(client, db, restaurant, mocker):
    booking_id = _checkout(client, restaurant, party=10)
    intent = _intent(client, booking_id)
    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=7000))

    later = utcnow() + timedelta(minutes=settings.PENDING_PAYMENT_MINUTES + 1)
    mocker.patch("tripc.services.payment_service.utcnow", return_value=later)
    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=1006))

    db.expire_all()
    assert db.get(Booking, booking_id).status == "expired"
    assert _events(db, booking_id, "HOLD_EXPIRED") == 1
    b = db.get(Booking, booking_id)
    assert check_availability(db, restaurant.id, b.slot_date, b.slot_time, 10, now=later).available


def test_reaper_expires_abandoned_pending_payment(client, db, restaurant):
    booking_id = _checkout(client, restaurant, party=10)
    intent = _intent(client, booking_id)
    client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id, result_code=7000))
    b = db.get(Booking, booking_id)
    assert not check_availability(db, restaurant.id, b.slot_date, b.slot_time, 1).available

    tomorrow = utcnow() + timedelta(days=1)
    reaped = expire_stale_holds(db, now=tomorrow)
    db.commit()

    db.expire_all()
    assert reaped == 1
    assert db.get(Booking, booking_id).status == "expired"
    assert check_availability(db, restaurant.id, b.slot_date, b.slot_time, 10, now=tomorrow).available


def test_vnpay_ipn_via_get(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id, provider="vnpay")
    params = {
        "vnp_TmnCode": "VNPTEST",
        "vnp_TxnRef": intent["providerTxnId"],
        "vnp_Amount": intent["amount"] * 100,
        "vnp_OrderInfo": f"Booking {booking_id}",
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
        "vnp_TransactionNo": "14422574",
        "vnp_BankCode": "NCB",
        "vnp_PayDate": "20261019153000",
    }
    params["vnp_SecureHash"] = vnpay.sign(params, VNPAY_SECRET)

    response = client.get("/api/v1/payments/webhooks/vnpay", params=params)
    again = client.get("/api/v1/payments/webhooks/vnpay", params=params)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "RspCode": "00", "Message": "Confirm Success", "result": "processed"}
    assert again.json()["RspCode"] == "02"
    assert db.get(Booking, booking_id).status == "confirmed"


def test_unmatched_webhook(client, db, restaurant):
    booking_id = _checkout(client, restaurant)

    response = client.post("/api/v1/payments/webhooks/momo", json=momo_ipn("MOMOUNKNOWN", 636250, booking_id))

    assert response.status_code == 404
    assert response.json()["error"] == "Transaction not found"
    assert _events(db, booking_id, "WEBHOOK_UNMATCHED") == 1


def test_success_after_expiry_flags_refund(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id)
    expire_stale_holds(db, now=utcnow() + timedelta(minutes=30))
    db.commit()

    response = client.post("/api/v1/payments/webhooks/momo", json=momo_ipn(intent["providerTxnId"], intent["amount"], booking_id))

    assert response.json()["result"] == "closed_booking"
    db.expire_all()
    assert db.get(Booking, booking_id).status == "expired"
    assert db.query(PaymentTransaction).one().status == "success"
    assert _events(db, booking_id, "PAYMENT_ON_CLOSED_BOOKING") == 1


def test_cannot_pay_expired_booking(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    expire_stale_holds(db, now=utcnow() + timedelta(minutes=30))
    db.commit()

    response = client.post("/api/v1/payments/create", json={"bookingId": booking_id, "provider": "momo", "returnUrl": RETURN_URL})

    assert response.status_code == 409
    assert response.json()["error"] == "Booking is expired and cannot be paid"


def test_sync_queries_provider(client, db, restaurant, mocker):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id)
    reply = mocker.Mock()
    reply.json.return_value = {"resultCode": 0, "amount": intent["amount"], "transId": 99, "message": "Successful."}
    post = mocker.patch("tripc.services.providers.momo.requests.post", return_value=reply)

    response = client.post("/api/v1/payments/sync", json={"provider": "momo", "providerTxnId": intent["providerTxnId"]})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "result": "processed", "bookingId": booking_id, "status": "success"}
    assert post.call_args.kwargs["json"]["orderId"] == intent["providerTxnId"]
    assert db.get(Booking, booking_id).status == "confirmed"


def test_malformed_webhook_body(client):
    response = client.post("/api/v1/payments/webhooks/momo", content=b"{not json", headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"] == "Malformed webhook body"


def test_vnpay_tampered_hash_rejected(client, db, restaurant):
    booking_id = _checkout(client, restaurant)
    intent = _intent(client, booking_id, provider="vnpay")
    params = {
        "vnp_TxnRef": intent["providerTxnId"],
        "vnp_Amount": intent["amount"] * 100,
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
    }
    params["vnp_SecureHash"] = vnpay.sign(params, "not-the-merchant-secret")

    response = client.get("/api/v1/payments/webhooks/vnpay", params=params)

    assert response.status_code == 400
    assert db.get(Booking, booking_id).status == "held"
    assert db.query(PaymentTransaction).one().status == "pending"


def test_webhook_handler_runs_off_event_loop(client, mocker):
    seen = {}

    def fake_handle(db, provider, headers, raw_body, payload):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return {"ok": True, "result": "processed"}

    mocker.patch("tripc.api.v1.routes.payments.handle_webhook", side_effect=fake_handle)

    response = client.post("/api/v1/payments/webhooks/momo", json={"orderId": "X"})

    assert response.status_code == 200
    assert seen == {"on_loop": False}
