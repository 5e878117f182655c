import uuid
from datetime import timedelta

from tripc.core.timeutils import slot_start
from tripc.models.resource import BlockedDate, SlotCapacity
from tripc.schemas.checkout import CheckoutRequest, ContactIn
from tripc.services.availability_service import check_availability
from tripc.services.checkout_service import create_booking

from tests.conftest import add_resource, future_slot

GUEST = ContactIn(name="Lan Nguyen", email="lan@example.com", phone="+84900000000")


def _hold(db, resource, date_str, time_str, party, now):
    req = CheckoutRequest(
        category=resource.category, resourceId=resource.id, date=date_str, time=time_str,
        partySize=party, contact=GUEST,
    )
    return create_booking(db, req, now=now)


def test_insufficient_capacity_reports_remaining(db, restaurant):
    date_str, time_str = future_slot()
    now = slot_start(date_str, time_str) - timedelta(days=1)
    _hold(db, restaurant, date_str, time_str, 4, now)
    _hold(db, restaurant, date_str, time_str, 4, now)

    result = check_availability(db, restaurant.id, date_str, time_str, 4, now=now)

    assert result.available is False
    assert result.reason.startswith("Insufficient capacity")
    assert result.remaining == 2
    assert check_availability(db, restaurant.id, date_str, time_str, 2, now=now).available is True


def test_lapsed_hold_no_longer_counts(db):
    tour = add_resource(db, "activity", capacity=4, unit_price=3500)
    date_str, time_str = future_slot(time_str="10:00")
    t0 = slot_start(date_str, time_str) - timedelta(days=1)
    _hold(db, tour, date_str, time_str, 4, t0)

    at_5 = check_availability(db, tour.id, date_str, time_str, 1, now=t0 + timedelta(minutes=5))
    at_11 = check_availability(db, tour.id, date_str, time_str, 1, now=t0 + timedelta(minutes=11))

    assert at_5.available is False
    assert at_11.available is True
    assert at_11.remaining == 4


def test_blocked_date(db, restaurant):
    date_str, time_str = future_slot()
    db.add(BlockedDate(id=str(uuid.uuid4()), resource_id=restaurant.id, start_date=date_str, end_date=date_str, reason="Tet holiday"))
    db.commit()

    result = check_availability(db, restaurant.id, date_str, time_str, 1)

    assert result.available is False
    assert result.reason == "Venue is closed on this date (Tet holiday)"


def test_outside_operating_hours(db, restaurant):
    date_str, _ = future_slot()
    result = check_availability(db, restaurant.id, date_str, "08:00", 1)
    assert result.available is False
    assert result.reason == "Outside operating hours"


def test_past_slot_rejected(db, restaurant):
    date_str, time_str = future_slot(days=-1)
    result = check_availability(db, restaurant.id, date_str, time_str, 1)
    assert result.available is False
    assert result.reason == "Requested time is in the past"


def test_slot_override_capacity(db, restaurant):
    date_str, time_str = future_slot()
    db.add(SlotCapacity(id=str(uuid.uuid4()), resource_id=restaurant.id, date_str=date_str, time_str=time_str, total_capacity=2, consumed=0))
    db.commit()

    assert check_availability(db, restaurant.id, date_str, time_str, 3).available is False
    assert check_availability(db, restaurant.id, date_str, time_str, 2).available is True


def test_availability_endpoint(client, restaurant):
    date_str, time_str = future_slot()
    response = client.get("/api/v1/availability", params={"resourceId": restaurant.id, "date": date_str, "time": time_str, "partySize": 2})
    assert response.status_code == 200
    assert response.json() == {"available": True, "remaining": 10}


def test_availability_unknown_resource(client):
    date_str, time_str = future_slot()
    response = client.get("/api/v1/availability", params={"resourceId": "nope", "date": date_str, "time": time_str})
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Resource not found"}
