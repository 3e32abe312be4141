from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from hotelmarket_api.services.loyalty.events import RecordingEventSink
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_quote_reflects_member_discount(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel(markup_percentage="20", tax_rate="14")
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    async with session_factory() as session:
        await LoyaltyMemberService(session, event_sink=RecordingEventSink()).award_for_spend(
            guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("1000"), service_type=None
        )

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/bookings/quote",
            json={
                "hotel_id": str(hotel_id),
                "guest_id": str(guest_id),
                "service_type": "Laundry",
                "base_price": "100",
            },
        )
        unknown_hotel = await client.post(
            "/api/v1/bookings/quote",
            json={"hotel_id": str(uuid4()), "service_type": "laundry", "base_price": "100"},
        )
        bad_currency = await client.post(
            "/api/v1/bookings/quote",
            json={"hotel_id": str(hotel_id), "service_type": "laundry", "base_price": "100", "currency": "XYZ"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["loyalty_discount_percentage"] == 10.0
    assert body["loyalty_discount_amount"] == 12.0
    assert body["tax_amount"] == 15.12
    assert body["total_amount"] == 123.12
    assert body["provider_earnings"] == 100.0
    assert body["hotel_earnings"] == 20.0
    assert unknown_hotel.status_code == 404
    assert bad_currency.status_code == 400
    assert bad_currency.json()["detail"] == "Unsupported currency: XYZ"


@pytest.mark.asyncio
async def test_booking_lifecycle_through_api(app_with_db, seed) -> None:
    app, _ = app_with_db
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)

    async with _client(app) as client:
        created = await client.post(
            "/api/v1/bookings",
            json={
                "hotel_id": str(hotel_id),
                "guest_id": str(guest_id),
                "service_type": "LAUNDRY",
                "service_name": "Wash and fold",
                "base_price": "100",
                "nights": 2,
            },
        )
        booking_id = created.json()["id"]
        modified = await client.patch(f"/api/v1/bookings/{booking_id}", json={"quantity": 2})
        confirmed = await client.post(f"/api/v1/bookings/{booking_id}/status", json={"status": "confirmed"})
        started = await client.post(f"/api/v1/bookings/{booking_id}/status", json={"status": "in-progress"})
        backwards = await client.post(f"/api/v1/bookings/{booking_id}/status", json={"status": "confirmed"})
        bogus = await client.post(f"/api/v1/bookings/{booking_id}/status", json={"status": "teleported"})
        late_cancel = await client.post(f"/api/v1/bookings/{booking_id}/cancel", json={})
        late_edit = await client.patch(f"/api/v1/bookings/{booking_id}", json={"quantity": 3})
        paid = await client.post(
            "/api/v1/bookings/payment-outcomes",
            json={"booking_id": booking_id, "succeeded": True, "reference": "txn-42"},
        )
        history = await client.get(f"/api/v1/bookings/{booking_id}/history")
        fetched = await client.get(f"/api/v1/bookings/{booking_id}")

    assert created.status_code == 201
    assert created.json()["service_type"] == "laundry"
    assert created.json()["status"] == "pending"
    assert created.json()["pricing"]["total_amount"] == 136.8
    assert created.json()["booking_number"].startswith("BK")

    assert modified.status_code == 200
    assert modified.json()["pricing"]["total_amount"] == 273.6
    assert confirmed.json()["status"] == "confirmed"
    assert started.json()["status"] == "in-progress"

    assert backwards.status_code == 409
    assert backwards.json()["detail"] == {
        "message": "Cannot transition booking from in-progress to confirmed",
        "current_status": "in-progress",
        "requested_status": "confirmed",
    }
    assert bogus.status_code == 400
    assert late_cancel.status_code == 409
    assert late_edit.status_code == 409
    assert late_edit.json()["detail"]["current_status"] == "in-progress"

    assert paid.status_code == 200
    payment = paid.json()
    assert payment["completed"] is True
    assert payment["points_awarded"] == 428
    assert payment["booking"]["status"] == "completed"
    assert payment["booking"]["payment_status"] == "completed"
    assert payment["booking"]["amount_paid"] == 273.6

    assert fetched.json()["loyalty_points_awarded"] == 428
    events = history.json()
    assert [event["event_type"] for event in events] == [
        "state_change",
        "modification",
        "state_change",
        "state_change",
        "payment",
        "state_change",
    ]
    assert events[1]["metadata"] == {"previous_total": "136.80", "total_amount": "273.60"}
    assert events[-1]["to_status"] == "completed"
    assert events[-1]["automatic"] is True


@pytest.mark.asyncio
async def test_cancel_pending_booking(app_with_db, seed) -> None:
    app, _ = app_with_db
    hotel_id = await seed.hotel()

    async with _client(app) as client:
        created = await client.post(
            "/api/v1/bookings",
            json={"hotel_id": str(hotel_id), "service_type": "transportation", "base_price": "40"},
        )
        booking_id = created.json()["id"]
        cancelled = await client.post(
            f"/api/v1/bookings/{booking_id}/cancel", json={"notes": "Flight delayed"}
        )
        paid = await client.post(
            "/api/v1/bookings/payment-outcomes", json={"booking_id": booking_id, "succeeded": True}
        )

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancelled_at"] is not None
    assert paid.json()["completed"] is False
    assert paid.json()["points_awarded"] == 0
    assert paid.json()["booking"]["status"] == "cancelled"


@pytest.mark.asyncio
async def test_unknown_booking_returns_404(app_with_db) -> None:
    app, _ = app_with_db
    missing = uuid4()

    async with _client(app) as client:
        fetched = await client.get(f"/api/v1/bookings/{missing}")
        history = await client.get(f"/api/v1/bookings/{missing}/history")
        status_update = await client.post(f"/api/v1/bookings/{missing}/status", json={"status": "confirmed"})
        payment = await client.post(
            "/api/v1/bookings/payment-outcomes", json={"booking_id": str(missing), "succeeded": False}
        )

    assert fetched.status_code == 404
    assert history.status_code == 404
    assert status_update.status_code == 404
    assert payment.status_code == 404
