from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from hotelmarket_api.core.settings import settings
from hotelmarket_api.services.loyalty.events import RecordingEventSink
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


TIERS = [
    {"name": "Bronze", "min_points": 0, "max_points": 999, "discount_percentage": 5, "benefits": ["Welcome drink"]},
    {"name": "Silver", "min_points": 1000, "max_points": 2999, "discount_percentage": 10},
    {"name": "Gold", "min_points": 3000, "max_points": 999999, "discount_percentage": 15},
]


async def _award(session_factory, guest_id, hotel_id, amount):
    async with session_factory() as session:
        await LoyaltyMemberService(session, event_sink=RecordingEventSink()).award_for_spend(
            guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal(amount), service_type=None
        )


@pytest.mark.asyncio
async def test_program_upsert_and_fetch(app_with_db, seed) -> None:
    app, _ = app_with_db
    hotel_id = await seed.hotel()

    async with _client(app) as client:
        created = await client.put(
            f"/api/v1/loyalty/hotels/{hotel_id}/program",
            json={"tiers": TIERS, "service_multipliers": {"Laundry": 1.5}, "maximum_redemption": 8000},
        )
        fetched = await client.get(f"/api/v1/loyalty/hotels/{hotel_id}/program")
        missing_channel = await client.get(
            f"/api/v1/loyalty/hotels/{hotel_id}/program", params={"channel": "Corporate"}
        )

    assert created.status_code == 200
    body = created.json()
    assert body["created"] is True
    assert body["channel"] is None
    assert body["service_multipliers"] == {"laundry": 1.5}
    assert body["maximum_redemption"] == 8000
    assert [tier["name"] for tier in body["tiers"]] == ["BRONZE", "SILVER", "GOLD"]
    assert body["tiers"][0]["benefits"] == ["Welcome drink"]

    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]
    assert fetched.json()["statistics"]["total_members"] == 0
    assert missing_channel.status_code == 404


@pytest.mark.asyncio
async def test_program_validation_errors_are_listed(app_with_db, seed) -> None:
    app, _ = app_with_db
    hotel_id = await seed.hotel()
    tiers = [dict(tier) for tier in TIERS]
    tiers[1]["min_points"] = 999
    tiers[2]["discount_percentage"] = 150

    async with _client(app) as client:
        response = await client.put(f"/api/v1/loyalty/hotels/{hotel_id}/program", json={"tiers": tiers})
        unknown_hotel = await client.put(f"/api/v1/loyalty/hotels/{uuid4()}/program", json={"tiers": TIERS})

    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert "Overlap between Bronze (max: 999) and Silver (min: 999)" in errors
    assert "Tier Gold: discountPercentage must be between 0 and 100" in errors
    assert unknown_hotel.status_code == 404


@pytest.mark.asyncio
async def test_program_endpoints_require_admin_key(app_with_db, seed, monkeypatch) -> None:
    app, _ = app_with_db
    hotel_id = await seed.hotel()
    monkeypatch.setattr(settings, "admin_api_key", "loyalty-admin")

    async with _client(app) as client:
        denied = await client.put(f"/api/v1/loyalty/hotels/{hotel_id}/program", json={"tiers": TIERS})
        allowed = await client.put(
            f"/api/v1/loyalty/hotels/{hotel_id}/program",
            json={"tiers": TIERS},
            headers={"X-API-Key": "loyalty-admin"},
        )

    assert denied.status_code == 401
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_member_snapshot_and_ledger(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    await _award(session_factory, guest_id, hotel_id, "1500")

    async with _client(app) as client:
        member = await client.get(f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}")
        ledger = await client.get(f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}/ledger")
        unknown = await client.get(f"/api/v1/loyalty/hotels/{hotel_id}/members/{uuid4()}")

    assert member.status_code == 200
    snapshot = member.json()
    assert snapshot["current_tier"] == "SILVER"
    assert snapshot["discount_percentage"] == 10.0
    assert snapshot["total_points"] == 1500
    assert snapshot["available_points"] == 1500
    assert snapshot["next_tier"] == "GOLD"
    assert snapshot["points_to_next_tier"] == 1500
    assert snapshot["progress_percentage"] == 25.0
    assert {item["to_tier"] for item in snapshot["tier_history"]} == {"BRONZE", "SILVER"}

    assert ledger.status_code == 200
    entries = ledger.json()
    assert len(entries) == 1
    assert entries[0]["entry_type"] == "earned"
    assert entries[0]["points"] == 1500
    assert entries[0]["is_expired"] is False

    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_point_redemption_flow(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    stranger_id = await seed.guest()
    await seed.program(hotel_id)
    await _award(session_factory, guest_id, hotel_id, "800")
    base = f"/api/v1/loyalty/hotels/{hotel_id}/members"

    async with _client(app) as client:
        below = await client.post(f"{base}/{guest_id}/redemptions", json={"points": 100})
        too_many = await client.post(f"{base}/{guest_id}/redemptions", json={"points": 900})
        redeemed = await client.post(f"{base}/{guest_id}/redemptions", json={"points": 600, "reward_ref": "Dinner"})
        not_enrolled = await client.post(f"{base}/{stranger_id}/redemptions", json={"points": 600})
        empty = await client.post(f"{base}/{guest_id}/redemptions", json={})

    assert below.status_code == 400
    assert below.json()["detail"]["reason"] == "below_minimum"
    assert too_many.status_code == 400
    assert too_many.json()["detail"] == {
        "reason": "insufficient_balance",
        "message": "Insufficient points: 800 available, 900 requested",
        "available_points": 800,
    }
    assert redeemed.status_code == 200
    assert redeemed.json()["available_points"] == 200
    assert redeemed.json()["total_points"] == 800
    assert redeemed.json()["redemption_value"] == 6.0
    assert not_enrolled.status_code == 404
    assert not_enrolled.json()["detail"] == {"reason": "not_enrolled"}
    assert empty.status_code == 422


@pytest.mark.asyncio
async def test_reward_catalog_flow(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    await _award(session_factory, guest_id, hotel_id, "700")

    async with _client(app) as client:
        created = await client.post(
            f"/api/v1/loyalty/hotels/{hotel_id}/rewards",
            json={"name": "Airport transfer", "category": "service", "points_cost": 550, "value": 20, "usage_limit": 5},
        )
        premium = await client.post(
            f"/api/v1/loyalty/hotels/{hotel_id}/rewards",
            json={"name": "Suite upgrade", "category": "upgrade", "points_cost": 650, "required_tier": "gold"},
        )
        catalog = await client.get(f"/api/v1/loyalty/hotels/{hotel_id}/rewards")
        reward_id = created.json()["id"]
        redeemed = await client.post(
            f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}/redemptions", json={"reward_id": reward_id}
        )
        blocked = await client.post(
            f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}/redemptions",
            json={"reward_id": premium.json()["id"]},
        )

    assert created.status_code == 201
    assert premium.json()["required_tier"] == "GOLD"
    assert [reward["name"] for reward in catalog.json()] == ["Airport transfer", "Suite upgrade"]
    assert redeemed.status_code == 200
    assert redeemed.json()["points"] == 550
    assert redeemed.json()["available_points"] == 150
    assert redeemed.json()["redemption_valid_until"] is not None
    assert blocked.status_code == 400
    assert blocked.json()["detail"] == {"reason": "Insufficient points", "points_needed": 500}


@pytest.mark.asyncio
async def test_admin_member_operations(app_with_db, seed) -> None:
    app, _ = app_with_db
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    base = f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}"

    async with _client(app) as client:
        nights = await client.post(f"{base}/nights", json={"nights": 4, "booking_ref": "stay-1"})
        repeat = await client.post(f"{base}/nights", json={"nights": 4, "booking_ref": "stay-1"})
        adjusted = await client.post(f"{base}/adjustments", json={"delta": 900, "reason": "Service recovery"})
        overdraw = await client.post(f"{base}/adjustments", json={"delta": -5000, "reason": "Correction"})
        zero = await client.post(f"{base}/adjustments", json={"delta": 0, "reason": "Nothing"})
        override = await client.post(f"{base}/tier-override", json={"tier": "platinum"})
        unknown_tier = await client.post(f"{base}/tier-override", json={"tier": "diamond"})

    assert nights.status_code == 200
    assert nights.json()["points"] == 200
    assert nights.json()["enrolled"] is True
    assert repeat.json()["applicable"] is False
    assert repeat.json()["reason"] == "already_awarded"
    assert adjusted.json()["total_points"] == 1100
    assert adjusted.json()["current_tier"] == "SILVER"
    assert adjusted.json()["tier_changed"] is True
    assert overdraw.status_code == 400
    assert overdraw.json()["detail"]["reason"] == "adjustment_below_zero"
    assert zero.status_code == 422
    assert override.json()["current_tier"] == "PLATINUM"
    assert unknown_tier.status_code == 422
    assert unknown_tier.json()["detail"]["errors"] == ["Unknown tier: diamond"]


@pytest.mark.asyncio
async def test_price_preview_uses_member_discount(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel(markup_percentage="20")
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    await _award(session_factory, guest_id, hotel_id, "3000")

    async with _client(app) as client:
        member_price = await client.get(
            f"/api/v1/loyalty/hotels/{hotel_id}/price-preview",
            params={"base_price": "100", "guest_id": str(guest_id)},
        )
        walk_in_price = await client.get(
            f"/api/v1/loyalty/hotels/{hotel_id}/price-preview", params={"base_price": "100"}
        )

    assert member_price.json() == {
        "base_price": 100.0,
        "markup_amount": 20.0,
        "price_with_markup": 120.0,
        "loyalty_discount_percentage": 15.0,
        "loyalty_discount_amount": 18.0,
        "final_price": 102.0,
    }
    assert walk_in_price.json()["final_price"] == 120.0


@pytest.mark.asyncio
async def test_member_deactivation_endpoints(app_with_db, seed, monkeypatch) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    await _award(session_factory, guest_id, hotel_id, "1200")
    monkeypatch.setattr(settings, "admin_api_key", "loyalty-admin")
    admin = {"X-API-Key": "loyalty-admin"}
    base = f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}"
    preview = f"/api/v1/loyalty/hotels/{hotel_id}/price-preview"
    quote = {"base_price": "100", "guest_id": str(guest_id)}

    async with _client(app) as client:
        denied = await client.post(f"{base}/deactivate")
        deactivated = await client.post(f"{base}/deactivate", headers=admin)
        snapshot = await client.get(base)
        inactive_price = await client.get(preview, params=quote)
        redemption = await client.post(f"{base}/redemptions", json={"points": 500})
        nights = await client.post(f"{base}/nights", json={"nights": 2}, headers=admin)
        reactivated = await client.post(f"{base}/reactivate", headers=admin)
        active_price = await client.get(preview, params=quote)

    assert denied.status_code == 401
    assert deactivated.status_code == 200
    assert deactivated.json()["current_tier"] == "SILVER"
    assert snapshot.json()["is_active"] is False
    assert snapshot.json()["discount_percentage"] == 0.0
    assert inactive_price.json()["loyalty_discount_amount"] == 0.0
    assert inactive_price.json()["final_price"] == 120.0
    assert redemption.status_code == 404
    assert redemption.json()["detail"] == {"reason": "member_inactive"}
    assert nights.json()["applicable"] is False
    assert nights.json()["reason"] == "member_inactive"
    assert reactivated.status_code == 200
    assert active_price.json()["final_price"] == 108.0


@pytest.mark.asyncio
async def test_member_listing_filters(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel()
    casual, regular = await seed.guest(), await seed.guest()
    await seed.program(hotel_id)
    await _award(session_factory, casual, hotel_id, "300")
    await _award(session_factory, regular, hotel_id, "3200")
    url = f"/api/v1/loyalty/hotels/{hotel_id}/members"

    async with _client(app) as client:
        everyone = await client.get(url)
        gold = await client.get(url, params={"tier": "gold"})
        low = await client.get(url, params={"max_points": 1000})
        unknown_hotel = await client.get(f"/api/v1/loyalty/hotels/{uuid4()}/members")
        bad_limit = await client.get(url, params={"limit": 0})

    assert everyone.status_code == 200
    assert [member["guest_id"] for member in everyone.json()] == [str(regular), str(casual)]
    assert [member["current_tier"] for member in gold.json()] == ["GOLD"]
    assert [member["total_points"] for member in low.json()] == [300]
    assert unknown_hotel.status_code == 404
    assert bad_limit.status_code == 422


@pytest.mark.asyncio
async def test_reward_update_and_soft_delete(app_with_db, seed) -> None:
    app, session_factory = app_with_db
    hotel_id = await seed.hotel()
    other_hotel_id = await seed.hotel(name="Red Sea Lodge")
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    reward_id = await seed.reward(hotel_id, description="Thirty minute massage")
    await _award(session_factory, guest_id, hotel_id, "1200")
    url = f"/api/v1/loyalty/hotels/{hotel_id}/rewards/{reward_id}"

    async with _client(app) as client:
        updated = await client.patch(
            url, json={"points_cost": 500, "required_tier": "silver", "description": None, "name": None}
        )
        invalid = await client.patch(url, json={"points_cost": 0})
        wrong_hotel = await client.patch(
            f"/api/v1/loyalty/hotels/{other_hotel_id}/rewards/{reward_id}", json={"points_cost": 400}
        )
        deleted = await client.delete(url)
        missing = await client.delete(f"/api/v1/loyalty/hotels/{hotel_id}/rewards/{uuid4()}")
        catalog = await client.get(f"/api/v1/loyalty/hotels/{hotel_id}/rewards")
        redemption = await client.post(
            f"/api/v1/loyalty/hotels/{hotel_id}/members/{guest_id}/redemptions", json={"reward_id": str(reward_id)}
        )

    assert updated.status_code == 200
    assert updated.json()["name"] == "Spa voucher"
    assert updated.json()["points_cost"] == 500
    assert updated.json()["required_tier"] == "SILVER"
    assert invalid.status_code == 422
    assert wrong_hotel.status_code == 404
    assert deleted.status_code == 200
    assert deleted.json()["is_active"] is False
    assert missing.status_code == 404
    assert catalog.json() == []
    assert redemption.status_code == 400
    assert redemption.json()["detail"]["reason"] == "Reward is currently inactive"
