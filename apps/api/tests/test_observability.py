from __future__ import annotations

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from hotelmarket_api.core.settings import settings
from hotelmarket_api.observability.loyalty import get_loyalty_store
from hotelmarket_api.observability.scheduler import get_job_scheduler_store
from hotelmarket_api.services.loyalty.events import RecordingEventSink
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def test_loyalty_store_snapshot_and_reset() -> None:
    store = get_loyalty_store()
    store.record_points("awarded", 120)
    store.record_points("awarded", 30)
    store.record_operation("redeem", applicable=False)
    store.record_tier_change(upgraded=True)
    store.record_ledger_conflict()
    store.record_notification("tier_changed", delivered=False)

    snapshot = store.snapshot().as_dict()

    assert snapshot["points"] == {"awarded": 150}
    assert snapshot["operations"] == {"redeem": 1, "not_applicable": 1}
    assert snapshot["tier_changes"] == {"upgrades": 1}
    assert snapshot["ledger"] == {"conflicts_retried": 1}
    assert snapshot["notifications"] == {"failed": 1, "tier_changed:failed": 1}

    store.reset()
    assert store.snapshot().as_dict()["points"] == {}


def test_scheduler_store_tracks_consecutive_failures_and_resets() -> None:
    store = get_job_scheduler_store()

    store.record_dispatch("expire", "jobs.expire")
    store.record_attempt_failure("expire", "jobs.expire", attempts=1, error="db down")
    store.record_run_failure("expire", "jobs.expire", runtime_seconds=0.5, attempts=1, error="db down")
    failing = store.snapshot().jobs["expire"]

    store.record_dispatch("expire", "jobs.expire")
    store.record_success("expire", "jobs.expire", runtime_seconds=0.25, attempts=1)
    recovered = store.snapshot()

    assert failing.consecutive_failures == 1
    assert failing.last_error == "db down"
    assert recovered.totals["runs"] == 2
    assert recovered.jobs["expire"].consecutive_failures == 0
    assert recovered.jobs["expire"].total_runtime_seconds == pytest.approx(0.75)
    assert recovered.as_dict()["jobs"]["expire"]["last_error"] is None


@pytest.mark.asyncio
async def test_loyalty_snapshot_endpoint_requires_key(app_with_db, seed, monkeypatch) -> None:
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "admin_api_key", "ops-key")
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)

    async with session_factory() as session:
        await LoyaltyMemberService(session, event_sink=RecordingEventSink()).award_for_spend(
            guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("1000"), service_type=None
        )

    async with _client(app) as client:
        denied = await client.get("/api/v1/observability/loyalty")
        allowed = await client.get("/api/v1/observability/loyalty", headers={"X-API-Key": "ops-key"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    body = allowed.json()
    assert body["points"]["awarded"] == 1000
    assert body["operations"]["award_for_spend"] == 1
    assert body["tier_changes"]["upgrades"] == 1


@pytest.mark.asyncio
async def test_scheduler_snapshot_endpoint(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "admin_api_key", "ops-key")
    get_job_scheduler_store().record_dispatch("expire", "jobs.expire")

    async with _client(app) as client:
        response = await client.get("/api/v1/observability/scheduler", headers={"X-API-Key": "ops-key"})

    assert response.status_code == 200
    body = response.json()
    assert body["totals"]["runs"] == 1
    assert body["jobs"]["expire"]["task"] == "jobs.expire"


@pytest.mark.asyncio
async def test_health_reports_component_statuses(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "job_scheduler_enabled", False)

    async with _client(app) as client:
        response = await client.get("/api/v1/health")
        liveness = await client.get("/healthz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["job_scheduler"]["status"] == "disabled"
    assert liveness.json()["status"] == "ok"
