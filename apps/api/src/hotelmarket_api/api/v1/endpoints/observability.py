"""Observability snapshots for loyalty ledger and scheduler metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from hotelmarket_api.api.dependencies.security import require_admin_api_key
from hotelmarket_api.observability.loyalty import get_loyalty_store
from hotelmarket_api.observability.scheduler import get_job_scheduler_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/loyalty", summary="Loyalty ledger metrics snapshot")
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


@router.get("/scheduler", summary="Scheduled job metrics snapshot")
async def get_scheduler_snapshot() -> dict[str, object]:
    return get_job_scheduler_store().snapshot().as_dict()
