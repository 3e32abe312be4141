from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.core.settings import settings
from hotelmarket_api.db.session import get_session
from hotelmarket_api.observability.scheduler import get_job_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class HealthPayload(BaseModel):
    status: Literal["ok", "degraded", "error"]
    environment: str
    components: Dict[str, ComponentStatus]


@router.get("/health", summary="Service health", response_model=HealthPayload)
async def service_health(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> HealthPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ok", "degraded", "error"] = "ok"

    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if settings.job_scheduler_enabled and scheduler is not None:
        running = bool(scheduler.is_running)
        failing_jobs = [
            job_id
            for job_id, job in get_job_scheduler_store().snapshot().jobs.items()
            if job.consecutive_failures > 0
        ]
        if failing_jobs:
            components["job_scheduler"] = ComponentStatus(
                status="error", detail=f"Jobs failing: {', '.join(sorted(failing_jobs))}"
            )
            status = "error"
        else:
            components["job_scheduler"] = ComponentStatus(
                status="ready" if running else "starting",
                detail=None if running else "Job scheduler not running",
            )
            if not running and status == "ok":
                status = "degraded"
    else:
        components["job_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Job scheduler disabled via settings",
        )

    return HealthPayload(status=status, environment=settings.environment, components=components)
