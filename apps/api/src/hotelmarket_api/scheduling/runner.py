"""Scheduler runtime for loyalty maintenance jobs."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from hotelmarket_api.observability.scheduler import get_job_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]


class JobScheduler:
    """Register recurring jobs from the schedule file and run them with retries."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False
        self._observability = get_job_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.jobs:
            func = self._resolve_callable(job)
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(self._wrap_callable(func, job), trigger=trigger, id=job.id, replace_existing=True)
            logger.info("Registered scheduled job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._is_running = True
        logger.info("Job scheduler started", jobs=len(config.jobs))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._is_running = False
        logger.info("Job scheduler stopped")

    def _resolve_callable(self, job: JobDefinition) -> Callable[..., Awaitable[Any]]:
        module_name, _, attr = job.task.rpartition(".")
        if not module_name:
            raise ValueError(f"Invalid task path: {job.task}")
        module: ModuleType = import_module(module_name)
        func = getattr(module, attr, None)
        if func is None:
            raise AttributeError(f"Task {job.task} not found")
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"Task {job.task} must be an async function")
        return func

    @staticmethod
    def _backoff_delay(job: JobDefinition, attempt: int) -> float:
        delay = job.base_backoff_seconds * (job.backoff_multiplier ** (attempt - 1))
        if job.max_backoff_seconds:
            delay = min(delay, job.max_backoff_seconds)
        if job.jitter_seconds:
            delay += random.uniform(0, job.jitter_seconds)
        return max(delay, 0.0)

    def _wrap_callable(self, func: Callable[..., Awaitable[Any]], job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        async def _runner() -> Any:
            max_attempts = max(job.max_attempts, 1)
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, max_attempts + 1):
                try:
                    result = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error_message = str(exc)
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error_message)
                    if attempt >= max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error_message,
                        )
                        logger.exception(
                            "Scheduled job failed after retries",
                            job_id=job.id,
                            task=job.task,
                            attempts=attempt,
                        )
                        return None

                    delay = self._backoff_delay(job, attempt)
                    self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                    logger.warning(
                        "Scheduled job retrying",
                        job_id=job.id,
                        task=job.task,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                    )
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id, job.task, runtime_seconds=runtime_seconds, attempts=attempt, result=result
                )
                logger.info(
                    "Scheduled job completed",
                    job_id=job.id,
                    task=job.task,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                    result=result,
                )
                return result
            return None

        return _runner

    def health(self) -> dict[str, object]:
        """Return scheduler health metadata suitable for diagnostics."""

        snapshot = self._observability.snapshot()
        config_jobs = self._config.jobs if self._config else []
        jobs: list[dict[str, object]] = []
        for job in config_jobs:
            job_metrics = snapshot.jobs.get(job.id)
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "backoff": {
                        "base_seconds": job.base_backoff_seconds,
                        "multiplier": job.backoff_multiplier,
                        "max_seconds": job.max_backoff_seconds,
                        "jitter_seconds": job.jitter_seconds,
                    },
                    "metrics": job_metrics.as_dict() if job_metrics else None,
                }
            )

        return {
            "running": self._is_running,
            "configured_jobs": len(config_jobs),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["JobScheduler"]
