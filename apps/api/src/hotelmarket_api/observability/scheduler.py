"""Observability store for scheduled job runs."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class JobRunState:
    """Counters and last-run markers for one scheduled job."""

    job_id: str
    task: str
    runs: int = 0
    success: int = 0
    run_failures: int = 0
    attempt_failures: int = 0
    retries: int = 0
    consecutive_failures: int = 0
    total_runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_completed_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_retry_delay_seconds: float | None = None
    last_result: Dict[str, object] | None = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": {
                "runs": self.runs,
                "success": self.success,
                "run_failures": self.run_failures,
                "attempt_failures": self.attempt_failures,
                "retries": self.retries,
                "consecutive_failures": self.consecutive_failures,
            },
            "timings": {"total_runtime_seconds": self.total_runtime_seconds},
            "last_started_at": _iso(self.last_started_at),
            "last_completed_at": _iso(self.last_completed_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_retry_delay_seconds": self.last_retry_delay_seconds,
            "last_result": dict(self.last_result) if self.last_result is not None else None,
        }


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, JobRunState]

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": dict(self.totals),
            "jobs": {job_id: state.as_dict() for job_id, state in self.jobs.items()},
        }


class JobSchedulerObservabilityStore:
    """Tracks dispatches, retries and failures of scheduled jobs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, JobRunState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> JobRunState:
        state = self._jobs.setdefault(job_id, JobRunState(job_id=job_id, task=task))
        state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.runs += 1
            state.last_started_at = _utcnow()
            state.last_completed_at = None
            state.last_attempts = 0
            state.last_retry_delay_seconds = None

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.attempt_failures += 1
            state.consecutive_failures += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, delay_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_attempts = attempts
            state.last_retry_delay_seconds = delay_seconds

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        result: object = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            now = _utcnow()
            state.success += 1
            state.consecutive_failures = 0
            state.total_runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_completed_at = now
            state.last_success_at = now
            state.last_error = None
            state.last_error_at = None
            # Only summary dicts (like the expiration sweep report) are kept.
            state.last_result = dict(result) if isinstance(result, dict) else None

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            now = _utcnow()
            state.run_failures += 1
            state.total_runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_completed_at = now
            state.last_error = error
            state.last_error_at = now

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {job_id: replace(state) for job_id, state in self._jobs.items()}
        totals = {
            name: sum(getattr(state, name) for state in jobs.values())
            for name in ("runs", "success", "run_failures", "attempt_failures", "retries")
        }
        return SchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = JobSchedulerObservabilityStore()


def get_job_scheduler_store() -> JobSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "JobRunState",
    "JobSchedulerObservabilityStore",
    "SchedulerSnapshot",
    "get_job_scheduler_store",
]
