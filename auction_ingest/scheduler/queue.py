"""In-memory collection job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import RLock
from typing import Any, Iterable

from ..config import EnqueueOptions


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def job_id_for(make: str, model: str | None, site: int) -> str:
    return f"{make}-{model or 'all'}-{site}"


@dataclass(slots=True)
class CollectionJob:
    """One (make, model, site) combination; ``model=None`` asks for discovery."""

    make: str
    site: int
    model: str | None = None
    priority: int = 2
    options: EnqueueOptions = field(default_factory=EnqueueOptions)
    status: JobStatus = JobStatus.PENDING
    last_collected_at: datetime | None = None
    discovered_model_count: int = 0
    records_collected: int = 0
    last_error: str | None = None

    @property
    def id(self) -> str:
        return job_id_for(self.make, self.model, self.site)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "make": self.make,
            "model": self.model,
            "site": self.site,
            "priority": self.priority,
            "status": self.status.value,
            "last_collected_at": (
                self.last_collected_at.isoformat() if self.last_collected_at else None
            ),
            "discovered_model_count": self.discovered_model_count,
            "records_collected": self.records_collected,
            "last_error": self.last_error,
        }


def _order_key(job: CollectionJob) -> tuple:
    # 从未采集过的排在最前
    if job.last_collected_at is None:
        return (job.priority, 0, 0.0)
    return (job.priority, 1, job.last_collected_at.timestamp())


class JobQueue:
    """Jobs keyed by id; never hard-deleted."""

    def __init__(self) -> None:
        self._jobs: dict[str, CollectionJob] = {}
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def get(self, job_id: str) -> CollectionJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def upsert(
        self,
        make: str,
        model: str | None,
        site: int,
        priority: int,
        options: EnqueueOptions,
    ) -> tuple[CollectionJob, bool]:
        """Add a job or refresh the existing one; returns ``(job, created)``.

        A running job keeps its status; a failed one goes back to pending.
        """

        job_id = job_id_for(make, model, site)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                job = CollectionJob(
                    make=make, site=site, model=model, priority=priority, options=options
                )
                self._jobs[job_id] = job
                return job, True
            job.priority = priority
            job.options = options
            if job.status is JobStatus.FAILED:
                job.status = JobStatus.PENDING
                job.last_error = None
            return job, False

    def next_pending(self, exclude: Iterable[str] = ()) -> CollectionJob | None:
        excluded = set(exclude)
        with self._lock:
            candidates = [
                job
                for job in self._jobs.values()
                if job.status is JobStatus.PENDING and job.id not in excluded
            ]
            if not candidates:
                return None
            return min(candidates, key=_order_key)

    def mark_running(self, job: CollectionJob) -> None:
        with self._lock:
            job.status = JobStatus.RUNNING

    def mark_completed(
        self,
        job: CollectionJob,
        *,
        finished_at: datetime,
        records: int,
        discovered_models: int | None = None,
    ) -> None:
        with self._lock:
            job.status = JobStatus.COMPLETED
            job.last_collected_at = finished_at
            job.records_collected += records
            job.last_error = None
            if discovered_models is not None:
                job.discovered_model_count = discovered_models

    def mark_failed(self, job: CollectionJob, error: str) -> None:
        with self._lock:
            job.status = JobStatus.FAILED
            job.last_error = error

    def has_pending(self) -> bool:
        with self._lock:
            return any(job.status is JobStatus.PENDING for job in self._jobs.values())

    def recycle_completed(self) -> int:
        recycled = 0
        with self._lock:
            for job in self._jobs.values():
                if job.status is JobStatus.COMPLETED:
                    job.status = JobStatus.PENDING
                    recycled += 1
        return recycled

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with self._lock:
            for job in self._jobs.values():
                counts[job.status.value] += 1
            counts["total"] = len(self._jobs)
        return counts

    def jobs(self) -> list[CollectionJob]:
        with self._lock:
            return sorted(self._jobs.values(), key=_order_key)

    def snapshot(self, limit: int = 50) -> list[dict[str, Any]]:
        return [job.to_dict() for job in self.jobs()[:limit]]


__all__ = ["CollectionJob", "JobQueue", "JobStatus", "job_id_for"]
