"""Read-only views over the scheduler and the stores."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from .engine import FreshStore, PermanentStore
from .engine.store import utc_now
from .scheduler import CollectionScheduler, JobStatus

NOT_AVAILABLE = "N/A"


class StatusReporter:
    def __init__(
        self,
        scheduler: CollectionScheduler,
        permanent: PermanentStore,
        fresh: FreshStore,
    ) -> None:
        self.scheduler = scheduler
        self.permanent = permanent
        self.fresh = fresh

    def get_status(self) -> dict[str, Any]:
        """Queue counts, store totals and an ETA for draining pending work.

        The ETA is ``(pending + active) * average job duration / cap`` and is
        ``"N/A"`` when nothing remains or the loop is not running.
        """

        now = utc_now()
        counts = self.scheduler.queue.counts()
        active = self.scheduler.active_count
        pending = counts[JobStatus.PENDING.value]
        remaining = pending + active
        avg_duration = self.scheduler.average_job_duration()

        if remaining == 0 or not self.scheduler.is_running:
            eta_seconds: float | str = NOT_AVAILABLE
            eta_at: str = NOT_AVAILABLE
        else:
            eta_seconds = round(remaining * avg_duration / self.scheduler.cap, 1)
            eta_at = (now + timedelta(seconds=eta_seconds)).isoformat(timespec="seconds")

        total = counts["total"]
        finished = counts[JobStatus.COMPLETED.value]
        completion_rate = round(finished / total * 100, 1) if total else 0.0
        since = now - timedelta(hours=24)
        return {
            "is_running": self.scheduler.is_running,
            "state": self.scheduler.state.value,
            "total_jobs": total,
            "pending_jobs": pending,
            "running_jobs": counts[JobStatus.RUNNING.value],
            "completed_jobs": finished,
            "failed_jobs": counts[JobStatus.FAILED.value],
            "active_workers": active,
            "concurrency_cap": self.scheduler.cap,
            "completion_rate": completion_rate,
            "total_records": self.permanent.count(),
            "fresh_records": self.fresh.count(),
            "records_last_24h": self.permanent.count_created_since(since)
            + self.fresh.count_created_since(since),
            "avg_job_seconds": round(avg_duration, 1),
            "estimated_seconds_remaining": eta_seconds,
            "estimated_completion": eta_at,
        }

    def get_queue_snapshot(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.scheduler.queue.snapshot(limit)

    def get_vehicle_progress_summary(self) -> list[dict[str, Any]]:
        """Per-make rollup of jobs and stored records, largest makes first."""

        permanent_counts = self.permanent.counts_by_make()
        fresh_counts = self.fresh.counts_by_make()
        summary: dict[str, dict[str, Any]] = {}
        for job in self.scheduler.queue.jobs():
            key = job.make.lower()
            entry = summary.setdefault(
                key,
                {
                    "make": job.make,
                    "jobs": {status.value: 0 for status in JobStatus},
                    "discovered_models": 0,
                    "records_collected": 0,
                    "last_collected_at": None,
                },
            )
            entry["jobs"][job.status.value] += 1
            entry["discovered_models"] += job.discovered_model_count
            entry["records_collected"] += job.records_collected
            if job.last_collected_at is not None:
                stamp = job.last_collected_at.isoformat()
                if entry["last_collected_at"] is None or stamp > entry["last_collected_at"]:
                    entry["last_collected_at"] = stamp
        for key, entry in summary.items():
            entry["permanent_records"] = permanent_counts.get(key, 0)
            entry["fresh_records"] = fresh_counts.get(key, 0)
        return sorted(
            summary.values(),
            key=lambda item: (-(item["permanent_records"] + item["fresh_records"]), item["make"]),
        )


__all__ = ["NOT_AVAILABLE", "StatusReporter"]
