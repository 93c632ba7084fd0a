"""Scheduling: the collection loop, its queue and periodic maintenance."""

from .apsched_adapter import APSchedulerAdapter, build_trigger
from .collection import CollectionScheduler, SchedulerState
from .migration import MigrationReport, Migrator
from .queue import CollectionJob, JobQueue, JobStatus, job_id_for

__all__ = [
    "APSchedulerAdapter",
    "CollectionJob",
    "CollectionScheduler",
    "JobQueue",
    "JobStatus",
    "MigrationReport",
    "Migrator",
    "SchedulerState",
    "build_trigger",
    "job_id_for",
]
