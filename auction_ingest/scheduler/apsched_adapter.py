"""APScheduler wrapper for periodic maintenance such as the migration sweep."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType
from ..logging_conf import configure_logging

MIGRATION_JOB_ID = "maintenance::migration"


class APSchedulerAdapter:
    """Own a background APScheduler and register maintenance jobs on it."""

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self.logger = logger or configure_logging().bind(component="apscheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_migration(self, schedule: ScheduleConfig, callback: Callable[[], object]) -> None:
        trigger = build_trigger(schedule)
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=MIGRATION_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job_id=MIGRATION_JOB_ID, schedule=schedule.model_dump(mode="json"))

    def next_migration_run(self) -> datetime | None:
        job = self.scheduler.get_job(MIGRATION_JOB_ID)
        if job is None:
            return None
        # 调度器启动前任务还没有 next_run_time
        return getattr(job, "next_run_time", None)


def build_trigger(schedule: ScheduleConfig):
    if schedule.type is ScheduleType.CRON:
        return CronTrigger.from_crontab(str(schedule.value), timezone=timezone.utc)
    if schedule.type is ScheduleType.INTERVAL:
        if isinstance(schedule.value, (int, float)):
            return IntervalTrigger(seconds=float(schedule.value), timezone=timezone.utc)
        if isinstance(schedule.value, dict):
            return IntervalTrigger(timezone=timezone.utc, **schedule.value)
        raise ValueError("Interval schedule requires seconds or kwargs dict")
    if schedule.type is ScheduleType.ONCE:
        if schedule.value:
            run_date = datetime.fromisoformat(str(schedule.value))
        else:
            run_date = datetime.now(timezone.utc)
        return DateTrigger(run_date=run_date, timezone=timezone.utc)
    raise ValueError(f"Unknown schedule type: {schedule.type}")


__all__ = ["APSchedulerAdapter", "MIGRATION_JOB_ID", "build_trigger"]
