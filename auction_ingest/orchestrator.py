"""Service wiring the vendor client, stores, scheduler and maintenance together."""

from __future__ import annotations

import time
from concurrent.futures import Future, wait as wait_futures
from datetime import datetime, timedelta
from itertools import groupby
from typing import Any, Callable, Iterable, Mapping

from .config import ConfigRepository, EnqueueOptions, EnqueueRequest, GlobalConfig, RefreshMode
from .engine import (
    CoverageChecker,
    Fetcher,
    FreshStore,
    ModelDiscovery,
    PermanentStore,
    ThreadPoolManager,
    VendorClient,
)
from .engine.errors import PersistenceError
from .infra import SQLiteManager
from .logging_conf import configure_logging
from .scheduler import APSchedulerAdapter, CollectionJob, CollectionScheduler, MigrationReport, Migrator
from .status import NOT_AVAILABLE, StatusReporter


class IngestionService:
    """Owned ingestion instance exposing the control operations."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        storage: SQLiteManager | None = None,
        thread_pool: ThreadPoolManager | None = None,
        vendor_client: VendorClient | None = None,
        maintenance: APSchedulerAdapter | None = None,
        refresh_mode: RefreshMode | None = None,
        sleep: Callable[[float], None] = time.sleep,
        seed: bool = True,
    ) -> None:
        self.config_repository = config_repository
        config: GlobalConfig = config_repository.load_global_config()
        if refresh_mode is not None and refresh_mode is not config.scheduler.refresh_mode:
            config = config.model_copy(
                update={"scheduler": config.scheduler.model_copy(update={"refresh_mode": refresh_mode})}
            )
        self.global_config = config
        self.logger = configure_logging().bind(component="orchestrator")
        self._sleep = sleep

        db_path = config_repository.database_path()
        self.storage = storage or SQLiteManager()
        self.fresh = FreshStore(
            self.storage, db_path, retention=timedelta(days=config.migration.retention_days)
        )
        self.permanent = PermanentStore(self.storage, db_path)
        self.client = vendor_client or VendorClient(config.vendor)
        self.fetcher = Fetcher(
            self.client,
            self.fresh,
            CoverageChecker(self.fresh, self.permanent, config.fetch.skip_if_existing_at_least),
            config.fetch,
            sleep=sleep,
        )
        self.discovery = ModelDiscovery(
            self.permanent, self.fresh, self.fetcher, max_models=config.discovery.max_models
        )
        self.thread_pool = thread_pool or ThreadPoolManager(config.scheduler.concurrency_cap)
        self.scheduler = CollectionScheduler(
            config, self.fetcher, self.discovery, self.permanent, self.thread_pool
        )
        self.migrator = Migrator(self.fresh, self.permanent)
        self.reporter = StatusReporter(self.scheduler, self.permanent, self.fresh)
        self.maintenance = maintenance or APSchedulerAdapter()
        if seed:
            self.scheduler.seed()

    # ------------------------------------------------------------------
    def start(self) -> None:
        if self.global_config.migration.run_on_start:
            self.migrate_now()
        self.maintenance.schedule_migration(self.global_config.migration.schedule, self.migrate_now)
        self.maintenance.start()
        self.scheduler.start()
        self.logger.info("service_started", cap=self.scheduler.cap)

    def stop(self, wait: bool = False) -> None:
        self.scheduler.stop(wait=wait)
        self.maintenance.shutdown()
        self.logger.info("service_stopped")

    def run_until_drained(self) -> None:
        """Run the collection loop on this thread until it returns."""

        self.scheduler.run_loop()

    def close(self) -> None:
        self.stop(wait=True)
        self.thread_pool.shutdown(wait=True)
        self.client.close()
        self.storage.close_all()

    # ------------------------------------------------------------------
    def enqueue(
        self, make: str, options: EnqueueOptions | Mapping[str, Any] | None = None
    ) -> CollectionJob:
        return self.scheduler.enqueue(make, options)

    def get_status(self) -> dict[str, Any]:
        status = self.reporter.get_status()
        next_run = self.maintenance.next_migration_run()
        status["next_migration_at"] = (
            next_run.isoformat(timespec="seconds") if next_run is not None else NOT_AVAILABLE
        )
        return status

    def get_queue_snapshot(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.reporter.get_queue_snapshot(limit)

    def get_vehicle_progress_summary(self) -> list[dict[str, Any]]:
        return self.reporter.get_vehicle_progress_summary()

    def migrate_now(self, now: datetime | None = None) -> MigrationReport:
        try:
            return self.migrator.migrate_expired(now)
        except PersistenceError as exc:
            self.logger.error("migration_failed", error=str(exc))
            raise

    def run_bulk(
        self,
        requests: Iterable[EnqueueRequest | Mapping[str, Any]],
        max_parallel: int | None = None,
        stagger_seconds: float | None = None,
    ) -> list[dict[str, Any]]:
        """Run several makes now, one priority tier at a time.

        Every request is validated before anything runs. Inside a tier at most
        ``max_parallel`` jobs run at once and submissions are spaced by
        ``stagger_seconds``.
        """

        validated = [
            item if isinstance(item, EnqueueRequest) else EnqueueRequest.model_validate(item)
            for item in requests
        ]
        parallel = max_parallel or self.global_config.bulk.max_parallel
        stagger = self.global_config.bulk.stagger_seconds if stagger_seconds is None else stagger_seconds
        executor = self.thread_pool.get("bulk", max_workers=parallel)

        results: list[dict[str, Any]] = []
        ordered = sorted(validated, key=lambda req: req.priority)
        for priority, tier in groupby(ordered, key=lambda req: req.priority):
            tier_requests = list(tier)
            self.logger.info("bulk_tier_started", priority=priority, makes=len(tier_requests))
            jobs: list[CollectionJob] = []
            futures: list[Future] = []
            for index, request in enumerate(tier_requests):
                if index and stagger > 0:
                    self._sleep(stagger)
                job = self.scheduler.enqueue(request.make, request.options())
                jobs.append(job)
                futures.append(executor.submit(self.scheduler.execute, job))
            wait_futures(futures)
            results.extend(job.to_dict() for job in jobs)
        self.logger.info("bulk_finished", jobs=len(results))
        return results


__all__ = ["IngestionService"]
