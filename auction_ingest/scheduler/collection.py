"""Collection scheduler: a job queue drained by a bounded worker pool."""

from __future__ import annotations

import time
from collections import deque
from concurrent.futures import Future, wait as wait_futures
from datetime import datetime
from enum import Enum
from threading import Condition, Event, RLock, Thread
from typing import Any, Callable, Mapping

import structlog

from ..config import EnqueueOptions, EnqueueRequest, GlobalConfig, RefreshMode
from ..engine import Fetcher, FetchUnit, ModelDiscovery, PermanentStore, SaleWindow, ThreadPoolManager
from ..engine.store import utc_now
from ..logging_conf import configure_logging, make_logger
from .queue import CollectionJob, JobQueue, job_id_for


class SchedulerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    BACKOFF = "backoff"


class CollectionScheduler:
    """Pick pending jobs by priority and run at most ``concurrency_cap`` at once.

    One loop thread owns dispatching. A job id enters the active set before its
    status flips to running and leaves it when the job body returns, so a job is
    never running twice.
    """

    def __init__(
        self,
        config: GlobalConfig,
        fetcher: Fetcher,
        discovery: ModelDiscovery,
        permanent: PermanentStore,
        thread_pool: ThreadPoolManager,
        queue: JobQueue | None = None,
        logger: structlog.BoundLogger | None = None,
        logger_factory: Callable[[str], structlog.BoundLogger] = make_logger,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.discovery = discovery
        self.permanent = permanent
        self.thread_pool = thread_pool
        self.queue = queue or JobQueue()
        self.logger = logger or configure_logging().bind(component="scheduler")
        self._logger_factory = logger_factory
        self._clock = clock
        self.cap = config.scheduler.concurrency_cap

        self._lock = RLock()
        self._slots = Condition(self._lock)
        self._active: set[str] = set()
        self._futures: set[Future] = set()
        self._durations: deque[float] = deque(maxlen=20)
        self._wake = Event()
        self._stopping = False
        self._running = False
        self._state = SchedulerState.IDLE
        self._thread: Thread | None = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def active_ids(self) -> set[str]:
        with self._lock:
            return set(self._active)

    def average_job_duration(self) -> float:
        with self._lock:
            if self._durations:
                return sum(self._durations) / len(self._durations)
        return self.config.scheduler.avg_job_duration_estimate

    # ------------------------------------------------------------------
    def enqueue(
        self,
        make: str,
        options: EnqueueOptions | Mapping[str, Any] | None = None,
    ) -> CollectionJob:
        """Validate and add a job; raises pydantic ``ValidationError`` on bad input."""

        if isinstance(options, EnqueueOptions):
            payload = options.model_dump()
        else:
            payload = {**self.config.default_options.model_dump(), **dict(options or {})}
        request = EnqueueRequest.model_validate({**payload, "make": make})
        opts = request.options()
        job, created = self.queue.upsert(
            request.make, opts.specific_model, opts.site, opts.priority, opts
        )
        self.logger.info(
            "job_enqueued" if created else "job_updated",
            job_id=job.id,
            priority=job.priority,
            status=job.status.value,
        )
        if self.config.scheduler.refresh_mode is RefreshMode.ONE_SHOT:
            self._wake.set()
        return job

    def seed(self) -> int:
        """Create the initial job plan from configured makes and the permanent store."""

        created = 0
        defaults = self.config.default_options
        for seed in self.config.seeds:
            for site in seed.sites:
                options = defaults.model_copy(
                    update={"site": site, "specific_model": seed.model, "priority": seed.priority}
                )
                _, is_new = self.queue.upsert(seed.make, seed.model, site, seed.priority, options)
                created += int(is_new)

        if self.config.seed_from_store:
            priority_makes = self.config.priority_makes()
            for make, model, site, _count in self.permanent.top_combinations(self.config.seed_limit):
                if site not in (1, 2):
                    continue
                priority = 1 if make.lower() in priority_makes else 2
                options = defaults.model_copy(
                    update={"site": site, "specific_model": model, "priority": priority}
                )
                if self.queue.get(job_id_for(make, model, site)):
                    continue
                self.queue.upsert(make, model, site, priority, options)
                created += 1
        self.logger.info("queue_seeded", created=created, total=len(self.queue))
        return created

    # ------------------------------------------------------------------
    def tick(self) -> int:
        """Dispatch pending jobs into free slots; returns how many were started."""

        started = 0
        with self._lock:
            while len(self._active) < self.cap and not self._stopping:
                job = self.queue.next_pending(exclude=self._active)
                if job is None:
                    break
                self._active.add(job.id)
                self.queue.mark_running(job)
                future = self.thread_pool.get("jobs", max_workers=self.cap).submit(self._run_job, job)
                self._futures.add(future)
                future.add_done_callback(self._forget_future)
                started += 1
        if started:
            self.logger.debug("jobs_dispatched", started=started, active=self.active_count)
        return started

    def run_loop(self) -> None:
        """Blocking loop; returns once stopped, or drained in one-shot mode."""

        self._running = True
        one_shot = self.config.scheduler.refresh_mode is RefreshMode.ONE_SHOT
        self.logger.info("collection_loop_started", mode=self.config.scheduler.refresh_mode.value)
        try:
            while not self._stopping:
                # 先清除再派发，派发期间的唤醒不会丢失
                self._wake.clear()
                try:
                    self._state = SchedulerState.DISPATCHING
                    self.tick()
                    if not self.queue.has_pending():
                        if one_shot:
                            if self.active_count == 0:
                                self.logger.info("queue_drained", counts=self.queue.counts())
                                break
                        else:
                            recycled = self.queue.recycle_completed()
                            if recycled:
                                self.logger.info("jobs_recycled", recycled=recycled)
                    self._state = SchedulerState.POLLING
                    if not self._stopping:
                        self._wake.wait(self.config.scheduler.poll_interval_seconds)
                except Exception as exc:  # noqa: BLE001
                    self._state = SchedulerState.BACKOFF
                    self.logger.error(
                        "collection_loop_error",
                        error=str(exc),
                        backoff=self.config.scheduler.error_backoff_seconds,
                    )
                    self._wake.wait(self.config.scheduler.error_backoff_seconds)
        finally:
            self._state = SchedulerState.IDLE
            self._running = False
            self.logger.info("collection_loop_stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            if not self._stopping:
                return
            # 上一个循环线程正在退出，等它结束后再重启
            self._thread.join()
        self._stopping = False
        self._running = True
        self._thread = Thread(target=self.run_loop, name="collection-loop", daemon=True)
        self._thread.start()

    def stop(self, wait: bool = False, timeout: float | None = None) -> None:
        """Stop dispatching; running jobs finish on their own."""

        self._stopping = True
        self._wake.set()
        if not wait:
            return
        if self._thread is not None:
            self._thread.join(timeout)
        with self._lock:
            pending = list(self._futures)
        if pending:
            wait_futures(pending, timeout=timeout)

    def execute(self, job: CollectionJob) -> bool:
        """Run one job on the calling thread unless it is already active.

        Shares the concurrency cap with the loop: blocks until a slot is free.
        """

        with self._slots:
            while True:
                if job.id in self._active:
                    self.logger.info("job_already_active", job_id=job.id)
                    return False
                if len(self._active) < self.cap:
                    break
                self._slots.wait()
            self._active.add(job.id)
            self.queue.mark_running(job)
        self._run_job(job)
        return True

    # ------------------------------------------------------------------
    def _forget_future(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run_job(self, job: CollectionJob) -> None:
        started = time.monotonic()
        log = self._logger_factory(job.make).bind(job_id=job.id)
        try:
            options = job.options
            window = SaleWindow.days_back(options.days_back, reference=self._clock())
            discovered: int | None = None
            probe_ids: frozenset[str] = frozenset()
            if job.model:
                models = [job.model]
            else:
                found = self.discovery.discover(
                    job.make,
                    job.site,
                    window,
                    year_from=options.year_from,
                    year_to=options.year_to,
                    logger=log,
                )
                models = found.models
                # 探测页写入的行不计入各车型的覆盖检查
                probe_ids = found.probe_ids
                discovered = len(models)
            inserted = len(probe_ids)
            for model in models:
                unit = FetchUnit(
                    make=job.make,
                    site=job.site,
                    window=window,
                    model=model,
                    year_from=options.year_from,
                    year_to=options.year_to,
                )
                inserted += self.fetcher.collect(unit, logger=log, exclude_ids=probe_ids).inserted
            self.queue.mark_completed(
                job, finished_at=self._clock(), records=inserted, discovered_models=discovered
            )
            log.info("job_completed", records=inserted, models=len(models))
        except Exception as exc:  # noqa: BLE001
            self.queue.mark_failed(job, str(exc))
            log.error("job_failed", error=str(exc))
        finally:
            with self._slots:
                self._active.discard(job.id)
                self._durations.append(time.monotonic() - started)
                self._slots.notify_all()
            if self.config.scheduler.refresh_mode is RefreshMode.ONE_SHOT:
                self._wake.set()


__all__ = ["CollectionScheduler", "SchedulerState"]
