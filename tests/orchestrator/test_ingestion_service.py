from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from auction_ingest.config import EnqueueOptions, RefreshMode
from auction_ingest.orchestrator import IngestionService
from auction_ingest.scheduler import JobQueue, SchedulerState
from auction_ingest.status import NOT_AVAILABLE, StatusReporter


class StubMaintenance:
    def __init__(self, next_run: datetime | None = None) -> None:
        self.events: list[tuple] = []
        self.next_run = next_run

    def schedule_migration(self, schedule, callback) -> None:
        self.events.append(("schedule", schedule.type.value, callback))

    def start(self) -> None:
        self.events.append(("start",))

    def shutdown(self) -> None:
        self.events.append(("shutdown",))

    def next_migration_run(self):
        return self.next_run


@pytest.fixture
def build_service(config_repository, storage, fake_sleep):
    services: list[IngestionService] = []

    def _build(vendor, **kwargs) -> IngestionService:
        kwargs.setdefault("refresh_mode", RefreshMode.ONE_SHOT)
        kwargs.setdefault("seed", False)
        service = IngestionService(
            config_repository,
            storage=storage,
            vendor_client=vendor,
            maintenance=kwargs.pop("maintenance", StubMaintenance()),
            sleep=fake_sleep,
            **kwargs,
        )
        services.append(service)
        return service

    yield _build
    for service in services:
        service.stop(wait=True)
        service.thread_pool.shutdown(wait=True)


def test_honda_end_to_end(build_service, stub_vendor, make_record, seed_permanent, make_permanent_row) -> None:
    seed_permanent(
        [make_permanent_row(lot, site=2, model="Civic") for lot in (901, 902, 903)]
        + [make_permanent_row(lot, site=2, model="Accord") for lot in (904, 905)]
    )
    vendor = stub_vendor(
        {
            ("Civic", 1): [make_record(lot) for lot in range(1, 26)],
            ("Civic", 2): [make_record(lot) for lot in range(26, 36)],
        }
    )
    service = build_service(vendor)
    job = service.enqueue("Honda", {"site": 1, "days_back": 150})
    before = service.get_status()
    assert (before["pending_jobs"], before["completed_jobs"]) == (1, 0)

    started = datetime.now(timezone.utc)
    service.run_until_drained()

    assert job.discovered_model_count == 2
    assert vendor.calls == [
        ("Honda", "Civic", 1, 1),
        ("Honda", "Civic", 1, 2),
        ("Honda", "Civic", 1, 3),
        ("Honda", "Accord", 1, 1),
    ]
    assert service.fresh.count() == 35
    with service.fresh.lock:
        rows = service.fresh.connection.execute(
            "SELECT created_at, expires_at FROM fresh_sales_history"
        ).fetchall()
    for row in rows:
        created = datetime.fromisoformat(row["created_at"])
        expires = datetime.fromisoformat(row["expires_at"])
        assert expires - created == timedelta(days=3)
        assert created >= started - timedelta(seconds=1)

    after = service.get_status()
    assert (after["pending_jobs"], after["completed_jobs"]) == (0, 1)
    assert after["fresh_records"] == 35
    assert after["total_records"] == 5
    assert after["estimated_completion"] == NOT_AVAILABLE

    summary = service.get_vehicle_progress_summary()
    assert summary[0]["make"] == "Honda"
    assert summary[0]["fresh_records"] == 35
    assert summary[0]["permanent_records"] == 5
    assert summary[0]["jobs"]["completed"] == 1
    assert summary[0]["discovered_models"] == 2

    # 第二轮：窗口内已有数据，不再请求供应商
    service.enqueue("Honda", {"site": 1, "specific_model": "Civic"})
    service.run_until_drained()
    assert len(vendor.calls) == 4


def test_status_on_empty_queue(build_service, stub_vendor) -> None:
    status = build_service(stub_vendor()).get_status()
    assert status["total_jobs"] == 0
    assert status["estimated_seconds_remaining"] == NOT_AVAILABLE
    assert status["estimated_completion"] == NOT_AVAILABLE
    assert status["completion_rate"] == 0.0
    assert status["is_running"] is False
    assert status["next_migration_at"] == NOT_AVAILABLE


def test_status_eta_formula(fresh_store, permanent_store) -> None:
    queue = JobQueue()
    for make in ("Honda", "Ford", "Kia", "Jeep"):
        queue.upsert(make, None, 1, 1, EnqueueOptions())
    scheduler = SimpleNamespace(
        queue=queue,
        active_count=2,
        is_running=True,
        cap=3,
        state=SchedulerState.POLLING,
        average_job_duration=lambda: 30.0,
    )
    status = StatusReporter(scheduler, permanent_store, fresh_store).get_status()
    assert status["estimated_seconds_remaining"] == 60.0
    assert status["estimated_completion"] != NOT_AVAILABLE
    assert status["state"] == "polling"

    scheduler.is_running = False
    assert StatusReporter(scheduler, permanent_store, fresh_store).get_status()[
        "estimated_seconds_remaining"
    ] == NOT_AVAILABLE


def test_queue_snapshot_is_ordered(build_service, stub_vendor) -> None:
    service = build_service(stub_vendor())
    service.enqueue("Kia", {"priority": 3})
    service.enqueue("BMW", {"priority": 1})
    snapshot = service.get_queue_snapshot()
    assert [job["make"] for job in snapshot] == ["BMW", "Kia"]


def test_seeded_service(build_service, stub_vendor) -> None:
    service = build_service(stub_vendor(), seed=True)
    # 测试配置里没有种子品牌
    assert service.get_status()["total_jobs"] == 0


def test_start_registers_migration(build_service, stub_vendor) -> None:
    maintenance = StubMaintenance()
    service = build_service(stub_vendor(), maintenance=maintenance, refresh_mode=RefreshMode.CONTINUOUS)
    service.start()
    assert service.scheduler.is_running
    service.stop(wait=True)
    assert not service.scheduler.is_running
    kinds = [event[0] for event in maintenance.events]
    assert kinds == ["schedule", "start", "shutdown"]
    assert maintenance.events[0][1] == "interval"
    assert maintenance.events[0][2] == service.migrate_now


def test_migrate_now(build_service, stub_vendor, make_record) -> None:
    service = build_service(stub_vendor())
    old = datetime.now(timezone.utc) - timedelta(days=4)
    service.fresh.insert_records([make_record(1), make_record(2)], 1, now=old)
    report = service.migrate_now()
    assert report.migrated == 2
    assert service.permanent.count() == 2
    assert service.fresh.count() == 0


def test_run_bulk_by_priority_tier(build_service, stub_vendor, sleeps) -> None:
    vendor = stub_vendor()
    service = build_service(vendor)
    results = service.run_bulk(
        [
            {"make": "Honda", "specific_model": "Civic", "priority": 2},
            {"make": "Kia", "specific_model": "Soul", "priority": 1},
            {"make": "Ford", "specific_model": "Focus", "priority": 1},
        ],
        max_parallel=2,
        stagger_seconds=1.5,
    )
    assert [job["make"] for job in results] == ["Kia", "Ford", "Honda"]
    assert all(job["status"] == "completed" for job in results)
    assert sleeps == [1.5]
    assert {call[0] for call in vendor.calls[:2]} == {"Kia", "Ford"}
    assert vendor.calls[-1][0] == "Honda"


def test_run_bulk_validates_everything_first(build_service, stub_vendor) -> None:
    vendor = stub_vendor()
    service = build_service(vendor)
    with pytest.raises(ValidationError):
        service.run_bulk([{"make": "Honda"}, {"make": "Kia", "year_from": 1980}])
    assert vendor.calls == []
    assert len(service.scheduler.queue) == 0


def test_cold_start_collects_discovered_models(build_service, stub_vendor, make_record) -> None:
    civic = [make_record(lot, model="Civic") for lot in range(1, 14)]
    accord = [make_record(lot, model="Accord") for lot in range(14, 26)]
    vendor = stub_vendor(
        {
            (None, 1): civic + accord,
            ("Civic", 1): civic + [make_record(lot, model="Civic") for lot in range(101, 113)],
            ("Civic", 2): [make_record(lot, model="Civic") for lot in range(113, 118)],
            ("Accord", 1): accord,
        }
    )
    service = build_service(vendor)
    job = service.enqueue("Honda", {"site": 1, "days_back": 30})

    service.run_until_drained()

    assert vendor.calls == [
        ("Honda", None, 1, 1),
        ("Honda", "Civic", 1, 1),
        ("Honda", "Civic", 1, 2),
        ("Honda", "Civic", 1, 3),
        ("Honda", "Accord", 1, 1),
        ("Honda", "Accord", 1, 2),
    ]
    assert job.discovered_model_count == 2
    assert job.records_collected == 25 + 12 + 5
    assert service.fresh.count() == 42

    # 同一窗口按车型再跑一轮：已有数据，不再请求供应商
    for model in ("Civic", "Accord"):
        service.enqueue("Honda", {"site": 1, "days_back": 30, "specific_model": model})
    service.run_until_drained()
    assert len(vendor.calls) == 6


def test_rejected_enqueue_not_in_snapshot(build_service, stub_vendor) -> None:
    service = build_service(stub_vendor())
    with pytest.raises(ValidationError):
        service.enqueue("Toyota", {"year_from": 1980})
    assert all(job["make"] != "Toyota" for job in service.get_queue_snapshot())
    assert service.get_status()["total_jobs"] == 0


def test_status_reports_next_migration(build_service, stub_vendor) -> None:
    next_run = datetime(2030, 1, 1, 3, 0, tzinfo=timezone.utc)
    service = build_service(stub_vendor(), maintenance=StubMaintenance(next_run=next_run))
    assert service.get_status()["next_migration_at"] == "2030-01-01T03:00:00+00:00"
