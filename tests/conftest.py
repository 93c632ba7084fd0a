"""Shared fixtures: an isolated project home, stores and a scripted vendor."""

from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from auction_ingest.config import (
    ConfigLocator,
    ConfigRepository,
    FetchConfig,
    GlobalConfig,
    SchedulerConfig,
)
from auction_ingest.engine import FreshStore, PermanentStore, VendorPage
from auction_ingest.infra import SALE_COLUMNS, SQLiteManager


class StubVendor:
    """Scripted stand-in for ``VendorClient``.

    ``script`` maps ``(model, page)`` to a list of records or an exception
    instance. A tuple of those is consumed one call at a time, its last item
    repeating. Unknown keys answer with an empty page.
    """

    def __init__(self, script: dict[tuple[str | None, int], Any] | None = None) -> None:
        self.script = dict(script or {})
        self.calls: list[tuple[str, str | None, int, int]] = []
        self.closed = False

    def fetch_page(self, query, page: int, size: int | None = None) -> VendorPage:
        self.calls.append((query.make, query.model, query.site, page))
        key = (query.model, page)
        step = self.script.get(key, [])
        if isinstance(step, tuple):
            if len(step) > 1:
                self.script[key] = step[1:]
            step = step[0]
        if isinstance(step, BaseException):
            raise step
        return VendorPage(page=page, records=list(step), count=len(step))

    def pages_requested(self, model: str | None = None) -> list[int]:
        return [call[3] for call in self.calls if call[1] == model]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def ingest_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("AUCTION_INGEST_HOME", str(tmp_path))
    monkeypatch.delenv("AUCTION_INGEST_API_KEY", raising=False)
    return tmp_path


@pytest.fixture
def global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        fetch=FetchConfig(inter_page_delay=(0.0, 0.0), rate_limit_backoff_seconds=0.0),
        scheduler=SchedulerConfig(poll_interval_seconds=0.01, error_backoff_seconds=0.01),
        seeds=[],
        seed_from_store=False,
        database_path=tmp_path / "data" / "auction.db",
    )


@pytest.fixture
def config_repository(ingest_home: Path, global_config: GlobalConfig) -> ConfigRepository:
    repository = ConfigRepository(ConfigLocator(project_root=ingest_home))
    repository.save_global_config(global_config)
    return repository


@pytest.fixture
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "auction.db"


@pytest.fixture
def fresh_store(storage: SQLiteManager, db_path: Path) -> FreshStore:
    return FreshStore(storage, db_path)


@pytest.fixture
def permanent_store(storage: SQLiteManager, db_path: Path) -> PermanentStore:
    return PermanentStore(storage, db_path)


@pytest.fixture
def make_record() -> Callable[..., dict[str, Any]]:
    def _builder(lot_id: Any, **overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "lot_id": lot_id,
            "vin": f"VIN{lot_id}",
            "sale_status": "Sold",
            "sale_date": (date.today() - timedelta(days=5)).isoformat() + "T10:00:00",
            "purchase_price": 4200,
            "year": 2018,
            "make": "Honda",
            "model": "Civic",
            "odometer": 80000,
            "images": ["https://img.example/1.jpg"],
        }
        record.update(overrides)
        return record

    return _builder


@pytest.fixture
def stub_vendor() -> Callable[..., StubVendor]:
    return StubVendor


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable[[float], None]:
    return sleeps.append


def _permanent_row(
    lot_id: int,
    *,
    site: int = 1,
    make: str = "Honda",
    model: str | None = "Civic",
    sale_date: str | None = None,
    created_at: str = "2024-01-01T00:00:00.000000+00:00",
) -> dict[str, Any]:
    """Row in permanent schema for seeding ``sales_history`` directly."""

    row = {column: None for column in SALE_COLUMNS}
    row.update(
        {
            "id": f"{lot_id}-{site}",
            "lot_id": lot_id,
            "site": site,
            "base_site": "copart" if site == 1 else "iaai",
            "vin": f"VIN{lot_id}",
            "sale_status": "Sold",
            "sale_date": sale_date or (date.today() - timedelta(days=5)).isoformat(),
            "make": make,
            "model": model,
            "created_at": created_at,
        }
    )
    return row


@pytest.fixture
def seed_permanent(permanent_store: PermanentStore) -> Callable[..., None]:
    def _seed(rows: Iterable[dict[str, Any]]) -> None:
        for row in rows:
            permanent_store.insert_if_absent(row)

    return _seed


@pytest.fixture
def make_permanent_row() -> Callable[..., dict[str, Any]]:
    return _permanent_row
