"""Fresh (staging) and permanent sale-record stores on top of SQLite."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Collection, Iterable, Mapping

import structlog

from ..config import SITE_NAMES
from ..infra.storage import FRESH_COLUMNS, SALE_COLUMNS, SQLiteManager
from .errors import PersistenceError
from .units import SaleWindow


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO string so that text comparison orders correctly."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def natural_id(lot_id: Any, site: int) -> str:
    return f"{lot_id}-{site}"


def _coerce_int(value: Any) -> int | None:
    """``80000``, ``"80000"`` and ``"80000.0"`` all give 80000; anything else ``None``."""

    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)


def _first_present(item: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _as_json(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _has_keys(item: Mapping[str, Any]) -> int | None:
    value = item.get("vehicle_has_keys")
    if value is None:
        keys = item.get("keys")
        if keys is None:
            return None
        return 1 if str(keys).strip().lower() == "yes" else 0
    return 1 if bool(value) else 0


def to_fresh_row(
    item: Mapping[str, Any],
    site: int,
    *,
    created_at: datetime,
    expires_at: datetime,
    fallback_make: str | None = None,
) -> dict[str, Any] | None:
    """Map one vendor record to a fresh-tier row; ``None`` when it has no lot id at all."""

    raw_lot = item.get("lot_id") or item.get("id")
    if raw_lot in (None, ""):
        return None
    lot_id = _coerce_int(raw_lot)
    price = item.get("purchase_price")
    if price is None and item.get("cost_priced") is not None:
        price = item.get("cost_priced")
    return {
        "id": natural_id(lot_id if lot_id is not None else raw_lot, site),
        "lot_id": lot_id,
        "site": site,
        "base_site": item.get("base_site") or SITE_NAMES.get(site),
        "vin": _as_text(item.get("vin")),
        "sale_status": _as_text(item.get("sale_status") or item.get("status")),
        "sale_date": _as_text(item.get("sale_date")),
        "purchase_price": _as_text(price),
        "buyer_state": _as_text(item.get("buyer_state")),
        "buyer_country": _as_text(item.get("buyer_country")),
        "buyer_type": _as_text(item.get("buyer_type")),
        "auction_location": _as_text(item.get("auction_location") or item.get("location")),
        "vehicle_mileage": _coerce_int(_first_present(item, "vehicle_mileage", "odometer")),
        "vehicle_damage": _as_text(item.get("vehicle_damage") or item.get("damage_pr")),
        "vehicle_title": _as_text(item.get("vehicle_title") or item.get("document")),
        "vehicle_has_keys": _has_keys(item),
        "year": _coerce_int(item.get("year")),
        "make": _as_text(item.get("make")) or fallback_make,
        "model": _as_text(item.get("model")),
        "series": _as_text(item.get("series")),
        "trim": _as_text(item.get("trim")),
        "transmission": _as_text(item.get("transmission")),
        "drive": _as_text(item.get("drive")),
        "fuel": _as_text(item.get("fuel")),
        "engine": _as_text(item.get("engine")),
        "color": _as_text(item.get("color")),
        "images": _as_json(item.get("images") if item.get("images") is not None else []),
        "link": _as_text(item.get("link")),
        "link_img_hd": _as_json(item.get("link_img_hd") or []),
        "link_img_small": _as_json(item.get("link_img_small") or []),
        "created_at": format_timestamp(created_at),
        "expires_at": format_timestamp(expires_at),
    }


def to_permanent_row(row: Mapping[str, Any]) -> dict[str, Any] | None:
    """Map a fresh row to the permanent schema; ``None`` when the natural key is incomplete."""

    lot_id = _coerce_int(row["lot_id"])
    site = _coerce_int(row["site"])
    if lot_id is None or site is None:
        return None
    mapped = {column: row[column] for column in SALE_COLUMNS}
    mapped.update(
        {
            "id": natural_id(lot_id, site),
            "lot_id": lot_id,
            "site": site,
            "base_site": row["base_site"] or SITE_NAMES.get(site, "unknown"),
            "vin": row["vin"] or "",
            "sale_status": row["sale_status"] or "unknown",
        }
    )
    return mapped


@dataclass(slots=True)
class WriteResult:
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0
    inserted_ids: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.inserted + self.duplicates + self.failed


def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
    names = ", ".join(columns)
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({names}) VALUES ({placeholders}) ON CONFLICT(id) DO NOTHING"


class _TierStore:
    """Shared read helpers for both tiers."""

    table = ""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._conn = manager.connect(db_path)
        self.lock = manager.lock_for(db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def count(self) -> int:
        with self.lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()
        return int(row[0])

    def count_created_since(self, since: datetime) -> int:
        with self.lock:
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM {self.table} WHERE created_at >= ?",
                (format_timestamp(since),),
            ).fetchone()
        return int(row[0])

    def count_matching(
        self,
        make: str,
        model: str | None,
        site: int,
        window: SaleWindow,
        exclude_ids: Collection[str] = (),
    ) -> int:
        clauses = ["make = ? COLLATE NOCASE", "site = ?", "substr(sale_date, 1, 10) BETWEEN ? AND ?"]
        params: list[Any] = [make, site, *window.as_tuple()]
        if model:
            clauses.append("model = ? COLLATE NOCASE")
            params.append(model)
        if exclude_ids:
            clauses.append(f"id NOT IN ({', '.join('?' for _ in exclude_ids)})")
            params.extend(exclude_ids)
        sql = f"SELECT COUNT(*) FROM {self.table} WHERE " + " AND ".join(clauses)
        with self.lock:
            row = self._conn.execute(sql, params).fetchone()
        return int(row[0])

    def distinct_models(self, make: str, window: SaleWindow, limit: int) -> list[str]:
        sql = (
            f"SELECT model, COUNT(*) AS seen FROM {self.table} "
            "WHERE make = ? COLLATE NOCASE AND model IS NOT NULL AND trim(model) != '' "
            "AND model != 'Unknown' AND substr(sale_date, 1, 10) BETWEEN ? AND ? "
            "GROUP BY model ORDER BY seen DESC, model ASC LIMIT ?"
        )
        with self.lock:
            rows = self._conn.execute(sql, (make, *window.as_tuple(), limit)).fetchall()
        return [row["model"] for row in rows]

    def counts_by_make(self) -> dict[str, int]:
        sql = (
            f"SELECT lower(make) AS make_key, COUNT(*) AS total FROM {self.table} "
            "WHERE make IS NOT NULL GROUP BY lower(make)"
        )
        with self.lock:
            rows = self._conn.execute(sql).fetchall()
        return {row["make_key"]: int(row["total"]) for row in rows}


class FreshStore(_TierStore):
    """Time-boxed staging tier; every row carries its own expiry."""

    table = "fresh_sales_history"

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        retention: timedelta = timedelta(days=3),
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        super().__init__(manager, db_path)
        self.retention = retention
        self.logger = logger or structlog.get_logger("auction_ingest.store")
        self._insert = _insert_sql(self.table, FRESH_COLUMNS)

    def insert_records(
        self,
        items: Iterable[Mapping[str, Any]],
        site: int,
        *,
        fallback_make: str | None = None,
        now: datetime | None = None,
    ) -> WriteResult:
        """Insert vendor records; an existing natural key wins and the new copy is dropped."""

        now = now or utc_now()
        expires_at = now + self.retention
        result = WriteResult()
        with self.lock:
            for item in items:
                row = to_fresh_row(
                    item,
                    site,
                    created_at=now,
                    expires_at=expires_at,
                    fallback_make=fallback_make,
                )
                if row is None:
                    result.failed += 1
                    self.logger.warning("fresh_record_without_lot_id", site=site)
                    continue
                try:
                    cursor = self._conn.execute(self._insert, [row[c] for c in FRESH_COLUMNS])
                except sqlite3.Error as exc:
                    result.failed += 1
                    self.logger.error("fresh_write_failed", record_id=row["id"], error=str(exc))
                    continue
                if cursor.rowcount == 1:
                    result.inserted += 1
                    result.inserted_ids.append(row["id"])
                else:
                    result.duplicates += 1
            try:
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(f"Could not commit fresh records: {exc}") from exc
        return result

    def expired(self, now: datetime) -> list[sqlite3.Row]:
        with self.lock:
            return self._conn.execute(
                f"SELECT * FROM {self.table} WHERE expires_at <= ? ORDER BY expires_at",
                (format_timestamp(now),),
            ).fetchall()

    def delete_ids(self, ids: Iterable[str]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        deleted = 0
        with self.lock:
            # SQLite 的变量个数上限，按批删除
            for start in range(0, len(id_list), 500):
                batch = id_list[start : start + 500]
                placeholders = ", ".join("?" for _ in batch)
                cursor = self._conn.execute(
                    f"DELETE FROM {self.table} WHERE id IN ({placeholders})", batch
                )
                deleted += cursor.rowcount
            self._conn.commit()
        return deleted


class PermanentStore(_TierStore):
    """Canonical long-lived tier."""

    table = "sales_history"

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        super().__init__(manager, db_path)
        self._insert = _insert_sql(self.table, SALE_COLUMNS)

    def insert_if_absent(self, row: Mapping[str, Any], *, commit: bool = True) -> bool:
        with self.lock:
            cursor = self._conn.execute(self._insert, [row[c] for c in SALE_COLUMNS])
            if commit:
                self._conn.commit()
        return cursor.rowcount == 1

    def commit(self) -> None:
        with self.lock:
            self._conn.commit()

    def top_combinations(self, limit: int) -> list[tuple[str, str, int, int]]:
        """Most populated (make, model, site) triples, used to seed the job queue."""

        sql = (
            f"SELECT make, model, site, COUNT(*) AS record_count FROM {self.table} "
            "WHERE make IS NOT NULL AND model IS NOT NULL AND trim(model) != '' "
            "AND model != 'Unknown' GROUP BY make, model, site "
            "ORDER BY record_count DESC LIMIT ?"
        )
        with self.lock:
            rows = self._conn.execute(sql, (limit,)).fetchall()
        return [(row["make"], row["model"], int(row["site"]), int(row["record_count"])) for row in rows]


__all__ = [
    "FreshStore",
    "PermanentStore",
    "WriteResult",
    "format_timestamp",
    "natural_id",
    "to_fresh_row",
    "to_permanent_row",
    "utc_now",
]
