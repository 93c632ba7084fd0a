"""Sweep expired fresh rows into the permanent tier."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime

import structlog

from ..engine.errors import PersistenceError
from ..engine.store import FreshStore, PermanentStore, to_permanent_row, utc_now


@dataclass(slots=True)
class MigrationReport:
    expired: int = 0
    migrated: int = 0
    duplicates: int = 0
    skipped: int = 0
    deleted: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class Migrator:
    """Insert-if-absent into permanent, then delete the same expired set from fresh.

    A crash between the two steps leaves rows in both tiers; the next sweep
    re-inserts them as no-ops and deletes them, so re-running is always safe.
    Expired rows without a usable lot id are dropped with the rest of the set.
    """

    def __init__(
        self,
        fresh: FreshStore,
        permanent: PermanentStore,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fresh = fresh
        self.permanent = permanent
        self.logger = logger or structlog.get_logger("auction_ingest.migration")

    def migrate_expired(self, now: datetime | None = None) -> MigrationReport:
        now = now or utc_now()
        report = MigrationReport()
        # 两个表在同一个库里，共用同一把锁
        with self.fresh.lock:
            rows = self.fresh.expired(now)
            report.expired = len(rows)
            if not rows:
                self.logger.info("migration_nothing_expired")
                return report
            try:
                for row in rows:
                    mapped = to_permanent_row(row)
                    if mapped is None:
                        report.skipped += 1
                        self.logger.warning(
                            "migration_row_skipped", record_id=row["id"], reason="invalid_lot_id"
                        )
                        continue
                    if self.permanent.insert_if_absent(mapped, commit=False):
                        report.migrated += 1
                    else:
                        report.duplicates += 1
                self.permanent.commit()
            except sqlite3.Error as exc:
                self.permanent.connection.rollback()
                raise PersistenceError(f"Migration insert failed: {exc}") from exc
            report.deleted = self.fresh.delete_ids(row["id"] for row in rows)
        self.logger.info("migration_completed", **report.as_dict())
        return report


__all__ = ["MigrationReport", "Migrator"]
