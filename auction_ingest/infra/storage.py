"""SQLite connection management and schema for the fresh and permanent tiers."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock, RLock
from typing import Dict

# Columns shared by both tiers, in insert order.
SALE_COLUMNS = (
    "id",
    "lot_id",
    "site",
    "base_site",
    "vin",
    "sale_status",
    "sale_date",
    "purchase_price",
    "buyer_state",
    "buyer_country",
    "buyer_type",
    "auction_location",
    "vehicle_mileage",
    "vehicle_damage",
    "vehicle_title",
    "vehicle_has_keys",
    "year",
    "make",
    "model",
    "series",
    "trim",
    "transmission",
    "drive",
    "fuel",
    "engine",
    "color",
    "images",
    "link",
    "created_at",
)

FRESH_COLUMNS = SALE_COLUMNS + ("link_img_hd", "link_img_small", "expires_at")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sales_history (
        id TEXT PRIMARY KEY,
        lot_id INTEGER NOT NULL,
        site INTEGER NOT NULL,
        base_site TEXT NOT NULL,
        vin TEXT NOT NULL,
        sale_status TEXT NOT NULL,
        sale_date TEXT,
        purchase_price TEXT,
        buyer_state TEXT,
        buyer_country TEXT,
        buyer_type TEXT,
        auction_location TEXT,
        vehicle_mileage INTEGER,
        vehicle_damage TEXT,
        vehicle_title TEXT,
        vehicle_has_keys INTEGER,
        year INTEGER,
        make TEXT,
        model TEXT,
        series TEXT,
        trim TEXT,
        transmission TEXT,
        drive TEXT,
        fuel TEXT,
        engine TEXT,
        color TEXT,
        images TEXT,
        link TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fresh_sales_history (
        id TEXT PRIMARY KEY,
        lot_id INTEGER,
        site INTEGER NOT NULL,
        base_site TEXT,
        vin TEXT,
        sale_status TEXT,
        sale_date TEXT,
        purchase_price TEXT,
        buyer_state TEXT,
        buyer_country TEXT,
        buyer_type TEXT,
        auction_location TEXT,
        vehicle_mileage INTEGER,
        vehicle_damage TEXT,
        vehicle_title TEXT,
        vehicle_has_keys INTEGER,
        year INTEGER,
        make TEXT,
        model TEXT,
        series TEXT,
        trim TEXT,
        transmission TEXT,
        drive TEXT,
        fuel TEXT,
        engine TEXT,
        color TEXT,
        images TEXT,
        link TEXT,
        link_img_hd TEXT,
        link_img_small TEXT,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sales_make_site_date ON sales_history(make COLLATE NOCASE, site, sale_date)",
    "CREATE INDEX IF NOT EXISTS idx_sales_created ON sales_history(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_fresh_make_site_date ON fresh_sales_history(make COLLATE NOCASE, site, sale_date)",
    "CREATE INDEX IF NOT EXISTS idx_fresh_expires ON fresh_sales_history(expires_at)",
)


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees.

    One connection is shared per database file; callers serialise access to it
    through :meth:`lock_for`.
    """

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._locks: Dict[Path, RLock] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._locks[path] = RLock()
                self._ensure_schema(conn)
            return self._connections[path]

    def lock_for(self, path: Path) -> RLock:
        self.connect(path)
        with self._lock:
            return self._locks[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()
            self._locks.clear()


__all__ = ["FRESH_COLUMNS", "SALE_COLUMNS", "SQLiteManager"]
