"""Infra layer utilities (storage)."""

from .storage import FRESH_COLUMNS, SALE_COLUMNS, SQLiteManager

__all__ = ["FRESH_COLUMNS", "SALE_COLUMNS", "SQLiteManager"]
