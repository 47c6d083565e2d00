"""Durable storage for budgets, policies and the approval queue."""

from plyra_governor.storage.base import GovernanceStore
from plyra_governor.storage.sqlite_store import SQLiteStore, default_db_path

__all__ = ["GovernanceStore", "SQLiteStore", "default_db_path"]
