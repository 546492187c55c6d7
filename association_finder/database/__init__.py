"""Snapshot stores: DuckDB on disk, dict in memory."""

from .db_duckdb import DuckDBSnapshotStore, close_database, init_database
from .memory_store import MemorySnapshotStore

__all__ = ['DuckDBSnapshotStore', 'MemorySnapshotStore', 'close_database', 'init_database']
