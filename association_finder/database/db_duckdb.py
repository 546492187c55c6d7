"""DuckDB persistence for association snapshots and scan checkpoints."""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import duckdb
import pyarrow as pa
import pytz

from ..exceptions import StorageError

logger = logging.getLogger(__name__)

# Global connection registry to track open connections
_connections = {}

# Default configuration
DEFAULT_CONFIG = {
    'threads': 2,
    'memory_limit': '1GB',
}

ASSOCIATION_SCHEMA = pa.schema([
    ('snapshot_key', pa.string()),
    ('peer', pa.string()),
    ('resource', pa.string()),
])


def get_db_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Get standardized database configuration.

    Args:
        config: User configuration dictionary

    Returns:
        Dict[str, Any]: Standardized database configuration
    """
    db_config = DEFAULT_CONFIG.copy()

    user_config = (config or {}).get('database', {}).get('connection', {}).get('options', {})
    if user_config:
        for key in ['threads', 'memory_limit']:
            if key in user_config:
                db_config[key] = user_config[key]

    logger.debug(f"Database config: {json.dumps(db_config, indent=2)}")
    return db_config


def get_db_path(db_url: str) -> str:
    return db_url.replace('duckdb:///', '')


def _close_existing_connection(db_path: str) -> None:
    """Close any existing connection to the database."""
    existing_conn = _connections.pop(db_path, None)
    if existing_conn is None:
        return
    try:
        existing_conn.close()
        logger.debug(f"Closed existing connection to {db_path}")
    except duckdb.Error as e:
        logger.warning(f"Error closing existing connection to {db_path}: {e}")


def init_database(db_url: str, config: Dict[str, Any]) -> duckdb.DuckDBPyConnection:
    """Open the database and create the snapshot tables if they don't exist."""
    db_path = get_db_path(db_url)
    logger.debug(f"Initializing database connection to {db_path}")
    logger.debug(f"Active connections: {list(_connections.keys())}")

    _close_existing_connection(db_path)

    if db_path != ':memory:':
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    db_config = get_db_config(config)
    try:
        conn = duckdb.connect(db_path, config=db_config)
    except duckdb.Error as e:
        raise StorageError(f"Could not open database {db_path}: {e}") from e
    _connections[db_path] = conn

    cursor = conn.cursor()
    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS snapshot_meta (
                snapshot_key VARCHAR PRIMARY KEY,
                format_version VARCHAR,
                created_at BIGINT,  -- epoch ms
                updated_at TIMESTAMP WITH TIME ZONE
            );
        """)
        # No key constraint: rows of a snapshot are deleted and re-inserted in one transaction
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS associations (
                snapshot_key VARCHAR,
                peer VARCHAR,
                resource VARCHAR
            );
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key VARCHAR PRIMARY KEY,
                value VARCHAR,
                updated_at TIMESTAMP WITH TIME ZONE
            );
        """)
    except duckdb.Error as e:
        raise StorageError(f"Could not create tables in {db_path}: {e}") from e
    finally:
        cursor.close()

    logger.debug(f"Successfully connected to {db_path}")
    return conn


def close_database(conn: duckdb.DuckDBPyConnection) -> None:
    """Checkpoint and close a connection opened by init_database."""
    if not conn:
        return

    db_path = None
    for path, existing_conn in _connections.items():
        if existing_conn is conn:
            db_path = path
            break

    try:
        conn.execute("CHECKPOINT")
    except duckdb.Error as e:
        if "Connection already closed" not in str(e):
            logger.warning(f"Error during checkpoint: {e}")

    try:
        conn.close()
    except duckdb.Error as e:
        logger.error(f"Error closing database connection: {e}")

    if db_path:
        _connections.pop(db_path, None)


class DuckDBSnapshotStore:
    """Snapshot records in normalized tables, checkpoints as JSON values."""

    def __init__(self, db_url: str, config: Optional[Dict[str, Any]] = None):
        self.db_url = db_url
        self.conn = init_database(db_url, config or {})

    def read_snapshot(self, key: str) -> Optional[dict]:
        cursor = self.conn.cursor()
        try:
            meta = cursor.execute(
                "SELECT format_version, created_at FROM snapshot_meta WHERE snapshot_key = ?", [key]
            ).fetchone()
            if meta is None:
                return None

            rows = cursor.execute(
                "SELECT peer, resource FROM associations WHERE snapshot_key = ? ORDER BY peer, resource", [key]
            ).fetchall()
        except duckdb.Error as e:
            raise StorageError(f"Failed to read snapshot {key}: {e}") from e
        finally:
            cursor.close()

        entries: Dict[str, list] = {}
        for peer, resource in rows:
            entries.setdefault(peer, []).append(resource)

        return {'formatVersion': meta[0], 'createdAt': meta[1], 'entries': entries}

    def write_snapshot(self, key: str, record: dict) -> None:
        """Replace the whole snapshot ``key`` in a single transaction."""
        rows = [
            {'snapshot_key': key, 'peer': peer, 'resource': resource}
            for peer, resources in record['entries'].items()
            for resource in sorted(set(resources))
        ]
        table = pa.Table.from_pylist(rows, schema=ASSOCIATION_SCHEMA)
        now = datetime.now(pytz.utc)

        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN TRANSACTION")
            try:
                cursor.execute("DELETE FROM associations WHERE snapshot_key = ?", [key])
                if rows:
                    cursor.register("snapshot_table", table)
                    cursor.execute("""
                        INSERT INTO associations
                        SELECT snapshot_key, peer, resource FROM snapshot_table
                    """)
                    cursor.unregister("snapshot_table")
                cursor.execute(
                    "INSERT OR REPLACE INTO snapshot_meta VALUES (?, ?, ?, ?)",
                    [key, record['formatVersion'], int(record['createdAt']), now]
                )
                cursor.execute("COMMIT")
            except Exception:
                cursor.execute("ROLLBACK")
                raise
            logger.debug(f"Wrote snapshot {key}: {len(record['entries'])} peers, {len(rows)} associations")
        except duckdb.Error as e:
            raise StorageError(f"Failed to write snapshot {key}: {e}") from e
        finally:
            cursor.close()

    def delete_snapshot(self, key: str) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN TRANSACTION")
            try:
                cursor.execute("DELETE FROM associations WHERE snapshot_key = ?", [key])
                cursor.execute("DELETE FROM snapshot_meta WHERE snapshot_key = ?", [key])
                cursor.execute("COMMIT")
            except Exception:
                cursor.execute("ROLLBACK")
                raise
        except duckdb.Error as e:
            raise StorageError(f"Failed to delete snapshot {key}: {e}") from e
        finally:
            cursor.close()

    def read_value(self, key: str) -> Optional[Any]:
        cursor = self.conn.cursor()
        try:
            row = cursor.execute("SELECT value FROM kv_store WHERE key = ?", [key]).fetchone()
        except duckdb.Error as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        finally:
            cursor.close()

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise StorageError(f"Stored value for {key} is not valid JSON: {e}") from e

    def write_value(self, key: str, value: Any) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "INSERT OR REPLACE INTO kv_store VALUES (?, ?, ?)",
                [key, json.dumps(value), datetime.now(pytz.utc)]
            )
        except duckdb.Error as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        finally:
            cursor.close()

    def delete_value(self, key: str) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM kv_store WHERE key = ?", [key])
        except duckdb.Error as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e
        finally:
            cursor.close()

    def close(self) -> None:
        close_database(self.conn)
        self.conn = None
