import copy
from typing import Any, Dict, Optional

from ..exceptions import StorageError


class MemorySnapshotStore:
    """Dict-backed store with the same interface as DuckDBSnapshotStore.

    Setting ``fail_reads`` or ``fail_writes`` makes the matching calls raise
    StorageError.
    """

    def __init__(self, snapshots: Optional[Dict[str, dict]] = None):
        self.snapshots: Dict[str, dict] = copy.deepcopy(snapshots) if snapshots else {}
        self.values: Dict[str, Any] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.snapshot_writes = 0

    def _check(self, failing: bool, action: str, key: str):
        if failing:
            raise StorageError(f"Simulated failure to {action} {key}")

    def read_snapshot(self, key: str) -> Optional[dict]:
        self._check(self.fail_reads, 'read', key)
        record = self.snapshots.get(key)
        return copy.deepcopy(record) if record is not None else None

    def write_snapshot(self, key: str, record: dict) -> None:
        self._check(self.fail_writes, 'write', key)
        self.snapshots[key] = copy.deepcopy(record)
        self.snapshot_writes += 1

    def delete_snapshot(self, key: str) -> None:
        self._check(self.fail_writes, 'delete', key)
        self.snapshots.pop(key, None)

    def read_value(self, key: str) -> Optional[Any]:
        self._check(self.fail_reads, 'read', key)
        return copy.deepcopy(self.values.get(key))

    def write_value(self, key: str, value: Any) -> None:
        self._check(self.fail_writes, 'write', key)
        self.values[key] = copy.deepcopy(value)

    def delete_value(self, key: str) -> None:
        self._check(self.fail_writes, 'delete', key)
        self.values.pop(key, None)

    def close(self) -> None:
        pass
