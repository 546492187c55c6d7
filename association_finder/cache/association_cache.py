#!/usr/bin/env python3

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Set

from ..config.config import CacheSettings
from ..exceptions import FormatMismatchError, StorageError
from .snapshot import CacheSnapshot

logger = logging.getLogger(__name__)


class AssociationCache:
    """Versioned, TTL'd mapping of peer -> resources backed by a SnapshotStore.

    A single in-process owner mutates the snapshot; ``save()`` writes the
    whole snapshot and is serialized by a lock. Mutations only mark the cache
    dirty, so a failed save is retried by the next one.
    """

    def __init__(self, store, settings: Optional[CacheSettings] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.settings = settings or CacheSettings()
        self._clock = clock or time.time
        self._snapshot: Optional[CacheSnapshot] = None
        self._dirty = False
        self._loaded = False
        self._save_lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def snapshot(self) -> Optional[CacheSnapshot]:
        return self._snapshot

    def load(self) -> bool:
        """Read the persisted snapshot; returns whether a usable cache exists."""
        self._loaded = True
        self._snapshot = None
        self._dirty = False
        try:
            record = self.store.read_snapshot(self.settings.snapshot_key)
        except StorageError as e:
            logger.warning(f"Could not read association cache, starting without one: {e}")
            return False

        if record is None:
            logger.info("No association cache found")
            return False

        try:
            self._snapshot = CacheSnapshot.from_record(record, self.settings.format_version)
        except FormatMismatchError as e:
            logger.info(f"Discarding incompatible association cache: {e}")
            return False

        if self.is_expired():
            logger.info(f"Association cache expired ({self._age_hours():.1f}h old)")
            return False

        stats = self.stats()
        logger.info(f"Loaded association cache: {stats['peers']} peers, "
                    f"{stats['associations']} associations, {stats['age_hours']:.1f}h old")
        return True

    def save(self) -> bool:
        """Persist the snapshot if it changed since the last successful save."""
        with self._save_lock:
            if self._snapshot is None or not self._dirty:
                return True
            record = self._snapshot.to_record()
            try:
                self.store.write_snapshot(self.settings.snapshot_key, record)
            except StorageError as e:
                logger.error(f"Failed to save association cache, will retry on next save: {e}")
                return False
            self._dirty = False
            logger.debug(f"Saved association cache with {len(record['entries'])} peers")
            return True

    def is_expired(self) -> bool:
        if self._snapshot is None:
            return True
        return self._snapshot.created_at + self.settings.ttl_ms < self._now_ms()

    def is_available(self) -> bool:
        return self._snapshot is not None and not self.is_expired()

    def lookup(self, resource: str) -> Set[str]:
        """Peers associated with ``resource``; empty when there is no valid cache."""
        if not self.is_available():
            return set()
        return self.baseline(resource)

    def baseline(self, resource: str) -> Set[str]:
        """Like lookup() but ignores expiry; used as the reconciliation base."""
        if self._snapshot is None:
            return set()
        return {peer for peer, resources in self._snapshot.entries.items() if resource in resources}

    def add(self, peer: str, resource: str) -> bool:
        if self._snapshot is None:
            self.reset()
        resources = self._snapshot.entries.setdefault(peer, set())
        if resource in resources:
            return False
        resources.add(resource)
        self._dirty = True
        return True

    def remove(self, peer: str, resource: str) -> bool:
        if self._snapshot is None:
            return False
        resources = self._snapshot.entries.get(peer)
        if not resources or resource not in resources:
            return False
        resources.discard(resource)
        if not resources:
            del self._snapshot.entries[peer]
        self._dirty = True
        return True

    def reset(self):
        """Replace the snapshot with a new empty one stamped now."""
        self._snapshot = CacheSnapshot(format_version=self.settings.format_version, created_at=self._now_ms())
        self._dirty = True
        self._loaded = True

    def clear(self) -> bool:
        """Reset and delete the persisted record."""
        self.reset()
        self._dirty = False
        try:
            self.store.delete_snapshot(self.settings.snapshot_key)
        except StorageError as e:
            logger.error(f"Failed to delete persisted association cache: {e}")
            self._dirty = True
            return False
        logger.info("Association cache cleared")
        return True

    def _age_hours(self) -> Optional[float]:
        if self._snapshot is None:
            return None
        return (self._now_ms() - self._snapshot.created_at) / 3_600_000

    def stats(self) -> Dict[str, Any]:
        entries = self._snapshot.entries if self._snapshot else {}
        return {
            'peers': sum(1 for resources in entries.values() if resources),
            'associations': sum(len(resources) for resources in entries.values()),
            'age_hours': self._age_hours(),
            'expired': self.is_expired(),
        }
