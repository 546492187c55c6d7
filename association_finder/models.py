#!/usr/bin/env python3

"""Value types shared by the prober, scanner, cache and finder."""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Set


class ProbeStatus(enum.Enum):
    """Outcome of one logical probe for a (peer, resource) pair."""

    PRESENT = "present"
    ABSENT = "absent"
    TRANSIENT_FAILURE_EXHAUSTED = "transient_failure_exhausted"


@dataclass(frozen=True)
class ProbeResult:
    peer: str
    resource: str
    status: ProbeStatus
    attempts: int = 1
    elapsed: float = 0.0

    @property
    def is_present(self) -> bool:
        return self.status is ProbeStatus.PRESENT

    @property
    def is_exhausted(self) -> bool:
        return self.status is ProbeStatus.TRANSIENT_FAILURE_EXHAUSTED


@dataclass
class ScanState:
    """Mutable progress of one scan, owned by a single ScanSession."""

    resource: str
    peer_list: List[str]
    cursor: int = 0
    collected: List[str] = field(default_factory=list)
    exhausted: List[str] = field(default_factory=list)
    paused: bool = False
    running: bool = False
    started_at: int = 0  # epoch ms
    elapsed: float = 0.0  # seconds spent running, pauses excluded
    concurrency: Optional[int] = None
    inter_batch_delay: Optional[float] = None
    refresh: bool = False  # reconcile into the cache once complete

    @property
    def total(self) -> int:
        return len(self.peer_list)

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.peer_list)

    @property
    def resumable(self) -> bool:
        return self.paused and self.cursor < len(self.peer_list)

    def to_record(self) -> dict:
        """Serializable checkpoint shape."""
        return {
            'resource': self.resource,
            'peerList': list(self.peer_list),
            'cursor': self.cursor,
            'collected': list(self.collected),
            'exhausted': list(self.exhausted),
            'elapsed': self.elapsed,
            'startedAt': self.started_at,
            'concurrency': self.concurrency,
            'interBatchDelay': self.inter_batch_delay,
            'refresh': self.refresh,
        }

    @classmethod
    def from_record(cls, record: dict) -> 'ScanState':
        peer_list = [str(p) for p in record['peerList']]
        cursor = int(record['cursor'])
        if cursor < 0 or cursor > len(peer_list):
            raise ValueError(f"Checkpoint cursor {cursor} outside [0, {len(peer_list)}]")
        # Older checkpoints carry no pacing; the scanner's settings apply then
        concurrency = record.get('concurrency')
        delay = record.get('interBatchDelay')
        return cls(
            resource=str(record['resource']),
            peer_list=peer_list,
            cursor=cursor,
            collected=[str(p) for p in record.get('collected', [])],
            exhausted=[str(p) for p in record.get('exhausted', [])],
            paused=True,
            running=False,
            started_at=int(record.get('startedAt', 0)),
            elapsed=float(record.get('elapsed', 0.0)),
            concurrency=int(concurrency) if concurrency is not None else None,
            inter_batch_delay=float(delay) if delay is not None else None,
            refresh=bool(record.get('refresh', False)),
        )


@dataclass(frozen=True)
class ProgressEvent:
    resource: str
    processed: int
    total: int
    found: int
    eta_seconds: float


@dataclass(frozen=True)
class ScanReport:
    """What a scan run produced so far; valid even when incomplete."""

    resource: str
    present: List[str]
    exhausted: List[str]
    processed: int
    total: int
    elapsed: float

    @property
    def complete(self) -> bool:
        return self.processed >= self.total


@dataclass(frozen=True)
class ChangeSet:
    added: FrozenSet[str]
    removed: FrozenSet[str]


@dataclass(frozen=True)
class ReconcileResult:
    resource: str
    added: FrozenSet[str]
    removed: FrozenSet[str]

    @property
    def changed(self) -> bool:
        return len(self.added) + len(self.removed) > 0


class QueryState(enum.Enum):
    NO_CACHE = "no_cache"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    SCANNING = "scanning"
    RECONCILING = "reconciling"
    DONE = "done"


@dataclass
class QueryResult:
    """Answer to "which peers hold resource R".

    ``source`` is the state the query resolved through (NO_CACHE, CACHE_HIT
    or CACHE_MISS); ``refresh`` is the background task started on a cache hit.
    """

    resource: str
    peers: Set[str]
    source: QueryState
    state: QueryState = QueryState.DONE
    report: Optional[ScanReport] = None
    refresh: Optional[asyncio.Task] = None
