#!/usr/bin/env python3

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import aiohttp

from .cache.association_cache import AssociationCache
from .config.config import FinderSettings
from .database.db_duckdb import DuckDBSnapshotStore
from .exceptions import PeerListError
from .models import QueryResult, QueryState, ReconcileResult, ScanReport
from .probing.address import AddressScheme
from .probing.prober import Prober
from .probing.retry import RetryPolicy
from .reconcile.reconciler import Reconciler
from .scanner.batch_scanner import BatchScanner, ScanSession
from .sinks import LoggingResultSink, NullResultSink, ResultSink
from .transport.http_transport import HttpTransport

logger = logging.getLogger(__name__)

PeerListProvider = Callable[[], Awaitable[Iterable[str]]]


def is_valid_peer_id(peer: Any) -> bool:
    return isinstance(peer, str) and bool(peer.strip())


def pattern_validator(pattern: str) -> Callable[[Any], bool]:
    """Peer validator accepting strings that fully match ``pattern``."""
    compiled = re.compile(pattern)

    def validate(peer: Any) -> bool:
        return is_valid_peer_id(peer) and compiled.fullmatch(peer) is not None

    return validate


class AssociationFinder:
    """Answers "which peers hold resource R", cache first.

    A cache hit returns immediately and refreshes the resource in the
    background, reconciling the cache only when the fresh scan completed. A
    miss, or a missing, expired or incompatible cache, runs the scan in the
    foreground and stores what it found.
    """

    def __init__(self, scanner: BatchScanner, cache: AssociationCache, reconciler: Reconciler,
                 peer_list_provider: PeerListProvider, sink: Optional[ResultSink] = None,
                 peer_validator: Optional[Callable[[Any], bool]] = None):
        self.scanner = scanner
        self.cache = cache
        self.reconciler = reconciler
        self.peer_list_provider = peer_list_provider
        self.sink = sink or NullResultSink()
        self.peer_validator = peer_validator or is_valid_peer_id
        self._background: Dict[str, asyncio.Task] = {}
        self._background_sessions: Dict[str, ScanSession] = {}
        self._refresh_states: Dict[str, QueryState] = {}

    def _ensure_loaded(self):
        if not self.cache.loaded:
            self.cache.load()

    async def _fetch_peers(self) -> List[str]:
        try:
            raw = await self.peer_list_provider()
        except PeerListError:
            raise
        except Exception as e:
            raise PeerListError(f"Could not obtain peer list: {e}") from e

        if raw is None:
            raise PeerListError("Peer list provider returned nothing")

        raw = list(raw)
        peers = list(dict.fromkeys(p for p in raw if self.peer_validator(p)))
        if len(peers) < len(raw):
            logger.debug(f"Dropped {len(raw) - len(peers)} invalid or duplicate peer ids")
        if not peers:
            raise PeerListError("Peer list contains no valid peers")
        return peers

    def _absorb(self, report: ScanReport):
        """Store present peers of a foreground scan; nothing is ever removed here."""
        for peer in report.present:
            self.cache.add(peer, report.resource)
        self.cache.save()

    async def _foreground_scan(self, peers: List[str], resource: str) -> ScanReport:
        report = await self.scanner.scan(peers, resource, sink=self.sink)
        self._absorb(report)
        return report

    async def query(self, resource: str) -> QueryResult:
        self._ensure_loaded()

        if not self.cache.is_available():
            peers = await self._fetch_peers()
            logger.info(f"No usable association cache, scanning {len(peers)} peers for {resource}")
            self.cache.reset()
            report = await self._foreground_scan(peers, resource)
            return self._scanned_result(resource, QueryState.NO_CACHE, report)

        cached = self.cache.lookup(resource)
        if cached:
            logger.info(f"Cache hit for {resource}: {len(cached)} peers, refreshing in background")
            return QueryResult(
                resource=resource,
                peers=cached,
                source=QueryState.CACHE_HIT,
                refresh=self._start_refresh(resource)
            )

        peers = await self._fetch_peers()
        logger.info(f"Cache miss for {resource}, scanning {len(peers)} peers")
        report = await self._foreground_scan(peers, resource)
        return self._scanned_result(resource, QueryState.CACHE_MISS, report)

    def _scanned_result(self, resource: str, source: QueryState, report: ScanReport) -> QueryResult:
        return QueryResult(
            resource=resource,
            peers=set(report.present),
            source=source,
            state=QueryState.DONE if report.complete else QueryState.SCANNING,
            report=report
        )

    def refresh_state(self, resource: str) -> Optional[QueryState]:
        """Where the latest refresh of ``resource`` stands.

        SCANNING while its scan runs or sits paused, RECONCILING while the
        result is applied, DONE afterwards; None if it was never refreshed.
        """
        return self._refresh_states.get(resource)

    def _start_refresh(self, resource: str) -> asyncio.Task:
        running = self._background.get(resource)
        if running is not None and not running.done():
            return running

        self._refresh_states[resource] = QueryState.SCANNING
        task = asyncio.create_task(self._background_refresh(resource))
        self._background[resource] = task
        task.add_done_callback(lambda t: self._refresh_done(resource, t))
        return task

    def _refresh_done(self, resource: str, task: asyncio.Task):
        if self._background.get(resource) is task:
            del self._background[resource]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background refresh for {resource} failed: {exc}", exc_info=exc)

    async def _background_refresh(self, resource: str) -> Optional[ReconcileResult]:
        try:
            peers = await self._fetch_peers()
        except PeerListError as e:
            logger.warning(f"Background refresh for {resource} skipped: {e}")
            self._refresh_states[resource] = QueryState.DONE
            return None

        session = self.scanner.create_session(peers, resource, sink=NullResultSink(), refresh=True)
        self._background_sessions[resource] = session
        report = await session.run()
        # Only cancelled runs stay registered; close() discards those
        self._background_sessions.pop(resource, None)

        if not report.complete:
            if session.superseded:
                logger.info(f"Background scan for {resource} was replaced by a newer scan")
            else:
                logger.info(f"Background scan for {resource} paused at {report.processed}/{report.total}, "
                            f"reconciling once resumed")
            return None
        return self._reconcile_report(report)

    def _reconcile_report(self, report: ScanReport) -> ReconcileResult:
        resource = report.resource
        self._refresh_states[resource] = QueryState.RECONCILING
        result = self.reconciler.reconcile(
            resource,
            self.cache.baseline(resource),
            report.present,
            inconclusive=report.exhausted
        )
        self._refresh_states[resource] = QueryState.DONE
        return result

    async def refresh(self, resource: str) -> Optional[ReconcileResult]:
        """Full foreground scan of ``resource`` reconciled into the cache.

        Returns None when the scan was paused before finishing; the cache is
        reconciled when ``resume()`` completes it.
        """
        self._ensure_loaded()
        peers = await self._fetch_peers()
        if not self.cache.is_available():
            self.cache.reset()

        self._refresh_states[resource] = QueryState.SCANNING
        report = await self.scanner.scan(peers, resource, sink=self.sink, refresh=True)
        if not report.complete:
            return None
        return self._reconcile_report(report)

    def pause(self, resource: str) -> bool:
        session = self.scanner.session(resource)
        return session.pause() if session else False

    async def resume(self, resource: str) -> Optional[ScanReport]:
        """Resume a paused scan, restoring it from its checkpoint if needed.

        A refresh scan is reconciled into the cache once it completes; any
        other scan has its present peers added.
        """
        self._ensure_loaded()
        session = self.scanner.session(resource)
        if session is None:
            peers = await self._fetch_peers()
            session = self.scanner.restore(resource, peers, sink=self.sink)
            if session is None:
                return None

        report = await session.resume()
        if report is None:
            return None
        if not session.refresh:
            self._absorb(report)
        elif report.complete:
            self._reconcile_report(report)
        return report

    def clear_cache(self) -> bool:
        return self.cache.clear()

    def stats(self) -> Dict[str, Any]:
        self._ensure_loaded()
        return self.cache.stats()

    async def wait_background(self):
        tasks = list(self._background.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self):
        """Cancel outstanding background refreshes and flush the cache.

        Scans cut short by the cancellation cannot be resumed, so their
        sessions and checkpoints are dropped.
        """
        cancelled = {r: t for r, t in self._background.items() if not t.done()}
        for task in cancelled.values():
            task.cancel()
        if cancelled:
            await asyncio.gather(*cancelled.values(), return_exceptions=True)
        self._background.clear()
        for resource in cancelled:
            self._refresh_states.pop(resource, None)

        for resource, session in self._background_sessions.items():
            if self.scanner.session(resource) is session:
                self.scanner.discard(resource)
        self._background_sessions.clear()

        if self.cache.loaded:
            self.cache.save()


@asynccontextmanager
async def open_finder(config: Optional[Dict[str, Any]], peer_list_provider: PeerListProvider,
                      sink: Optional[ResultSink] = None, session: Optional[aiohttp.ClientSession] = None,
                      store=None):
    """Build the whole finder stack from a configuration dictionary.

    ``session`` is an already-authenticated aiohttp session owned by the
    caller; ``store`` replaces the DuckDB store named in the configuration.
    """
    config = config or {}
    settings = FinderSettings.from_config(config)
    sink = sink or LoggingResultSink(settings.log_every)

    owns_store = store is None
    if owns_store:
        db_url = config.get('database', {}).get('connection', {}).get('url', 'duckdb:///data/associations.duckdb')
        store = DuckDBSnapshotStore(db_url, config)

    try:
        async with HttpTransport(
            session=session,
            max_connections=settings.probe.max_connections,
            timeout_seconds=settings.probe.request_timeout_seconds
        ) as transport:
            prober = Prober(
                transport,
                AddressScheme.from_settings(settings.probe),
                RetryPolicy.from_settings(settings.probe),
                rate_limit_statuses=settings.probe.rate_limit_statuses
            )
            scanner = BatchScanner(prober, settings.scan, sink=sink, checkpoint_store=store)
            cache = AssociationCache(store, settings.cache)
            finder = AssociationFinder(
                scanner,
                cache,
                Reconciler(cache, sink),
                peer_list_provider,
                sink=sink,
                peer_validator=pattern_validator(settings.peer_id_pattern) if settings.peer_id_pattern else None
            )
            try:
                yield finder
            finally:
                await finder.close()
    finally:
        if owns_store:
            store.close()
