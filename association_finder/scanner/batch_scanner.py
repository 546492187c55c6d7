#!/usr/bin/env python3

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config.config import ScanSettings
from ..exceptions import StorageError
from ..models import ProbeResult, ProbeStatus, ProgressEvent, ScanReport, ScanState
from ..sinks import NullResultSink, ResultSink
from ..utils.scan_stats import ScanStats
from ..utils.time_format import estimate_remaining, format_duration

logger = logging.getLogger(__name__)

CHECKPOINT_KEY_PREFIX = 'scan_progress:'


class ScanSession:
    """One scan of a peer list for a single resource.

    Created by BatchScanner and handed to the caller, who may pause it at the
    next chunk boundary and resume it later without re-probing finished
    chunks.
    """

    def __init__(self, scanner: 'BatchScanner', state: ScanState, concurrency: int,
                 inter_batch_delay: float, sink: ResultSink):
        self.scanner = scanner
        self.state = state
        self.concurrency = concurrency
        self.inter_batch_delay = inter_batch_delay
        self.sink = sink
        state.concurrency = concurrency
        state.inter_batch_delay = inter_batch_delay
        self.stats = ScanStats(state.resource)
        self.superseded = False
        self._collected = set(state.collected)
        self._exhausted = set(state.exhausted)

    @property
    def resource(self) -> str:
        return self.state.resource

    @property
    def complete(self) -> bool:
        return self.state.is_complete

    @property
    def refresh(self) -> bool:
        return self.state.refresh

    def pause(self) -> bool:
        """Request a pause; honored once the chunk in flight settles."""
        if self.state.running and not self.state.paused:
            self.state.paused = True
            logger.info(f"Pausing scan for {self.resource}...")
            return True
        return False

    async def run(self) -> ScanReport:
        return await self.scanner.run_session(self)

    async def resume(self) -> Optional[ScanReport]:
        """Continue a paused scan from its cursor; no-op otherwise."""
        if self.superseded or not self.state.resumable or self.state.running:
            return None
        logger.info(f"Resuming scan for {self.resource} at {self.state.cursor}/{self.state.total}")
        return await self.scanner.run_session(self)

    def record(self, result: ProbeResult) -> bool:
        """Accumulate a probe result; True if it is a newly found peer."""
        self.stats.update(result)
        if result.is_present and result.peer not in self._collected:
            self._collected.add(result.peer)
            self.state.collected.append(result.peer)
            return True
        if result.is_exhausted and result.peer not in self._exhausted:
            self._exhausted.add(result.peer)
            self.state.exhausted.append(result.peer)
        return False

    def report(self) -> ScanReport:
        return ScanReport(
            resource=self.resource,
            present=list(self.state.collected),
            exhausted=list(self.state.exhausted),
            processed=self.state.cursor,
            total=self.state.total,
            elapsed=self.state.elapsed
        )

    def status(self) -> Dict[str, Any]:
        total = self.state.total
        return {
            'resource': self.resource,
            'running': self.state.running,
            'paused': self.state.paused,
            'cursor': self.state.cursor,
            'total': total,
            'found': len(self.state.collected),
            'progress': round(self.state.cursor / total * 100, 1) if total else 0.0,
        }


class BatchScanner:
    """Drives peers through a Prober in sequential chunks of concurrent probes.

    Chunks never overlap: the cursor only moves once every probe of the chunk,
    including those waiting out a rate limit, has settled.
    """

    def __init__(self, prober, settings: Optional[ScanSettings] = None, sink: Optional[ResultSink] = None,
                 checkpoint_store=None, clock: Optional[Callable[[], float]] = None,
                 sleep: Optional[Callable[[float], Any]] = None,
                 wall_clock: Optional[Callable[[], float]] = None):
        self.prober = prober
        self.settings = settings or ScanSettings()
        self.sink = sink or NullResultSink()
        self.checkpoint_store = checkpoint_store
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._wall_clock = wall_clock or time.time
        self._sessions: Dict[str, ScanSession] = {}

    def session(self, resource: str) -> Optional[ScanSession]:
        return self._sessions.get(resource)

    def create_session(self, peers: Sequence[str], resource: str, concurrency: Optional[int] = None,
                       inter_batch_delay: Optional[float] = None,
                       sink: Optional[ResultSink] = None, refresh: bool = False) -> ScanSession:
        """Start a fresh session, discarding any previous one for ``resource``."""
        concurrency = self.settings.concurrency if concurrency is None else concurrency
        inter_batch_delay = self.settings.inter_batch_delay_seconds if inter_batch_delay is None else inter_batch_delay
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if inter_batch_delay < 0:
            raise ValueError("inter_batch_delay must not be negative")

        self.discard(resource)
        state = ScanState(
            resource=resource,
            peer_list=list(dict.fromkeys(peers)),
            started_at=int(self._wall_clock() * 1000),
            refresh=refresh
        )
        session = ScanSession(self, state, concurrency, inter_batch_delay, sink or self.sink)
        self._sessions[resource] = session
        return session

    async def scan(self, peers: Sequence[str], resource: str, concurrency: Optional[int] = None,
                   inter_batch_delay: Optional[float] = None,
                   sink: Optional[ResultSink] = None, refresh: bool = False) -> ScanReport:
        session = self.create_session(peers, resource, concurrency, inter_batch_delay, sink, refresh)
        logger.info(f"Scanning {session.state.total} peers for {resource} "
                    f"(concurrency={session.concurrency}, delay={session.inter_batch_delay}s)")
        return await session.run()

    def discard(self, resource: str):
        """Drop the session for ``resource``; a running one stops at its next boundary."""
        previous = self._sessions.pop(resource, None)
        if previous is not None:
            previous.superseded = True
            previous.pause()
            logger.info(f"Discarded previous scan for {resource} "
                        f"at {previous.state.cursor}/{previous.state.total}")
        self._clear_checkpoint(resource)

    def restore(self, resource: str, peers: Optional[Sequence[str]] = None,
                sink: Optional[ResultSink] = None) -> Optional[ScanSession]:
        """Rebuild a paused session from the stored checkpoint, if any.

        When ``peers`` is given, a checkpoint taken over a peer list of a
        different length is ignored.
        """
        record = self._read_checkpoint(resource)
        if not record:
            return None

        try:
            state = ScanState.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable checkpoint for {resource}: {e}")
            self._clear_checkpoint(resource)
            return None

        if peers is not None and len(peers) != state.total:
            logger.info(f"Checkpoint for {resource} covers {state.total} peers, "
                        f"current list has {len(peers)}; not restoring")
            return None
        if state.is_complete:
            self._clear_checkpoint(resource)
            return None

        concurrency = state.concurrency or self.settings.concurrency
        inter_batch_delay = state.inter_batch_delay
        if inter_batch_delay is None:
            inter_batch_delay = self.settings.inter_batch_delay_seconds
        session = ScanSession(self, state, concurrency, inter_batch_delay, sink or self.sink)
        self._sessions[resource] = session
        logger.info(f"Restored scan for {resource}: {state.cursor}/{state.total} processed, "
                    f"{len(state.collected)} found")
        return session

    async def _probe_peer(self, peer: str, resource: str, stats: ScanStats) -> ProbeResult:
        try:
            return await self.prober.probe(peer, resource)
        except Exception as e:
            logger.error(f"Probe for peer {peer} raised unexpectedly: {e}", exc_info=True)
            stats.add_error(f"peer {peer}: {e}")
            return ProbeResult(peer=peer, resource=resource, status=ProbeStatus.ABSENT)

    async def run_session(self, session: ScanSession) -> ScanReport:
        state = session.state
        if state.running:
            raise RuntimeError(f"Scan for {state.resource} is already running")

        state.running = True
        state.paused = False
        mark = self._clock()
        chunks_done = 0
        try:
            while state.cursor < state.total:
                if state.paused:
                    now = self._clock()
                    state.elapsed += now - mark
                    mark = now
                    logger.info(f"Scan for {state.resource} paused at {state.cursor}/{state.total}")
                    self._save_checkpoint(session)
                    report = session.report()
                    self._notify(session.sink.paused, report)
                    return report

                chunk = state.peer_list[state.cursor:state.cursor + session.concurrency]
                results = await asyncio.gather(
                    *(self._probe_peer(peer, state.resource, session.stats) for peer in chunk)
                )

                newly_found: List[str] = [r.peer for r in results if session.record(r)]
                state.cursor += len(chunk)
                chunks_done += 1

                now = self._clock()
                state.elapsed += now - mark
                mark = now

                if newly_found:
                    self._notify(session.sink.found, state.resource, newly_found)
                self._notify(session.sink.progress, ProgressEvent(
                    resource=state.resource,
                    processed=state.cursor,
                    total=state.total,
                    found=len(state.collected),
                    eta_seconds=estimate_remaining(state.elapsed, state.cursor, state.total)
                ))

                if state.cursor >= state.total:
                    break

                if self.settings.checkpoint_every and chunks_done % self.settings.checkpoint_every == 0:
                    self._save_checkpoint(session)

                if not state.paused and session.inter_batch_delay > 0:
                    await self._sleep(session.inter_batch_delay)
        finally:
            state.elapsed += self._clock() - mark
            state.running = False

        state.paused = False
        if not session.superseded:
            self._clear_checkpoint(state.resource)
            if self._sessions.get(state.resource) is session:
                del self._sessions[state.resource]

        report = session.report()
        logger.info(f"Scan for {state.resource} finished: {len(report.present)} of {report.total} "
                    f"peers present, {len(report.exhausted)} abandoned, {format_duration(report.elapsed)}")
        session.stats.log_summary()
        self._notify(session.sink.completed, report)
        return report

    def _notify(self, callback, *args):
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Result sink {getattr(callback, '__name__', 'callback')} failed: {e}", exc_info=True)

    def _read_checkpoint(self, resource: str) -> Optional[dict]:
        if self.checkpoint_store is None:
            return None
        try:
            return self.checkpoint_store.read_value(CHECKPOINT_KEY_PREFIX + resource)
        except StorageError as e:
            logger.warning(f"Could not read checkpoint for {resource}: {e}")
            return None

    def _save_checkpoint(self, session: ScanSession):
        if self.checkpoint_store is None or session.superseded:
            return
        try:
            self.checkpoint_store.write_value(CHECKPOINT_KEY_PREFIX + session.resource, session.state.to_record())
            logger.debug(f"Checkpoint saved for {session.resource} at {session.state.cursor}/{session.state.total}")
        except StorageError as e:
            logger.warning(f"Could not save checkpoint for {session.resource}: {e}")

    def _clear_checkpoint(self, resource: str):
        if self.checkpoint_store is None:
            return
        try:
            self.checkpoint_store.delete_value(CHECKPOINT_KEY_PREFIX + resource)
        except StorageError as e:
            logger.warning(f"Could not clear checkpoint for {resource}: {e}")
