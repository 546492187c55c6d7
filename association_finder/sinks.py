#!/usr/bin/env python3

"""Consumers of scan progress, discoveries and cache changes.

All callbacks are invoked synchronously from the scanning task at chunk
boundaries, in order, by a single producer. Implementations must return
quickly.
"""

import logging
from typing import Callable, Iterable, List, Optional

from .models import ChangeSet, ProgressEvent, ScanReport
from .utils.time_format import format_duration

logger = logging.getLogger(__name__)


class ResultSink:
    """Observer interface; every hook is a no-op by default."""

    def progress(self, event: ProgressEvent) -> None:
        pass

    def found(self, resource: str, peers: List[str]) -> None:
        pass

    def completed(self, report: ScanReport) -> None:
        pass

    def paused(self, report: ScanReport) -> None:
        """The scan stopped at a chunk boundary before finishing."""
        pass

    def change(self, resource: str, changes: ChangeSet) -> None:
        pass


class NullResultSink(ResultSink):
    """Discards everything; used for silent background refreshes."""


class LoggingResultSink(ResultSink):
    """Logs progress every ``log_every`` peers and once more at the end."""

    def __init__(self, log_every: int = 9):
        self.log_every = max(1, log_every)
        self._last_logged = {}

    def progress(self, event: ProgressEvent) -> None:
        previous = self._last_logged.get(event.resource, 0)
        crossed = event.processed // self.log_every > previous // self.log_every
        if crossed or event.processed == event.total:
            logger.info(
                f"Progress [{event.resource}]: {event.processed}/{event.total}, "
                f"found: {event.found}, remaining: {format_duration(event.eta_seconds)}"
            )
        self._last_logged[event.resource] = event.processed

    def completed(self, report: ScanReport) -> None:
        self._last_logged.pop(report.resource, None)
        state = "complete" if report.complete else f"stopped at {report.processed}/{report.total}"
        logger.info(f"Scan for {report.resource} {state}: {len(report.present)} peer(s) found "
                    f"in {format_duration(report.elapsed)}")

    def paused(self, report: ScanReport) -> None:
        self._last_logged.pop(report.resource, None)
        logger.info(f"Scan for {report.resource} paused at {report.processed}/{report.total}, "
                    f"{len(report.present)} peer(s) found so far")

    def change(self, resource: str, changes: ChangeSet) -> None:
        logger.info(f"Associations for {resource} changed: "
                    f"+{len(changes.added)} / -{len(changes.removed)}")


class BufferedResultSink(ResultSink):
    """Groups discovered peers into batches of ``flush_every`` before delivery.

    Whatever is left below ``flush_every`` is flushed when the scan reports
    completion, or explicitly through ``flush()``. Other events are forwarded
    to ``downstream`` unchanged.
    """

    def __init__(self, deliver: Callable[[str, List[str]], None], flush_every: int = 10,
                 downstream: Optional[ResultSink] = None):
        if flush_every < 1:
            raise ValueError("flush_every must be at least 1")
        self.deliver = deliver
        self.flush_every = flush_every
        self.downstream = downstream or NullResultSink()
        self._buffers = {}

    def found(self, resource: str, peers: Iterable[str]) -> None:
        peers = list(peers)
        buffer = self._buffers.setdefault(resource, [])
        buffer.extend(peers)
        while len(buffer) >= self.flush_every:
            batch = buffer[:self.flush_every]
            del buffer[:self.flush_every]
            self.deliver(resource, batch)
        self.downstream.found(resource, peers)

    def flush(self, resource: str) -> None:
        buffer = self._buffers.pop(resource, [])
        if buffer:
            self.deliver(resource, buffer)

    def progress(self, event: ProgressEvent) -> None:
        self.downstream.progress(event)

    def completed(self, report: ScanReport) -> None:
        self.flush(report.resource)
        self.downstream.completed(report)

    def paused(self, report: ScanReport) -> None:
        self.downstream.paused(report)

    def change(self, resource: str, changes: ChangeSet) -> None:
        self.downstream.change(resource, changes)
