#!/usr/bin/env python3

import logging
from typing import Iterable, Optional

from ..models import ChangeSet, ReconcileResult
from ..sinks import NullResultSink, ResultSink

logger = logging.getLogger(__name__)


class Reconciler:
    """Brings the cached peer set of a resource in line with a fresh scan.

    ``added = fresh - cached`` and ``removed = cached - fresh - inconclusive``;
    peers whose probe ran out of retries are never removed on their account.
    Nothing is saved or emitted when the sets agree.
    """

    def __init__(self, cache, sink: Optional[ResultSink] = None):
        self.cache = cache
        self.sink = sink or NullResultSink()

    def reconcile(self, resource: str, cached: Iterable[str], fresh: Iterable[str],
                  inconclusive: Iterable[str] = ()) -> ReconcileResult:
        cached = frozenset(cached)
        fresh = frozenset(fresh)
        inconclusive = frozenset(inconclusive)

        added = fresh - cached
        removed = cached - fresh - inconclusive
        result = ReconcileResult(resource=resource, added=added, removed=removed)

        if not result.changed:
            logger.debug(f"Associations for {resource} unchanged ({len(cached)} peers)")
            return result

        for peer in added:
            self.cache.add(peer, resource)
        for peer in removed:
            self.cache.remove(peer, resource)
        self.cache.save()

        logger.info(f"Reconciled {resource}: {len(added)} added, {len(removed)} removed"
                    + (f", {len(inconclusive & cached)} kept as inconclusive" if inconclusive & cached else ""))
        self.sink.change(resource, ChangeSet(added=added, removed=removed))
        return result
