import logging
from unittest.mock import Mock

import pytest

from association_finder.models import ChangeSet, ProgressEvent, ScanReport
from association_finder.sinks import BufferedResultSink, LoggingResultSink, NullResultSink, ResultSink


def event(processed, total=20, found=0):
    return ProgressEvent(resource='730', processed=processed, total=total, found=found, eta_seconds=0.0)


def report(present):
    return ScanReport(resource='730', present=present, exhausted=[], processed=4, total=4, elapsed=1.0)


def test_logging_sink_logs_every_ninth_peer_and_at_end(caplog):
    caplog.set_level(logging.INFO, logger='association_finder.sinks')
    sink = LoggingResultSink(log_every=9)

    for processed in range(1, 21):
        sink.progress(event(processed))

    progress_lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith('Progress')]
    assert len(progress_lines) == 3
    assert '9/20' in progress_lines[0]
    assert '18/20' in progress_lines[1]
    assert '20/20' in progress_lines[2]


def test_logging_sink_handles_chunked_progress(caplog):
    """Chunks of 30 cross a multiple of 9 every time."""
    caplog.set_level(logging.INFO, logger='association_finder.sinks')
    sink = LoggingResultSink(log_every=9)

    for processed in (30, 60, 65):
        sink.progress(event(processed, total=65))

    assert len([r for r in caplog.records if r.getMessage().startswith('Progress')]) == 3


def test_logging_sink_reports_changes(caplog):
    caplog.set_level(logging.INFO, logger='association_finder.sinks')

    LoggingResultSink().change('730', ChangeSet(added=frozenset({'a', 'b'}), removed=frozenset({'c'})))

    assert '+2 / -1' in caplog.text


def test_logging_sink_forgets_paused_scan(caplog):
    caplog.set_level(logging.INFO, logger='association_finder.sinks')
    sink = LoggingResultSink(log_every=9)
    sink.progress(event(8))

    sink.paused(ScanReport(resource='730', present=['a'], exhausted=[], processed=8, total=20, elapsed=1.0))

    assert '730' not in sink._last_logged
    assert 'paused at 8/20' in caplog.text


def test_buffered_sink_flushes_batches_and_remainder():
    deliver = Mock()
    sink = BufferedResultSink(deliver, flush_every=3)

    sink.found('730', ['a', 'b'])
    deliver.assert_not_called()
    sink.found('730', ['c', 'd'])
    deliver.assert_called_once_with('730', ['a', 'b', 'c'])

    sink.completed(report(['a', 'b', 'c', 'd']))

    assert deliver.call_args_list[-1].args == ('730', ['d'])
    assert deliver.call_count == 2


def test_buffered_sink_forwards_to_downstream():
    downstream = Mock(spec=ResultSink)
    sink = BufferedResultSink(Mock(), flush_every=10, downstream=downstream)
    done = report([])
    changes = ChangeSet(added=frozenset(), removed=frozenset({'x'}))

    sink.found('730', iter(['a']))
    sink.progress(event(1))
    sink.completed(done)
    sink.paused(done)
    sink.change('730', changes)

    downstream.found.assert_called_once_with('730', ['a'])
    downstream.progress.assert_called_once_with(event(1))
    downstream.completed.assert_called_once_with(done)
    downstream.paused.assert_called_once_with(done)
    downstream.change.assert_called_once_with('730', changes)


def test_buffered_sink_keeps_resources_apart():
    deliver = Mock()
    sink = BufferedResultSink(deliver, flush_every=2)

    sink.found('730', ['a'])
    sink.found('570', ['b'])
    deliver.assert_not_called()

    sink.flush('570')
    deliver.assert_called_once_with('570', ['b'])


def test_buffered_sink_rejects_zero_batch():
    with pytest.raises(ValueError):
        BufferedResultSink(Mock(), flush_every=0)


def test_null_sink_accepts_everything():
    sink = NullResultSink()
    sink.progress(event(1))
    sink.found('730', ['a'])
    sink.completed(report([]))
    sink.paused(report([]))
    sink.change('730', ChangeSet(added=frozenset(), removed=frozenset()))
