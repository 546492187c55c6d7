"""Discovers which peers of a social graph hold an association with a resource."""

from .cache import AssociationCache, CacheSnapshot
from .config import FinderSettings, configure_logging, load_config
from .database import DuckDBSnapshotStore, MemorySnapshotStore
from .exceptions import (
    AssociationFinderError,
    ConfigError,
    FormatMismatchError,
    PeerListError,
    StorageError,
    TransportError,
)
from .finder import AssociationFinder, open_finder
from .models import (
    ChangeSet,
    ProbeResult,
    ProbeStatus,
    ProgressEvent,
    QueryResult,
    QueryState,
    ReconcileResult,
    ScanReport,
)
from .probing import AddressScheme, Prober, RetryPolicy
from .reconcile import Reconciler
from .scanner import BatchScanner, ScanSession
from .sinks import BufferedResultSink, LoggingResultSink, NullResultSink, ResultSink
from .transport import HttpTransport, TransportResponse

__version__ = '0.1.0'
