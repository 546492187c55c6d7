import os
import copy
import re
import yaml
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    'probe': {
        'address_template': 'https://steamcommunity.com/profiles/{peer}/recommended/{resource}/',
        'resource_marker': '/recommended/{resource}',
        'rate_limit_statuses': [429],
        'backoff_seconds': 10.0,
        'max_retry_window_seconds': 60.0,
        'request_timeout_seconds': 10.0,
        'max_connections': 50,
    },
    'scan': {
        'concurrency': 30,
        'inter_batch_delay_seconds': 0.05,
        'checkpoint_every': 10,
    },
    'cache': {
        'format_version': 'v2',
        'ttl_hours': 7 * 24,
        'snapshot_key': 'association_dict',
    },
    'peers': {
        'id_pattern': None,
    },
    'sink': {
        'log_every': 9,
    },
    'database': {
        'connection': {
            'url': 'duckdb:///data/associations.duckdb',
            'options': {
                'threads': 2,
                'memory_limit': '1GB',
            },
        },
    },
    'logging': {
        'level': 'INFO',
        'file': 'logs/association-finder.log',
        'max_size_mb': 10,
        'backup_count': 5,
        'console': True,
    },
}


def get_base_dir():
    """Get the base directory for the project checkout."""
    return os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def deep_update(target: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overrides`` into ``target`` and return it."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_update(target[key], value)
        else:
            target[key] = value
    return target


def load_config(config_path=None) -> Dict[str, Any]:
    """Load configuration from file, merged over the defaults."""
    base_dir = get_base_dir()
    config_locations = [
        os.path.join(base_dir, 'config', 'finder-config.yaml'),  # Project config directory
        os.path.join(base_dir, 'finder-config.yaml'),            # Current directory
        os.path.join(os.path.dirname(__file__), 'finder-config.yaml'),  # Package directory
    ]

    if not config_path:
        for loc in config_locations:
            if os.path.exists(loc):
                config_path = loc
                break

    if not config_path or not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found in any of the expected locations: {config_locations}")

    with open(config_path, 'r') as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    logger.debug(f"Loaded configuration from {config_path}")
    return deep_update(copy.deepcopy(DEFAULT_CONFIG), loaded)


def _section(config: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    merged = copy.deepcopy(DEFAULT_CONFIG.get(name, {}))
    if config and isinstance(config.get(name), dict):
        deep_update(merged, config[name])
    return merged


@dataclass(frozen=True)
class ProbeSettings:
    """How a single probe is addressed, classified and retried.

    ``address_template`` and ``resource_marker`` are formatted with ``peer``
    and ``resource``. Rate-limited probes are retried every
    ``backoff_seconds`` until ``max_retry_window_seconds`` have passed since
    the first attempt.
    """

    address_template: str = DEFAULT_CONFIG['probe']['address_template']
    resource_marker: str = DEFAULT_CONFIG['probe']['resource_marker']
    rate_limit_statuses: List[int] = field(default_factory=lambda: [429])
    backoff_seconds: float = 10.0
    max_retry_window_seconds: float = 60.0
    request_timeout_seconds: float = 10.0
    max_connections: int = 50

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'ProbeSettings':
        section = _section(config, 'probe')
        settings = cls(
            address_template=str(section['address_template']),
            resource_marker=str(section['resource_marker']),
            rate_limit_statuses=[int(s) for s in section['rate_limit_statuses']],
            backoff_seconds=float(section['backoff_seconds']),
            max_retry_window_seconds=float(section['max_retry_window_seconds']),
            request_timeout_seconds=float(section['request_timeout_seconds']),
            max_connections=int(section['max_connections']),
        )
        if settings.backoff_seconds < 0 or settings.max_retry_window_seconds < 0:
            raise ConfigError("probe backoff and retry window must not be negative")
        if '{resource}' not in settings.resource_marker:
            raise ConfigError("probe.resource_marker must contain '{resource}'")
        return settings


@dataclass(frozen=True)
class ScanSettings:
    """Batch pacing: ``concurrency`` probes per chunk, a pause between chunks,
    and a checkpoint every ``checkpoint_every`` chunks (0 disables)."""

    concurrency: int = 30
    inter_batch_delay_seconds: float = 0.05
    checkpoint_every: int = 10

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'ScanSettings':
        section = _section(config, 'scan')
        settings = cls(
            concurrency=int(section['concurrency']),
            inter_batch_delay_seconds=float(section['inter_batch_delay_seconds']),
            checkpoint_every=int(section['checkpoint_every']),
        )
        if settings.concurrency < 1:
            raise ConfigError(f"scan.concurrency must be at least 1, got {settings.concurrency}")
        if settings.inter_batch_delay_seconds < 0:
            raise ConfigError("scan.inter_batch_delay_seconds must not be negative")
        return settings


@dataclass(frozen=True)
class CacheSettings:
    """Snapshot format version, time-to-live and storage key."""

    format_version: str = 'v2'
    ttl_hours: float = 7 * 24
    snapshot_key: str = 'association_dict'

    @property
    def ttl_ms(self) -> int:
        return int(self.ttl_hours * 3600 * 1000)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'CacheSettings':
        section = _section(config, 'cache')
        settings = cls(
            format_version=str(section['format_version']),
            ttl_hours=float(section['ttl_hours']),
            snapshot_key=str(section['snapshot_key']),
        )
        if settings.ttl_hours <= 0:
            raise ConfigError("cache.ttl_hours must be positive")
        return settings


@dataclass(frozen=True)
class FinderSettings:
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    scan: ScanSettings = field(default_factory=ScanSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    log_every: int = 9
    peer_id_pattern: Optional[str] = None

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'FinderSettings':
        pattern = _section(config, 'peers').get('id_pattern')
        if pattern:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"peers.id_pattern is not a valid regular expression: {e}") from e
        return cls(
            probe=ProbeSettings.from_config(config),
            scan=ScanSettings.from_config(config),
            cache=CacheSettings.from_config(config),
            log_every=int(_section(config, 'sink')['log_every']),
            peer_id_pattern=pattern or None,
        )
