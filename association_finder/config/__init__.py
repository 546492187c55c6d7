"""Configuration loading and logging setup."""

from .config import (
    DEFAULT_CONFIG,
    CacheSettings,
    FinderSettings,
    ProbeSettings,
    ScanSettings,
    load_config,
)
from .logging import configure_logging

__all__ = [
    'DEFAULT_CONFIG',
    'CacheSettings',
    'FinderSettings',
    'ProbeSettings',
    'ScanSettings',
    'configure_logging',
    'load_config',
]
