"""Small helpers shared across the package."""

from .scan_stats import ScanStats
from .time_format import estimate_remaining, format_duration

__all__ = ['ScanStats', 'estimate_remaining', 'format_duration']
