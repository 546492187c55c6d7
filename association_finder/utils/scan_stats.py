#!/usr/bin/env python3

import time
import logging

from ..models import ProbeResult
from .time_format import format_duration

logger = logging.getLogger(__name__)

class ScanStats:
    """Class to track per-scan probe statistics"""

    def __init__(self, resource: str = ''):
        """Initialize scan stats"""
        self.resource = resource
        self.start_time = time.time()
        self.total_probes = 0
        self.present = 0
        self.absent = 0
        self.exhausted = 0
        self.retried = 0
        self.errors = []

    def update(self, result: ProbeResult):
        """Update statistics with a single probe result"""
        self.total_probes += 1
        if result.is_present:
            self.present += 1
        elif result.is_exhausted:
            self.exhausted += 1
        else:
            self.absent += 1
        if result.attempts > 1:
            self.retried += 1

    def add_error(self, error: str):
        """Add an error message to stats"""
        self.errors.append(error)

    def log_summary(self):
        """Log scan summary with statistics."""
        elapsed_time = time.time() - self.start_time
        probe_rate = self.total_probes / elapsed_time if elapsed_time > 0 else 0

        logger.info("=" * 80)
        logger.info(f"Scan Summary ({self.resource}):")
        logger.info(f"Time Elapsed:     {format_duration(elapsed_time)}")
        logger.info(f"Probe Rate:       {probe_rate:.1f} peers/second")
        logger.info(f"Peers Probed:     {self.total_probes:,}")
        logger.info(f"Present:          {self.present:,}")
        logger.info(f"Absent:           {self.absent:,}")
        logger.info(f"Retry Exhausted:  {self.exhausted:,}")
        logger.info(f"Rate Limited:     {self.retried:,}")
        logger.info(f"Total Errors:     {len(self.errors):,}")
        logger.info("=" * 80)

        if self.errors:
            logger.info("Errors encountered:")
            for error in self.errors:
                logger.error(error)
