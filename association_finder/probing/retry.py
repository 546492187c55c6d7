#!/usr/bin/env python3

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryOutcome:
    value: Any
    attempts: int
    elapsed: float
    exhausted: bool


class RetryPolicy:
    """Constant-backoff retry for rate-limited attempts.

    Every rate-limited attempt is followed by a fixed ``backoff`` sleep until
    ``max_retry_window`` seconds have elapsed since the first attempt; then the
    last value is returned flagged as exhausted.
    """

    def __init__(self, backoff: float = 10.0, max_retry_window: float = 60.0,
                 clock: Optional[Callable[[], float]] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.backoff = backoff
        self.max_retry_window = max_retry_window
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, settings, clock=None, sleep=None) -> 'RetryPolicy':
        return cls(
            backoff=settings.backoff_seconds,
            max_retry_window=settings.max_retry_window_seconds,
            clock=clock,
            sleep=sleep
        )

    async def execute(self, attempt: Callable[[], Awaitable[Any]],
                      is_rate_limited: Callable[[Any], bool],
                      label: str = '') -> RetryOutcome:
        """Run ``attempt`` until it is not rate limited or the window closes."""
        first_attempt_at = self._clock()
        attempts = 0
        while True:
            attempts += 1
            value = await attempt()
            elapsed = self._clock() - first_attempt_at

            if not is_rate_limited(value):
                return RetryOutcome(value=value, attempts=attempts, elapsed=elapsed, exhausted=False)

            if elapsed >= self.max_retry_window:
                logger.warning(
                    f"{label or 'probe'}: still rate limited after {elapsed:.1f}s "
                    f"({attempts} attempts), giving up"
                )
                return RetryOutcome(value=value, attempts=attempts, elapsed=elapsed, exhausted=True)

            logger.debug(
                f"{label or 'probe'}: rate limited, retrying in {self.backoff:.1f}s "
                f"(elapsed {elapsed:.1f}s)"
            )
            await self._sleep(self.backoff)
