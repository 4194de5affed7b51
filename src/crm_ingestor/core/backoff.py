"""Bounded exponential retry for calls against rate-limited remote services."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_DELAY_SECONDS = 30.0
MAX_JITTER_SECONDS = 0.05


def with_backoff(
    operation: Callable[[], T],
    *,
    retries: int = 3,
    base_delay: float = 0.5,
    factor: float = 2.0,
    max_delay: float = MAX_DELAY_SECONDS,
    jitter: float = MAX_JITTER_SECONDS,
    context: str = "remote call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Invoke ``operation``, retrying on any exception.

    Between attempts sleeps ``min(base_delay * factor**(attempt-1), max_delay)``
    seconds plus a uniform jitter in ``[0, jitter]`` so that concurrent callers
    hitting the same quota drift apart. Any returned value, falsy or not, ends
    the loop.

    Args:
        operation: Zero-argument callable performing the remote call.
        retries: Number of retries after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        factor: Multiplier applied per further retry.
        max_delay: Upper bound on the exponential part of the delay.
        jitter: Upper bound on the random extra delay.
        context: Description for log messages (e.g. "list threads").
        sleep: Sleep function, replaceable in tests.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        Exception: The last error raised by ``operation``, unchanged, once
            retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as e:
            attempt += 1
            if attempt > retries:
                logger.error("%s failed after %d retries: %s", context, retries, e)
                raise
            delay = min(base_delay * factor ** (attempt - 1), max_delay)
            delay += random.uniform(0, jitter)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                context, attempt, retries, delay, e,
            )
            sleep(delay)


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry parameters shared by every remote client."""

    retries: int = 3
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = MAX_DELAY_SECONDS
    jitter: float = MAX_JITTER_SECONDS
    sleep: Callable[[float], None] = time.sleep

    def run(self, operation: Callable[[], T], context: str = "remote call") -> T:
        return with_backoff(
            operation,
            retries=self.retries,
            base_delay=self.base_delay,
            factor=self.factor,
            max_delay=self.max_delay,
            jitter=self.jitter,
            context=context,
            sleep=self.sleep,
        )
