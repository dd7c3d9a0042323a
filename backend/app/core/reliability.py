"""
Reliability utilities for calls to the fiscal authority.

Includes a Circuit Breaker and a bounded retry helper for idempotent calls.
"""

import time
import asyncio
import logging
from typing import Callable, Any, Tuple, Type

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur within 'reset_timeout',
    the circuit opens and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60, ignore: Tuple[Type[BaseException], ...] = ()):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.ignore = ignore  # raised through without counting as a failure
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
            if self.state == "HALF_OPEN" or self.failures:
                self.reset_state()
            return result
        except self.ignore:
            raise
        except Exception:
            self.record_failure()
            raise

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning("Circuit opened after %s consecutive failures", self.failures)
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


async def retry_async(
    func: Callable,
    *args,
    attempts: int = None,
    backoff: float = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs,
) -> Any:
    """
    Call an async function, retrying on the given exceptions with exponential backoff.

    Only for idempotent calls. Voucher submission must never go through here.
    """
    attempts = attempts or settings.afip_max_retries
    backoff = settings.afip_retry_backoff_seconds if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt == attempts:
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                "Attempt %s/%s of %s failed (%s); retrying in %.2fs",
                attempt, attempts, getattr(func, "__name__", "call"), e, delay,
            )
            await asyncio.sleep(delay)
