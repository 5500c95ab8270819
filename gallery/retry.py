"""Retry policy applied by the gallery around backend fetches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import GalleryError, HostUnreachable, NoConnectivity, ServerError, Timeout

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, ServerError):
        return error.retryable
    return isinstance(error, (NoConnectivity, HostUnreachable, Timeout))


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Only transient failures are retried: connectivity loss, unreachable host,
    timeouts, 5xx and 429 responses. ``max_attempts`` counts the first try.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except GalleryError as exc:
                if attempt >= max(1, self.max_attempts) or not is_retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                logging.info(
                    "GALLERY retrying after %s attempt=%s delay=%.2fs",
                    type(exc).__name__,
                    attempt,
                    delay,
                )
                await sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy(max_attempts=1)
