"""Bounded retry for transport calls.

Only transient failures (HTTP 5xx, network errors) are retried. Each retry
waits the same flat back-off. Once attempts run out the wrapper hands back
a failed result carrying the last error's message instead of raising, so
the caller decides how to surface it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from shop_floor.api.errors import (
    RetryExhaustedError,
    ShopFloorError,
    is_transient,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 1000


@dataclass
class RetryResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ShopFloorError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_ms: int = DEFAULT_BACKOFF_MS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult[T]:
    """Call ``fn`` until it succeeds, fails permanently, or attempts run out.

    Parameters
    ----------
    fn:
        Zero-argument coroutine factory; called once per attempt.
    max_attempts:
        Total number of calls, so at most ``max_attempts - 1`` retries.
    backoff_ms:
        Flat wait between attempts.
    sleep:
        Awaitable sleep, replaceable in tests.
    """
    max_attempts = max(int(max_attempts), 1)
    last_error: ShopFloorError | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            value = await fn()
            return RetryResult(value=value, attempts=attempt)
        except ShopFloorError as e:
            if not is_transient(e):
                return RetryResult(error=e, attempts=attempt)
            last_error = e
            if attempt < max_attempts:
                logger.warning(
                    f"Transient failure (attempt {attempt}/{max_attempts}): "
                    f"{e.message}; retrying in {backoff_ms} ms"
                )
                await sleep(backoff_ms / 1000)

    logger.error(
        f"Giving up after {max_attempts} attempts: {last_error.message}"
    )
    return RetryResult(
        error=RetryExhaustedError(
            last_error.message, attempts=max_attempts, last_error=last_error,
        ),
        attempts=max_attempts,
    )


@dataclass
class RetryPolicy:
    """Retry settings handed to the store and workflow at construction."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_ms: int = DEFAULT_BACKOFF_MS
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def call(self, client, method: str, path: str,
                   body: Optional[dict] = None) -> Any:
        """Run ``client.call`` under this policy and unwrap the result."""
        result = await with_retry(
            lambda: client.call(method, path, body),
            max_attempts=self.max_attempts,
            backoff_ms=self.backoff_ms,
            sleep=self.sleep,
        )
        return result.unwrap()
