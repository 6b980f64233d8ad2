from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional, Sequence, Tuple

import httpx

from config.settings import FAST_SCHEDULE
from relay.errors import RetryableStatusError


logger = logging.getLogger("assistant_relay.retry")

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({502, 503, 504})

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule for one outbound HTTP call.

    ``delays_ms`` holds the wait before each retry, so a call is attempted at
    most ``len(delays_ms) + 1`` times. ``sleep`` takes seconds.
    """

    delays_ms: Tuple[int, ...] = FAST_SCHEDULE
    retryable_status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES
    sleep: Sleep = field(default=asyncio.sleep, compare=False)

    @classmethod
    def from_delays(cls, delays_ms: Sequence[int], *, sleep: Optional[Sleep] = None) -> "RetryPolicy":
        return cls(delays_ms=tuple(delays_ms), sleep=sleep or asyncio.sleep)

    @property
    def max_attempts(self) -> int:
        return len(self.delays_ms) + 1


async def retryable_call(
    operation: Callable[[], Awaitable[httpx.Response]],
    operation_name: str = "unknown operation",
    policy: Optional[RetryPolicy] = None,
) -> httpx.Response:
    """Run ``operation`` and retry it on 502/503/504 or transport errors.

    Returns the first response with a non-retryable status. When every
    attempt is used up the most recent error is raised: the transport error
    itself, or ``RetryableStatusError`` for a retryable status.
    The operation is re-invoked as is; it must be safe to repeat.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays_ms
    last_error: Optional[Exception] = None

    for attempt in range(len(delays) + 1):
        try:
            response = await operation()
        except httpx.HTTPError as exc:
            last_error = exc
            if attempt == len(delays):
                logger.debug(
                    "[Retry] %s: all %s attempts failed, last error: %s",
                    operation_name,
                    attempt + 1,
                    exc,
                )
                raise
            logger.debug(
                "[Retry %s/%s] %s: error %s, waiting %sms",
                attempt + 1,
                len(delays),
                operation_name,
                exc,
                delays[attempt],
            )
            await policy.sleep(delays[attempt] / 1000)
            continue

        if response.status_code in policy.retryable_status_codes:
            last_error = RetryableStatusError(response.status_code, operation_name)
            if attempt == len(delays):
                logger.debug(
                    "[Retry] %s: status %s after %s attempts, giving up",
                    operation_name,
                    response.status_code,
                    attempt + 1,
                )
                raise last_error
            logger.debug(
                "[Retry %s/%s] %s: status %s, waiting %sms",
                attempt + 1,
                len(delays),
                operation_name,
                response.status_code,
                delays[attempt],
            )
            await policy.sleep(delays[attempt] / 1000)
            continue

        if attempt == 0:
            logger.debug("[Success] %s: first attempt", operation_name)
        else:
            logger.debug("[Success] %s: after %s retries", operation_name, attempt)
        return response

    # Unreachable: the final attempt either returns or raises.
    assert last_error is not None
    raise last_error
