"""Bounded retries with exponential backoff for collaborator calls.

Every external call made by a component (storage, embeddings, vector
search, generation) goes through ``call_with_retries``. Transient failures
(network errors, rate limiting, 5xx responses) are retried up to the
configured number of attempts, sleeping ``backoff * 2**attempt`` plus a
random jitter between attempts. Timeouts and non-transient errors end the
call immediately. The outcome is returned as a ``Result`` rather than
raised.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from google.genai import errors as genai_errors
from redis import exceptions as redis_exceptions

from shared.logger import get_logger
from shared.result import Failure, Result, Success
from shared.settings import Settings

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    jitter_seconds: float = 0.25
    timeout_seconds: Optional[float] = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.retry_max_attempts),
            backoff_seconds=settings.retry_backoff_seconds,
            jitter_seconds=settings.retry_jitter_seconds,
            timeout_seconds=settings.call_timeout_seconds,
        )

    def delay(self, attempt: int) -> float:
        base = self.backoff_seconds * (2**attempt)
        return base + random.uniform(0, self.jitter_seconds)


SINGLE_ATTEMPT = RetryPolicy(max_attempts=1)


def is_transient(exc: BaseException) -> bool:
    """Return True for network/rate-limit class errors worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    if isinstance(exc, genai_errors.APIError):
        return exc.code in TRANSIENT_STATUS_CODES
    return isinstance(
        exc,
        (httpx.TransportError, redis_exceptions.ConnectionError, ConnectionError),
    )


async def call_with_retries(
    operation: str,
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> Result[T]:
    """Run ``fn`` under ``policy`` and wrap the outcome in a Result."""
    for attempt in range(policy.max_attempts):
        try:
            if policy.timeout_seconds:
                value = await asyncio.wait_for(fn(), timeout=policy.timeout_seconds)
            else:
                value = await fn()
            return Success(value)
        except asyncio.TimeoutError as exc:
            return Failure(f"timed out after {policy.timeout_seconds}s", exc)
        except Exception as exc:
            last_attempt = attempt + 1 >= policy.max_attempts
            if not is_transient(exc) or last_attempt:
                return Failure(f"{type(exc).__name__}: {exc}", exc)
            delay = policy.delay(attempt)
            logger.warning(
                "Transient failure on %s (attempt %d/%d), retrying in %.2fs: %s",
                operation,
                attempt + 1,
                policy.max_attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    return Failure(f"{operation} was not attempted")
