import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from admarket.errors import AppError, ErrorType, error_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float = 0.3, max_delay: float = 5.0, factor: float = 2, jitter: bool = True) -> float:
    """Delay before retry number ``attempt`` (0-based), capped at ``max_delay``."""
    delay = min(max_delay, base_delay * (factor**attempt))
    if jitter:
        delay += random.uniform(0, delay * 0.25)
    return delay


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, AppError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError, OSError))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 0.3,
    max_delay: float = 5.0,
    factor: float = 2,
    jitter: bool = True,
    retry_on: Callable[[BaseException], bool] = is_retryable,
    operation: str = "operation",
    correlation_id: Optional[str] = None,
) -> T:
    """Await ``fn`` and retry retryable failures with exponential backoff.

    The last exception propagates once ``max_retries`` retries are used up
    or the failure is not retryable.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_retries or not retry_on(exc):
                error_service.record(
                    exc.error_type if isinstance(exc, AppError) else ErrorType.external_api,
                    f"{operation} failed after {attempt + 1} attempt(s): {exc}",
                    correlation_id=correlation_id,
                    context={"operation": operation, "attempts": attempt + 1},
                )
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, factor, jitter)
            logger.warning("%s failed (attempt %d/%d): %s; retrying in %.2fs", operation, attempt + 1, max_retries + 1, exc, delay)
            attempt += 1
            await asyncio.sleep(delay)
