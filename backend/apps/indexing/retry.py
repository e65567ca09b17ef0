"""
Retry utilities with exponential backoff.

Transport-level only: the embedding client wraps its HTTP calls with these
helpers. The query orchestrator itself never retries.
"""
import asyncio
import random
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type

import httpx

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """Raised when all retries have been exhausted."""

    def __init__(self, message: str, attempts: int, last_exception: Exception):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


# Retry configuration for ingestion embeddings (many calls, tolerate slow model)
EMBEDDING_RETRY_CONFIG = {
    'max_retries': 3,        # Total 4 attempts (1 initial + 3 retries)
    'initial_backoff': 2.0,  # 2 seconds
    'backoff_multiplier': 2.0,
    'max_backoff': 30.0,
    'jitter_percent': 0.25,  # ±25%
}

# Retry configuration for the single query embedding (user is waiting)
QUERY_EMBEDDING_RETRY_CONFIG = {
    'max_retries': 1,        # Total 2 attempts
    'initial_backoff': 0.5,
    'backoff_multiplier': 2.0,
    'max_backoff': 2.0,
    'jitter_percent': 0.10,  # ±10%
}


def calculate_backoff(
    attempt: int,
    initial_backoff: float,
    backoff_multiplier: float,
    max_backoff: float,
    jitter_percent: float
) -> float:
    """
    Calculate backoff time with exponential increase and jitter.

    Args:
        attempt: Current retry attempt (0-indexed)
        initial_backoff: Base backoff in seconds
        backoff_multiplier: Exponential multiplier
        max_backoff: Maximum backoff cap
        jitter_percent: Random jitter range (0.25 = ±25%)

    Returns:
        Backoff time in seconds
    """
    backoff = min(initial_backoff * (backoff_multiplier ** attempt), max_backoff)
    jitter_range = backoff * jitter_percent
    backoff += random.uniform(-jitter_range, jitter_range)
    return max(0.0, backoff)


def is_retriable_error(exception: Exception) -> bool:
    """
    Decide whether retrying can help.

    Connection problems, timeouts and 5xx responses are retriable; 4xx
    responses and "model not found" style configuration errors are not.
    """
    if isinstance(exception, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code >= 500

    error_msg = str(exception).lower()

    non_retriable_patterns = ['400', '401', '403', '404', 'model not found', 'invalid', 'not supported']
    if any(pattern in error_msg for pattern in non_retriable_patterns):
        return False

    retriable_patterns = [
        'connect',
        'timeout',
        'timed out',
        'temporarily unavailable',
        '500',
        '502',
        '503',
        'overloaded',
        'empty embedding',
    ]
    if any(pattern in error_msg for pattern in retriable_patterns):
        return True

    # Default: retriable for unknown errors (optimistic)
    return True


async def aretry_with_backoff(
    func: Callable[[], Awaitable],
    config: dict,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Await func() with retry and exponential backoff.

    Args:
        func: Zero-argument coroutine factory
        config: Retry configuration dict
        exceptions: Tuple of exception types to catch
        on_retry: Optional callback(attempt, exception, backoff) called before each retry

    Returns:
        Result of func() if successful

    Raises:
        RetryExhausted: If all retries fail
        Exception: If a non-retriable exception is raised
    """
    max_retries = config['max_retries']
    attempt = 0
    last_exception = None

    while attempt <= max_retries:
        try:
            return await func()
        except exceptions as e:
            last_exception = e

            if not is_retriable_error(e):
                logger.warning(f"Non-retriable error on attempt {attempt + 1}: {e}")
                raise

            if attempt >= max_retries:
                break

            backoff = calculate_backoff(
                attempt,
                config['initial_backoff'],
                config['backoff_multiplier'],
                config['max_backoff'],
                config['jitter_percent']
            )

            logger.warning(
                f"Retriable error on attempt {attempt + 1}/{max_retries + 1}: {e}. "
                f"Retrying in {backoff:.2f}s"
            )

            if on_retry:
                on_retry(attempt, e, backoff)

            await asyncio.sleep(backoff)
            attempt += 1

    raise RetryExhausted(
        f"All {max_retries + 1} attempts failed. Last error: {last_exception}",
        attempts=attempt + 1,
        last_exception=last_exception
    )
