"""Retry with exponential backoff and wall-clock limits for external calls"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
import logging
import time
from typing import Callable, TypeVar

import requests

from app.services.exceptions import ExternalServiceError, ExternalTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: Exception) -> bool:
    """Timeouts, connection failures, rate limits and 5xx responses are worth retrying"""
    if isinstance(error, ExternalServiceError):
        return error.retryable
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    return False


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay after the given (1-based) failed attempt: base, 2*base, 4*base..."""
    return base_delay * (2 ** (attempt - 1))


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Callable[[Exception], bool] = is_transient,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """
    Run operation, retrying transient failures with exponential backoff.
    The last error is re-raised once attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt >= max_attempts or not retry_on(e):
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{description} attempt {attempt}/{max_attempts} failed: {e}. Retrying in {delay:.1f}s"
            )
            sleep(delay)


def call_with_timeout(operation: Callable[[], T], timeout: float, description: str = "operation") -> T:
    """
    Run operation with a wall-clock limit on the whole call.
    Client socket timeouts bound each read separately; this bounds the total.
    A call that overruns is left to finish in its worker thread and raises ExternalTimeoutError here.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(operation)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        future.cancel()
        raise ExternalTimeoutError(f"{description} timed out after {timeout:.0f}s")
    finally:
        executor.shutdown(wait=False)
