"""Retry helper for transient upstream failures."""

import logging
import random
import time
from typing import Callable, Optional, TypeVar

import requests

T = TypeVar("T")

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 502, 503, 504}


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if status is None:
        response = getattr(error, "response", None)
        if isinstance(response, requests.Response):
            status = response.status_code
        elif isinstance(response, dict):
            status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException) -> bool:
    """Rate limits, gateway errors and dropped connections are worth another try."""
    if isinstance(error, (requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError)):
        return True

    if str(getattr(error, "code", "")) == "rate_limited":
        return True

    return _status_of(error) in RETRYABLE_STATUSES


def _retry_after(error: BaseException) -> Optional[float]:
    headers = getattr(error, "headers", None)
    if headers is None:
        # requests.HTTPError keeps them on the response
        response = getattr(error, "response", None)
        headers = response.headers if isinstance(response, requests.Response) else None
    headers = headers or {}
    value = headers.get("Retry-After") if hasattr(headers, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def with_retry(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation``, retrying transient failures with exponential backoff.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` plus
    up to one second of jitter, unless the error carries a Retry-After header.
    Non-retryable errors and the last failure propagate unchanged.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt == attempts or not is_retryable(e):
                raise

            delay = _retry_after(e)
            if delay is None:
                delay = base_delay * 2 ** (attempt - 1) + random.uniform(0, 1)

            logger.warning(
                "Transient failure (%s), retrying in %.1fs [%d/%d]",
                e, delay, attempt, attempts - 1,
            )
            sleep(delay)

    raise AssertionError("unreachable")
