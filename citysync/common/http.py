"""
Shared HTTP utilities for the game server API client.

Provides the request/retry helper and response checks used by the
ESX and QBCore fetchers.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Type

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

from .errors import TransportError

logger = logging.getLogger(__name__)

JSON_HEADERS = {
    "Accept": "application/json",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30,
    max_attempts: int = 1,
    retry_on: Sequence[Type[Exception]] = (
        requests.exceptions.Timeout,
        requests.exceptions.ConnectionError
    ),
    backoff: Dict[str, float] | None = None,
) -> requests.Response:
    """
    Make HTTP request with optional retry on transport failures.

    Only connection errors and timeouts are retried; an HTTP error status
    is returned to the caller untouched. With ``max_attempts=1`` (the
    default) the request is issued exactly once.

    Args:
        session: Requests session to use
        method: HTTP method (GET, POST, etc.)
        url: Full URL to request
        params: Query parameters
        headers: Additional headers (merged with session headers)
        timeout: Request timeout in seconds
        max_attempts: Total attempts including the first one
        retry_on: Exception types to retry on
        backoff: Backoff configuration dict with keys: multiplier, min, max

    Returns:
        HTTP response object
    """
    if backoff is None:
        backoff = {"multiplier": 1, "min": 1, "max": 10}

    @retry(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(
            multiplier=backoff.get("multiplier", 1),
            min=backoff.get("min", 1),
            max=backoff.get("max", 10)
        ),
        retry=retry_if_exception_type(tuple(retry_on)),
        reraise=True
    )
    def _make_request() -> requests.Response:
        logger.debug(f"Making {method} request to {url}")
        return session.request(
            method=method,
            url=url,
            params=params,
            headers=headers,
            timeout=timeout
        )

    return _make_request()


def raise_for_status(response: requests.Response, url: str) -> None:
    """Raise TransportError carrying the status text for non-2xx responses."""
    if 200 <= response.status_code < 300:
        return

    status_text = getattr(response, "reason", None) or ""
    logger.error(f"Game server API error {response.status_code} {status_text} for {url}")
    raise TransportError(
        f"API request failed: {status_text or response.status_code}",
        status_code=response.status_code,
        status_text=status_text,
    )
