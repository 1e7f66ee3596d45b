"""
Shared HTTP helpers for the courier-tracking provider.
Every call carries a timeout; idempotent GETs retry on gateway errors and
connection failures, POSTs are sent once.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
DEFAULT_RETRIES = 2
RETRY_BACKOFF_BASE = 0.5  # seconds
RETRY_ON_STATUS = (502, 503, 504)


async def _sleep_backoff(attempt: int) -> None:
    if attempt <= 0:
        return
    delay = RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
    await asyncio.sleep(min(delay, 5.0))


def _client(timeout: float, transport: Optional[httpx.AsyncBaseTransport]) -> httpx.AsyncClient:
    if transport is not None:
        return httpx.AsyncClient(timeout=timeout, transport=transport)
    return httpx.AsyncClient(timeout=timeout)


async def get_with_retry(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """
    GET with a per-attempt timeout. Retries RETRY_ON_STATUS responses and
    connect/timeout errors; the last error is re-raised when retries run out.
    """
    resp: Optional[httpx.Response] = None
    for attempt in range(max_retries + 1):
        try:
            async with _client(timeout, transport) as client:
                resp = await client.get(url, params=params, headers=headers)
            if attempt < max_retries and resp.status_code in RETRY_ON_STATUS:
                await _sleep_backoff(attempt + 1)
                continue
            return resp
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            if attempt < max_retries:
                logger.warning("HTTP GET %s attempt %s failed: %s", url, attempt + 1, e)
                await _sleep_backoff(attempt + 1)
            else:
                raise
    return resp  # type: ignore


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """POST with no retries (non-idempotent). Single attempt with timeout."""
    async with _client(timeout, transport) as client:
        return await client.post(url, json=json or {}, headers=headers or {})


def safe_json(resp: httpx.Response) -> Any:
    """Response body as JSON, or None when the provider sent something else."""
    try:
        return resp.json()
    except ValueError:
        return None
