"""
tracking.my courier-tracking provider.

  POST /trackings                               register {tracking_number, courier}
  GET  /trackings/{courier}/{tracking_number}   courier-specific query
  GET  /trackings/{tracking_number}             generic query
  GET  /trackings                               list all registered shipments

Header: Tracking-Api-Key: <API_KEY>
Calls never raise for HTTP or network failures; they return a ProviderResponse
with ok=False and an error string instead.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx

from shiptrack.config import settings
from shiptrack.services.http_client import get_with_retry, post_no_retry, safe_json

logger = logging.getLogger(__name__)


@dataclass
class ProviderResponse:
    ok: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None


class TrackingProvider(Protocol):
    """Courier-tracking provider capability. Tests substitute a scripted fake."""

    async def register_tracking(self, tracking_number: str, courier_code: str) -> ProviderResponse:
        ...

    async def get_courier_tracking(self, courier_code: str, tracking_number: str) -> ProviderResponse:
        ...

    async def get_tracking(self, tracking_number: str) -> ProviderResponse:
        ...

    async def list_trackings(self) -> ProviderResponse:
        ...


def provider_error_message(data: Any) -> Optional[str]:
    """Pull the provider's error text from {meta: {error_message}} or {message}/{error}."""
    if not isinstance(data, dict):
        return None
    meta = data.get("meta")
    if isinstance(meta, dict) and meta.get("error_message"):
        return str(meta["error_message"])
    for key in ("message", "error"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def get_client(api_key: Optional[str] = None) -> "TrackingMyClient":
    """Return a client instance. Api key from env if not passed."""
    key = api_key or getattr(settings, "TRACKING_MY_API_KEY", None) or ""
    return TrackingMyClient(
        api_key=key,
        base_url=settings.TRACKING_MY_BASE_URL,
        timeout=settings.TRACKING_HTTP_TIMEOUT,
        max_retries=settings.TRACKING_HTTP_RETRIES,
    )


def get_tracking_provider() -> TrackingProvider:
    """FastAPI dependency: the configured provider."""
    return get_client()


class TrackingMyClient:
    """tracking.my seller API client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://seller.tracking.my/api/v1",
        timeout: float = 15.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Tracking-Api-Key": self.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _not_configured(self) -> ProviderResponse:
        logger.warning("TRACKING_MY_API_KEY not set; provider call skipped")
        return ProviderResponse(ok=False, error="TRACKING_MY_API_KEY not set")

    @staticmethod
    def _to_response(resp: httpx.Response) -> ProviderResponse:
        data = safe_json(resp)
        if resp.is_success:
            return ProviderResponse(ok=True, status_code=resp.status_code, data=data)
        return ProviderResponse(
            ok=False,
            status_code=resp.status_code,
            data=data,
            error=provider_error_message(data) or f"HTTP {resp.status_code}",
        )

    async def _get(self, path: str) -> ProviderResponse:
        if not self.api_key:
            return self._not_configured()
        url = f"{self.base_url}{path}"
        try:
            resp = await get_with_retry(
                url,
                headers=self._headers(),
                timeout=self.timeout,
                max_retries=self.max_retries,
                transport=self.transport,
            )
        except httpx.TimeoutException as e:
            logger.warning("tracking.my GET %s timed out: %s", path, e)
            return ProviderResponse(ok=False, error=f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning("tracking.my GET %s failed: %s", path, e)
            return ProviderResponse(ok=False, error=str(e) or e.__class__.__name__)
        return self._to_response(resp)

    async def register_tracking(self, tracking_number: str, courier_code: str) -> ProviderResponse:
        if not self.api_key:
            return self._not_configured()
        payload = {"tracking_number": tracking_number, "courier": courier_code}
        try:
            resp = await post_no_retry(
                f"{self.base_url}/trackings",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self.transport,
            )
        except httpx.TimeoutException as e:
            logger.warning("tracking.my register %s timed out: %s", tracking_number, e)
            return ProviderResponse(ok=False, error=f"timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning("tracking.my register %s failed: %s", tracking_number, e)
            return ProviderResponse(ok=False, error=str(e) or e.__class__.__name__)
        return self._to_response(resp)

    async def get_courier_tracking(self, courier_code: str, tracking_number: str) -> ProviderResponse:
        return await self._get(f"/trackings/{quote(courier_code, safe='')}/{quote(tracking_number, safe='')}")

    async def get_tracking(self, tracking_number: str) -> ProviderResponse:
        return await self._get(f"/trackings/{quote(tracking_number, safe='')}")

    async def list_trackings(self) -> ProviderResponse:
        return await self._get("/trackings")
