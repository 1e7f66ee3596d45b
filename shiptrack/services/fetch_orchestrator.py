"""
Fetch orchestrator: ordered fallback over provider query strategies.

  1. courier  GET /trackings/{courier}/{tracking_number}
  2. generic  GET /trackings/{tracking_number}
  3. list     GET /trackings, match the tracking number, re-query with the
              matched courier code, else use the entry's own checkpoint summary

The first stage that yields checkpoints wins; a stage that answers with a
tracking object but no checkpoints ends the chain with an empty result. The
shipment is registered (best-effort) before stage 1 so a new shipment is
queryable on the same call.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shiptrack.config import settings
from shiptrack.services.checkpoint_normalizer import (
    Checkpoint,
    extract_courier_display_name,
    extract_provider_status,
    has_tracking_data,
    normalize,
    normalize_checkpoint,
)
from shiptrack.services.couriers import normalize_code
from shiptrack.services.registration_client import RegistrationClient, RegistrationResult
from shiptrack.services.tracking_errors import FetchFailure
from shiptrack.services.tracking_provider import ProviderResponse, TrackingProvider

logger = logging.getLogger(__name__)

STAGE_COURIER = "courier"
STAGE_GENERIC = "generic"
STAGE_LIST = "list"

TRACKING_NUMBER_FIELDS = ("tracking_number", "trackingNumber", "number")


@dataclass
class FetchResult:
    checkpoints: List[Checkpoint] = field(default_factory=list)
    provider_status: Optional[str] = None
    courier_display_name: Optional[str] = None
    source: str = STAGE_COURIER
    registration: Optional[RegistrationResult] = None


def _default_call_timeout() -> float:
    # Whole call including the http client's own retries
    return settings.TRACKING_HTTP_TIMEOUT * (settings.TRACKING_HTTP_RETRIES + 1) + 5.0


def _entry_courier_code(entry: dict) -> Optional[str]:
    courier = entry.get("courier")
    if isinstance(courier, dict):
        return courier.get("code") or courier.get("courier_code")
    if isinstance(courier, str) and courier:
        return courier
    return entry.get("courier_code")


def _entry_courier_name(entry: dict) -> Optional[str]:
    courier = entry.get("courier")
    if entry.get("courier_name"):
        return entry["courier_name"]
    if isinstance(courier, dict):
        return courier.get("name") or courier.get("code")
    return courier if isinstance(courier, str) and courier else None


def _tracking_list(data: Any) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("trackings", "data"):
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


def find_tracking_entry(data: Any, tracking_number: str) -> Optional[dict]:
    """Exact tracking-number match in a list-all response, whichever field name the provider used."""
    for entry in _tracking_list(data):
        if not isinstance(entry, dict):
            continue
        if any(entry.get(name) == tracking_number for name in TRACKING_NUMBER_FIELDS):
            return entry
    return None


class FetchOrchestrator:
    def __init__(
        self,
        provider: TrackingProvider,
        registration: Optional[RegistrationClient] = None,
        call_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.registration = registration or RegistrationClient(provider)
        self.call_timeout = call_timeout or _default_call_timeout()

    async def _call(self, label: str, coro) -> ProviderResponse:
        """Run one provider call under a deadline; timeouts and exceptions become failed responses."""
        try:
            return await asyncio.wait_for(coro, timeout=self.call_timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider call %s timed out after %ss", label, self.call_timeout)
            return ProviderResponse(ok=False, error="timeout")
        except Exception as e:
            logger.warning("Provider call %s failed: %s", label, e)
            return ProviderResponse(ok=False, error=str(e) or e.__class__.__name__)

    async def _register(self, tracking_number: str, courier_code: str) -> RegistrationResult:
        try:
            result = await asyncio.wait_for(
                self.registration.register(tracking_number, courier_code),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            result = RegistrationResult(success=False, error="timeout")
        if not result.success:
            logger.warning("Pre-fetch registration of %s failed (continuing): %s", tracking_number, result.error)
        return result

    def _from_payload(
        self,
        stage: str,
        resp: ProviderResponse,
        reasons: Dict[str, str],
        ingested_at: datetime,
    ) -> Optional[FetchResult]:
        if not resp.ok:
            reasons[stage] = resp.error or (f"HTTP {resp.status_code}" if resp.status_code else "request failed")
            return None
        checkpoints = normalize(resp.data, ingested_at)
        result = FetchResult(
            checkpoints=checkpoints,
            provider_status=extract_provider_status(resp.data),
            courier_display_name=extract_courier_display_name(resp.data),
            source=stage,
        )
        if checkpoints:
            return result
        reasons[stage] = "no checkpoints in response"
        return None

    async def _from_list(
        self,
        tracking_number: str,
        courier_code: str,
        reasons: Dict[str, str],
        ingested_at: datetime,
    ) -> Optional[FetchResult]:
        resp = await self._call("list", self.provider.list_trackings())
        if not resp.ok:
            reasons[STAGE_LIST] = resp.error or "request failed"
            return None
        entry = find_tracking_entry(resp.data, tracking_number)
        if entry is None:
            reasons[STAGE_LIST] = "tracking number not found in provider list"
            return None

        matched_code = _entry_courier_code(entry) or courier_code
        summary = FetchResult(
            provider_status=entry.get("status") if isinstance(entry.get("status"), str) else None,
            courier_display_name=_entry_courier_name(entry),
            source=STAGE_LIST,
        )

        detail = await self._call("list-detail", self.provider.get_courier_tracking(matched_code, tracking_number))
        if detail.ok:
            checkpoints = normalize(detail.data, ingested_at)
            if checkpoints:
                summary.checkpoints = checkpoints
                summary.provider_status = extract_provider_status(detail.data) or summary.provider_status
                summary.courier_display_name = extract_courier_display_name(detail.data) or summary.courier_display_name
                return summary
        else:
            logger.info("Re-query of %s with matched courier %s failed: %s", tracking_number, matched_code, detail.error)

        own = entry.get("checkpoints")
        if isinstance(own, list):
            summary.checkpoints = [normalize_checkpoint(cp, ingested_at) for cp in own if isinstance(cp, dict)]
        if not summary.checkpoints and isinstance(entry.get("latest_checkpoint"), dict):
            summary.checkpoints = [normalize_checkpoint(entry["latest_checkpoint"], ingested_at)]
        if summary.checkpoints:
            return summary
        reasons[STAGE_LIST] = "matched entry has no checkpoint data"
        return None

    async def fetch_checkpoints(self, tracking_number: str, courier_code: str) -> FetchResult:
        """
        Checkpoints from the first stage that yields any. A stage that returns a
        tracking object without checkpoints stops the chain with an empty result.
        Otherwise raises FetchFailure naming the last stage tried and why each failed.
        """
        tracking_number = tracking_number.strip()
        courier_code = normalize_code(courier_code) or courier_code
        registration = await self._register(tracking_number, courier_code)
        ingested_at = datetime.now(timezone.utc)
        reasons: Dict[str, str] = {}

        for stage, coro_factory in (
            (STAGE_COURIER, lambda: self.provider.get_courier_tracking(courier_code, tracking_number)),
            (STAGE_GENERIC, lambda: self.provider.get_tracking(tracking_number)),
        ):
            resp = await self._call(stage, coro_factory())
            result = self._from_payload(stage, resp, reasons, ingested_at)
            if result is not None:
                result.registration = registration
                logger.debug("Fetched %s checkpoint(s) for %s via %s", len(result.checkpoints), tracking_number, stage)
                return result
            if resp.ok and has_tracking_data(resp.data):
                logger.info("Provider has %s but no checkpoints yet (%s)", tracking_number, stage)
                return FetchResult(
                    provider_status=extract_provider_status(resp.data),
                    courier_display_name=extract_courier_display_name(resp.data),
                    source=stage,
                    registration=registration,
                )

        result = await self._from_list(tracking_number, courier_code, reasons, ingested_at)
        if result is not None:
            result.registration = registration
            return result

        raise FetchFailure(STAGE_LIST, reasons, registration=registration)
