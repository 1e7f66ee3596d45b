"""
Idempotent shipment registration with the tracking provider.

A shipment must be registered before the provider will track it. Registering
the same (tracking_number, courier) again is harmless: the provider's
"already exists" rejection is reported as success. Failures are returned,
never raised, so callers can carry on with their workflow.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from shiptrack.services.couriers import is_known_courier, normalize_code
from shiptrack.services.tracking_provider import TrackingProvider, provider_error_message

logger = logging.getLogger(__name__)

ALREADY_REGISTERED_MARKERS = ("already exists", "already registered", "duplicate")


@dataclass
class RegistrationResult:
    success: bool
    short_link: Optional[str] = None
    already_registered: bool = False
    error: Optional[str] = None


def extract_short_link(data: Any) -> Optional[str]:
    """short_link from {tracking: {...}}, {data: {...}} or a flat body."""
    if not isinstance(data, dict):
        return None
    for node in (data.get("tracking"), data.get("data"), data):
        if isinstance(node, dict):
            link = node.get("short_link") or node.get("shortLink")
            if isinstance(link, str) and link.strip():
                return link.strip()
    return None


def _is_already_registered(status_code: Optional[int], message: Optional[str]) -> bool:
    if status_code == 409:
        return True
    text = (message or "").lower()
    return any(marker in text for marker in ALREADY_REGISTERED_MARKERS)


class RegistrationClient:
    def __init__(self, provider: TrackingProvider):
        self.provider = provider

    async def register(self, tracking_number: Optional[str], courier_code: Optional[str]) -> RegistrationResult:
        tn = (tracking_number or "").strip()
        code = normalize_code(courier_code)
        if not tn or not code:
            return RegistrationResult(success=False, error="tracking_number and courier are required")
        if not is_known_courier(code):
            return RegistrationResult(success=False, error=f"Unknown courier code: {courier_code}")

        try:
            resp = await self.provider.register_tracking(tn, code)
        except Exception as e:
            logger.warning("Registration of %s (%s) raised: %s", tn, code, e)
            return RegistrationResult(success=False, error=str(e) or e.__class__.__name__)

        short_link = extract_short_link(resp.data)
        if resp.ok:
            logger.info("Registered tracking number %s with courier %s", tn, code)
            return RegistrationResult(success=True, short_link=short_link)

        message = provider_error_message(resp.data) or resp.error
        if _is_already_registered(resp.status_code, message):
            logger.debug("Tracking number %s already registered with %s", tn, code)
            return RegistrationResult(success=True, short_link=short_link, already_registered=True)

        logger.warning("Registration of %s (%s) rejected: %s", tn, code, message)
        return RegistrationResult(success=False, error=message or "Failed to register tracking number")
