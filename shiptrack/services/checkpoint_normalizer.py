"""
Checkpoint normalizer: one provider payload -> list of canonical checkpoints.

The provider nests checkpoints differently depending on endpoint and API
version. Each shape is handled by a small pure extraction strategy; strategies
are tried in order and the first non-empty result wins.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_DETAILS = "Status update"
DEFAULT_STATUS = "unknown"

TIME_FIELDS = ("checkpoint_time", "time", "created_at")
DETAILS_FIELDS = ("message", "content", "description", "status")


@dataclass
class Checkpoint:
    time: datetime
    status: str
    details: str
    location: str = ""
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "status": self.status,
            "details": self.details,
            "location": self.location,
        }


def _get_path(payload: Any, *keys: str) -> Any:
    node = payload
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _as_list(value: Any) -> Optional[list]:
    if isinstance(value, list) and value:
        return value
    return None


def _from_data_checkpoints(payload: Any) -> Optional[list]:
    return _as_list(_get_path(payload, "data", "checkpoints"))


def _from_tracking_checkpoints(payload: Any) -> Optional[list]:
    return _as_list(_get_path(payload, "tracking", "checkpoints"))


def _from_tracking_latest_checkpoint(payload: Any) -> Optional[list]:
    latest = _get_path(payload, "tracking", "latest_checkpoint")
    if isinstance(latest, dict) and latest:
        return [latest]
    return None


def _from_original_data(payload: Any) -> Optional[list]:
    return _as_list(_get_path(payload, "originalData", "data", "checkpoints"))


EXTRACTION_STRATEGIES: List[Callable[[Any], Optional[list]]] = [
    _from_data_checkpoints,
    _from_tracking_checkpoints,
    _from_tracking_latest_checkpoint,
    _from_original_data,
]


def parse_checkpoint_time(value: Any, default: datetime) -> datetime:
    """
    Parse a provider timestamp into an aware UTC datetime.
    Accepts ISO-8601 and other textual dates such as RFC 1123 (naive ones are
    read as UTC) and epoch seconds or milliseconds; anything else yields `default`.
    """
    if value is None or value == "" or isinstance(value, bool):
        return default
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        number = float(value)
        if number > 1e12:
            number = number / 1000.0
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return default
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = date_parser.parse(value.strip())
            except (ValueError, OverflowError):
                logger.debug("Unparseable checkpoint time %r; using ingestion time", value)
                return default
    else:
        return default
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _first_text(entry: dict, fields) -> Optional[str]:
    for name in fields:
        value = entry.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize_checkpoint(entry: dict, ingested_at: Optional[datetime] = None) -> Checkpoint:
    default_time = ingested_at or datetime.now(timezone.utc)
    raw_time = next((entry.get(name) for name in TIME_FIELDS if entry.get(name)), None)
    location = entry.get("location")
    return Checkpoint(
        time=parse_checkpoint_time(raw_time, default_time),
        status=_first_text(entry, ("status", "tag")) or DEFAULT_STATUS,
        details=_first_text(entry, DETAILS_FIELDS) or DEFAULT_DETAILS,
        location=location.strip() if isinstance(location, str) else "",
        raw=entry,
    )


def normalize(payload: Any, ingested_at: Optional[datetime] = None) -> List[Checkpoint]:
    """Canonical checkpoints from the first strategy that yields any, in provider order."""
    ingested_at = ingested_at or datetime.now(timezone.utc)
    for strategy in EXTRACTION_STRATEGIES:
        entries = strategy(payload)
        if not entries:
            continue
        checkpoints = [normalize_checkpoint(e, ingested_at) for e in entries if isinstance(e, dict)]
        if checkpoints:
            return checkpoints
    return []


def _courier_name(courier: Any) -> Optional[str]:
    if isinstance(courier, dict):
        return courier.get("name") or courier.get("code")
    if isinstance(courier, str) and courier:
        return courier
    return None


def extract_courier_display_name(payload: Any) -> Optional[str]:
    for root in ("tracking", "data"):
        name = _courier_name(_get_path(payload, root, "courier"))
        if name:
            return name
    return _get_path(payload, "data", "courier_name") or None


def extract_provider_status(payload: Any) -> Optional[str]:
    for path in (("tracking", "status"), ("data", "status"), ("data", "delivery_status")):
        value = _get_path(payload, *path)
        if isinstance(value, str) and value:
            return value
    return None


def has_tracking_data(payload: Any) -> bool:
    """True when the payload carries a tracking object even without checkpoints."""
    return isinstance(_get_path(payload, "tracking"), dict) or isinstance(_get_path(payload, "data"), dict)
