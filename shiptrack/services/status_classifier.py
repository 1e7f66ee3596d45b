"""
Maps free-text checkpoint status to the coarse OrderStatus and owns the single
monotonic-advance rule for order status.
"""
import re
from typing import List, Optional, Tuple

from shiptrack.models import OrderStatus

# Ordered; first match wins
STATUS_TABLE: List[Tuple[str, OrderStatus]] = [
    ("delivered", OrderStatus.DELIVERED),
    ("completed", OrderStatus.DELIVERED),
    ("in transit", OrderStatus.SHIPPED),
    ("out for delivery", OrderStatus.SHIPPED),
    ("delivery office", OrderStatus.SHIPPED),
    ("exception", OrderStatus.SHIPPED),
    ("attempt fail", OrderStatus.SHIPPED),
    ("failed attempt", OrderStatus.SHIPPED),
    ("generated", OrderStatus.PROCESSING),
    ("printed", OrderStatus.PROCESSING),
    ("info received", OrderStatus.PENDING),
    ("pending", OrderStatus.PENDING),
    ("available for pickup", OrderStatus.PENDING),
    ("cancelled", OrderStatus.CANCELLED),
    ("returned", OrderStatus.CANCELLED),
    ("expired", OrderStatus.CANCELLED),
]

STATUS_PRIORITY = {
    OrderStatus.PENDING: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.SHIPPED: 3,
    OrderStatus.DELIVERED: 4,
    OrderStatus.CANCELLED: 5,
}

_SEPARATORS = re.compile(r"[_\-\s]+")


def _fold(text: str) -> str:
    return _SEPARATORS.sub(" ", text.lower()).strip()


def classify(detailed_text: Optional[str]) -> OrderStatus:
    """Coarse status for a checkpoint text. Provider codes like 'in_transit' match too."""
    if not detailed_text:
        return OrderStatus.PROCESSING
    folded = _fold(detailed_text)
    for needle, status in STATUS_TABLE:
        if needle in folded:
            return status
    return OrderStatus.PROCESSING


def _coerce(status) -> Optional[OrderStatus]:
    if isinstance(status, OrderStatus):
        return status
    if isinstance(status, str):
        try:
            return OrderStatus(status.strip().lower())
        except ValueError:
            return None
    return None


def status_priority(status) -> int:
    coerced = _coerce(status)
    return STATUS_PRIORITY.get(coerced, 0) if coerced else 0


def is_advance(current, candidate) -> bool:
    """
    True only if `candidate` is strictly later than `current`.
    Cancelled is terminal and is never reached from tracking data.
    """
    cur = _coerce(current)
    cand = _coerce(candidate)
    if cand is None or cand == OrderStatus.CANCELLED:
        return False
    if cur == OrderStatus.CANCELLED:
        return False
    return status_priority(cand) > status_priority(cur)


def statuses_below(candidate) -> List[OrderStatus]:
    """Statuses `candidate` may replace; used as the compare-and-set guard."""
    return [s for s in OrderStatus if is_advance(s, candidate)]
