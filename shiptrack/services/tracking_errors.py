"""
Error taxonomy for tracking ingestion.

Only InvalidOrder reaches callers of the sync engine. FetchFailure is raised by
the fetch orchestrator and absorbed by the engine (ledger-only fallback).
RegistrationFailure is never raised; it is carried as a warning value.
Empty normalization and dedup collisions are not errors at all.
"""
from typing import Dict, Optional


class TrackingError(Exception):
    """Base class for tracking ingestion errors."""


class InvalidOrder(TrackingError):
    """Unknown order id (or otherwise unusable order). Fatal for that call only."""

    def __init__(self, order_id: str, reason: str = "Order not found"):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"{reason}: {order_id}")


class FetchFailure(TrackingError):
    """Every provider query stage failed to yield checkpoints."""

    def __init__(self, stage: str, reasons: Dict[str, str], registration: Optional[object] = None):
        self.stage = stage
        self.reasons = dict(reasons)
        self.registration = registration
        detail = "; ".join(f"{name}: {why}" for name, why in self.reasons.items())
        super().__init__(f"Tracking fetch failed at stage '{stage}' ({detail})")


class RegistrationFailure(TrackingError):
    """Provider registration did not succeed. Logged and reported as a warning."""

    def __init__(self, tracking_number: str, error: str):
        self.tracking_number = tracking_number
        self.error = error
        super().__init__(f"Registration failed for {tracking_number}: {error}")
