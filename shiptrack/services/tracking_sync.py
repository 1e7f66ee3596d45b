"""
Tracking synchronization engine.

One entry point, TrackingSyncEngine.sync(order_id), used by manual refresh,
webhook simulation, the provider webhook receiver and the optional background
poll, so every trigger has identical side effects:

  fetch (registration + fallback chain) -> ledger append -> classify latest
  checkpoint -> advance Order.status only if strictly later -> merged view

A failing provider degrades to ledger-only output; only an unknown order is
reported to the caller (InvalidOrder).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shiptrack.models import Order, OrderStatus
from shiptrack.services.checkpoint_normalizer import Checkpoint
from shiptrack.services.couriers import courier_display_name, normalize_code
from shiptrack.services.fetch_orchestrator import FetchOrchestrator, FetchResult
from shiptrack.services.registration_client import RegistrationResult
from shiptrack.services.status_classifier import classify, is_advance, statuses_below
from shiptrack.services.tracking_errors import FetchFailure, InvalidOrder, RegistrationFailure
from shiptrack.services.tracking_ledger import TrackingLedger, history_entry_to_dict, to_naive_utc
from shiptrack.services.tracking_provider import TrackingProvider

logger = logging.getLogger(__name__)

SOURCE_API = "api"
SOURCE_DATABASE = "database"

TRIGGER_REFRESH = "refresh"
TRIGGER_WEBHOOK_SIMULATION = "webhook_simulation"
TRIGGER_WEBHOOK = "webhook"
TRIGGER_POLL = "poll"

MAX_DETAILED_STATUS_LEN = 500
ESTIMATED_TRANSIT_DAYS = 4


@dataclass
class SyncResult:
    order_id: str
    status: Optional[str]
    detailed_status: Optional[str] = None
    checkpoints: List[dict] = field(default_factory=list)
    source: str = SOURCE_DATABASE
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    inserted: int = 0
    status_changed: bool = False
    short_link: Optional[str] = None
    courier_name: Optional[str] = None
    shippable: bool = True
    estimated_delivery: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "orderId": self.order_id,
            "status": self.status,
            "detailedStatus": self.detailed_status,
            "checkpoints": self.checkpoints,
            "source": self.source,
            "error": self.error,
            "warnings": self.warnings,
            "inserted": self.inserted,
            "statusChanged": self.status_changed,
            "shortLink": self.short_link,
            "courierName": self.courier_name,
            "shippable": self.shippable,
            "estimatedDelivery": self.estimated_delivery,
        }


def _status_value(status) -> Optional[str]:
    return status.value if hasattr(status, "value") else status


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _sort_key(item: dict) -> datetime:
    try:
        return datetime.fromisoformat(item.get("time") or "")
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)


def merge_checkpoints(live: List[dict], history: List[dict]) -> List[dict]:
    """
    Union of live checkpoints and ledger history, one item per (time, details),
    live items taking precedence, newest first.
    """
    merged = {}
    for item in list(live) + list(history):
        key = (item.get("time"), item.get("details"))
        if key not in merged:
            merged[key] = item
    return sorted(merged.values(), key=_sort_key, reverse=True)


def estimate_delivery(checkpoints: List[dict], order: Order) -> Optional[str]:
    """Earliest checkpoint plus the average transit time, for orders not yet delivered."""
    if not checkpoints or order.status == OrderStatus.DELIVERED or order.delivered_at is not None:
        return None
    times = [_sort_key(cp) for cp in checkpoints if cp.get("time")]
    times = [t for t in times if t.year > datetime.min.year]
    if not times:
        return None
    return (min(times) + timedelta(days=ESTIMATED_TRANSIT_DAYS)).isoformat()


class TrackingSyncEngine:
    def __init__(
        self,
        db: Session,
        provider: TrackingProvider,
        orchestrator: Optional[FetchOrchestrator] = None,
    ):
        self.db = db
        self.provider = provider
        self.orchestrator = orchestrator or FetchOrchestrator(provider)
        self.ledger = TrackingLedger(db)

    def _load_order(self, order_id: str) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first() if order_id else None
        if not order:
            raise InvalidOrder(order_id)
        return order

    def _apply_registration(self, order: Order, registration: Optional[RegistrationResult], warnings: List[str]) -> None:
        if registration is None:
            return
        if not registration.success:
            warnings.append(str(RegistrationFailure(order.tracking_number, registration.error or "unknown error")))
            return
        if registration.short_link and registration.short_link != order.short_link:
            order.short_link = registration.short_link
            logger.info("Order %s short link set to %s", order.id, registration.short_link)

    def _advance_status(self, order: Order, candidate: OrderStatus, detailed_text: str) -> bool:
        """
        Compare-and-set: the UPDATE only matches while the stored status is still
        below `candidate`, so a concurrent writer can never be rolled back.
        """
        if not is_advance(order.status, candidate):
            logger.debug("Order %s stays %s (classified %s)", order.id, _status_value(order.status), candidate.value)
            return False
        values = {
            Order.status: candidate,
            Order.detailed_tracking_status: detailed_text[:MAX_DETAILED_STATUS_LEN],
        }
        if candidate == OrderStatus.SHIPPED and order.shipped_at is None:
            values[Order.shipped_at] = _utcnow_naive()
        if candidate == OrderStatus.DELIVERED and order.delivered_at is None:
            values[Order.delivered_at] = _utcnow_naive()
        self.db.flush()
        updated = (
            self.db.query(Order)
            .filter(Order.id == order.id, Order.status.in_(statuses_below(candidate)))
            .update(values, synchronize_session=False)
        )
        self.db.refresh(order)
        if updated:
            logger.info("Order %s status advanced to %s", order.id, candidate.value)
        return bool(updated)

    def _record_latest_text(self, order: Order, latest: Checkpoint) -> None:
        """Keep the human-readable status on the newest checkpoint even when the status itself holds."""
        if order.status == OrderStatus.CANCELLED:
            return
        newest = self.ledger.latest_checkpoint_time(order.id)
        if newest is not None and to_naive_utc(latest.time) < newest:
            return
        text = latest.details[:MAX_DETAILED_STATUS_LEN]
        if text != order.detailed_tracking_status:
            order.detailed_tracking_status = text

    def _result(self, order: Order, **kwargs) -> SyncResult:
        return SyncResult(
            order_id=order.id,
            status=_status_value(order.status),
            short_link=order.short_link,
            courier_name=order.courier_name,
            **kwargs,
        )

    async def sync(self, order_id: str, trigger: str = TRIGGER_REFRESH) -> SyncResult:
        order = self._load_order(order_id)
        tracking_number = (order.tracking_number or "").strip()
        courier_code = normalize_code(order.courier_code)

        if not tracking_number or not courier_code:
            logger.info("Order %s has no tracking identity yet; nothing to sync", order.id)
            history = [history_entry_to_dict(h) for h in self.ledger.read_history(order.id)]
            return self._result(
                order,
                detailed_status=order.detailed_tracking_status,
                checkpoints=history,
                shippable=False,
                estimated_delivery=estimate_delivery(history, order),
            )

        logger.info("Syncing tracking for order %s (%s/%s, trigger=%s)", order.id, courier_code, tracking_number, trigger)
        warnings: List[str] = []
        error: Optional[str] = None
        fetched: Optional[FetchResult] = None
        try:
            fetched = await self.orchestrator.fetch_checkpoints(tracking_number, courier_code)
            registration = fetched.registration
        except FetchFailure as e:
            logger.warning("Order %s: %s", order.id, e)
            error = f"Live tracking unavailable ({e.stage} stage failed); showing saved history"
            registration = e.registration

        inserted = 0
        status_changed = False
        live: List[Checkpoint] = []
        try:
            self._apply_registration(order, registration, warnings)
            if fetched is not None:
                live = fetched.checkpoints
                inserted = self.ledger.append(order.id, tracking_number, live, courier_code=courier_code)
                if not order.courier_name:
                    order.courier_name = courier_display_name(courier_code) or fetched.courier_display_name
                if live:
                    latest = live[0]
                    status_changed = self._advance_status(order, classify(latest.details), latest.details)
                    if not status_changed:
                        self._record_latest_text(order, latest)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Order %s: failed to persist tracking update: %s", order.id, e)
            warnings.append("Tracking update could not be saved")
            inserted = 0
            status_changed = False
            self.db.refresh(order)

        history = [history_entry_to_dict(h) for h in self.ledger.read_history(order.id)]
        live_view = [cp.to_dict() for cp in live]
        merged = merge_checkpoints(live_view, history)
        return self._result(
            order,
            detailed_status=live[0].details if live else order.detailed_tracking_status,
            checkpoints=merged,
            source=SOURCE_API if fetched is not None else SOURCE_DATABASE,
            error=error,
            warnings=warnings,
            inserted=inserted,
            status_changed=status_changed,
            estimated_delivery=estimate_delivery(merged, order),
        )


async def trigger_refresh(db: Session, provider: TrackingProvider, order_id: str) -> SyncResult:
    return await TrackingSyncEngine(db, provider).sync(order_id, trigger=TRIGGER_REFRESH)


async def trigger_webhook_simulation(db: Session, provider: TrackingProvider, order_id: str) -> SyncResult:
    """Same effects as trigger_refresh; used where real webhook delivery is unavailable."""
    return await TrackingSyncEngine(db, provider).sync(order_id, trigger=TRIGGER_WEBHOOK_SIMULATION)


def read_history(db: Session, order_id: str) -> List[dict]:
    order = db.query(Order).filter(Order.id == order_id).first() if order_id else None
    if not order:
        raise InvalidOrder(order_id)
    return [history_entry_to_dict(h) for h in TrackingLedger(db).read_history(order.id)]


async def sync_active_orders(db: Session, provider: TrackingProvider, limit: int = 100) -> dict:
    """
    Refresh every order that has a tracking identity and is not delivered or
    cancelled. Returns { synced: int, advanced: int, errors: list }.
    """
    final_statuses = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)
    order_ids = [
        oid for (oid,) in db.query(Order.id)
        .filter(Order.tracking_number.isnot(None), Order.courier_code.isnot(None))
        .filter(Order.status.notin_(final_statuses))
        .order_by(Order.updated_at.asc())
        .limit(limit)
        .all()
    ]
    engine = TrackingSyncEngine(db, provider)
    synced = 0
    advanced = 0
    errors: List[str] = []
    for order_id in order_ids:
        try:
            result = await engine.sync(order_id, trigger=TRIGGER_POLL)
        except InvalidOrder as e:
            errors.append(str(e))
            continue
        synced += 1
        if result.status_changed:
            advanced += 1
        if result.error:
            errors.append(f"{order_id}: {result.error}")
    return {"synced": synced, "advanced": advanced, "errors": errors[:50]}
