"""
tracking.my webhook handler.
Events: trackings/create (short link), trackings/update and
trackings/checkpoint_update (store any checkpoints carried in the payload,
then run the standard sync for the order).
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from shiptrack.models import Order, WebhookEvent
from shiptrack.services.checkpoint_normalizer import Checkpoint, normalize_checkpoint
from shiptrack.services.couriers import normalize_code
from shiptrack.services.registration_client import extract_short_link
from shiptrack.services.tracking_ledger import TrackingLedger
from shiptrack.services.tracking_provider import TrackingProvider
from shiptrack.services.tracking_sync import TRIGGER_WEBHOOK, TrackingSyncEngine

logger = logging.getLogger(__name__)

EVENT_CREATE = "trackings/create"
UPDATE_EVENTS = ("trackings/update", "trackings/checkpoint_update")


def find_order_for_tracking(db: Session, tracking_number: str, courier_code: str) -> Optional[Order]:
    return (
        db.query(Order)
        .filter(
            Order.tracking_number == tracking_number,
            func.lower(Order.courier_code) == normalize_code(courier_code),
        )
        .first()
    )


def _courier_code(tracking: Dict[str, Any]) -> str:
    courier = tracking.get("courier")
    if isinstance(courier, dict):
        courier = courier.get("code")
    return normalize_code(courier if isinstance(courier, str) else "")


def payload_checkpoints(tracking: Dict[str, Any], ingested_at: datetime) -> List[Checkpoint]:
    entries = []
    if isinstance(tracking.get("latest_checkpoint"), dict):
        entries.append(tracking["latest_checkpoint"])
    if isinstance(tracking.get("checkpoints"), list):
        entries.extend(cp for cp in tracking["checkpoints"] if isinstance(cp, dict))
    return [normalize_checkpoint(entry, ingested_at) for entry in entries]


def _record_event(db: Session, event: str, tracking_number: Optional[str], tracking: Dict[str, Any]) -> WebhookEvent:
    summary = json.dumps(
        {"status": tracking.get("status"), "courier": tracking.get("courier")},
        default=str,
    )[:500]
    row = WebhookEvent(
        source="tracking_my",
        topic=event,
        tracking_number=tracking_number,
        payload_summary=summary,
    )
    db.add(row)
    db.flush()
    return row


async def process_tracking_webhook(
    db: Session,
    provider: TrackingProvider,
    event: str,
    tracking: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Handle one webhook delivery. Returns {handled, orderId, message}; an
    unknown tracking number is reported with handled=False, not raised.
    """
    tracking_number = (tracking.get("tracking_number") or "").strip()
    courier_code = _courier_code(tracking)
    row = _record_event(db, event, tracking_number or None, tracking)

    order = find_order_for_tracking(db, tracking_number, courier_code) if tracking_number and courier_code else None
    if not order:
        logger.warning("No order found for tracking number %s and courier %s", tracking_number, courier_code)
        row.error = "No associated order found"
        row.processed_at = datetime.now(timezone.utc).replace(tzinfo=None)
        db.commit()
        return {"handled": False, "orderId": None, "message": "No associated order found"}

    message = f"Processed {event} webhook for tracking {tracking_number}"
    if event == EVENT_CREATE:
        short_link = extract_short_link({"tracking": tracking})
        if short_link and short_link != order.short_link:
            order.short_link = short_link
            logger.info("Updated order %s with short link: %s", order.id, short_link)
    elif event in UPDATE_EVENTS:
        checkpoints = payload_checkpoints(tracking, datetime.now(timezone.utc))
        if checkpoints:
            inserted = TrackingLedger(db).append(order.id, tracking_number, checkpoints, courier_code=courier_code)
            logger.info("Stored %s checkpoint(s) from %s webhook for order %s", inserted, event, order.id)
        db.commit()
        result = await TrackingSyncEngine(db, provider).sync(order.id, trigger=TRIGGER_WEBHOOK)
        if result.error:
            row.error = result.error[:500]
    else:
        logger.info("Tracking webhook event %s: no handler", event)
        message = f"Ignored {event} webhook"

    row.processed_at = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()
    return {"handled": True, "orderId": order.id, "message": message}
