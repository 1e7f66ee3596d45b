"""
Tracking routes: courier list, registration, shipment assignment, refresh,
webhook simulation, history and the provider webhook receiver.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from shiptrack.config import settings
from shiptrack.database import get_db
from shiptrack.http.requests.schemas import (
    AssignShipmentRequest,
    RegisterTrackingRequest,
    TrackingWebhookRequest,
)
from shiptrack.models import Order, OrderStatus
from shiptrack.services.couriers import COURIERS, courier_display_name, detect_couriers, is_known_courier, normalize_code
from shiptrack.services.registration_client import RegistrationClient
from shiptrack.services.tracking_errors import InvalidOrder
from shiptrack.services.tracking_ledger import TrackingLedger, history_entry_to_dict
from shiptrack.services.tracking_provider import TrackingProvider, get_tracking_provider
from shiptrack.services.tracking_sync import read_history, trigger_refresh, trigger_webhook_simulation
from shiptrack.services.tracking_webhook_handler import process_tracking_webhook

logger = logging.getLogger(__name__)
router = APIRouter()


def _not_found(e: InvalidOrder) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.reason)


@router.get("/couriers")
async def list_couriers(trackingNumber: Optional[str] = Query(None)):
    """Courier catalogue; with trackingNumber, also the couriers its prefix suggests."""
    body = {"couriers": [{"code": c.code, "name": c.name} for c in COURIERS]}
    if trackingNumber:
        body["detected"] = [{"code": c.code, "name": c.name} for c in detect_couriers(trackingNumber)]
    return body


@router.post("/register")
async def register_tracking(
    body: RegisterTrackingRequest,
    provider: TrackingProvider = Depends(get_tracking_provider),
):
    """Register a tracking number with the provider. Re-registering is reported as success."""
    result = await RegistrationClient(provider).register(body.tracking_number, body.courier)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return {
        "success": True,
        "message": "Tracking number already registered" if result.already_registered else "Tracking number registered successfully",
        "shortLink": result.short_link,
    }


@router.put("/orders/{order_id}/shipment")
async def assign_shipment(
    order_id: str,
    body: AssignShipmentRequest,
    db: Session = Depends(get_db),
    provider: TrackingProvider = Depends(get_tracking_provider),
):
    """Seller attaches a tracking number and courier to an order, then the order is synced."""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.status == OrderStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="Cannot ship a cancelled order")
    code = normalize_code(body.courier_code)
    if not is_known_courier(code):
        raise HTTPException(status_code=400, detail=f"Unknown courier code: {body.courier_code}")
    order.tracking_number = body.tracking_number
    order.courier_code = code
    order.courier_name = body.courier_name or courier_display_name(code)
    db.commit()
    try:
        result = await trigger_refresh(db, provider, order_id)
    except InvalidOrder as e:
        raise _not_found(e)
    return result.to_dict()


@router.post("/orders/{order_id}/refresh")
async def refresh_tracking(
    order_id: str,
    db: Session = Depends(get_db),
    provider: TrackingProvider = Depends(get_tracking_provider),
):
    """Manual refresh: fetch, store, classify and return the merged checkpoint view."""
    try:
        result = await trigger_refresh(db, provider, order_id)
    except InvalidOrder as e:
        raise _not_found(e)
    return result.to_dict()


@router.post("/orders/{order_id}/webhook-simulate")
async def simulate_webhook(
    order_id: str,
    db: Session = Depends(get_db),
    provider: TrackingProvider = Depends(get_tracking_provider),
):
    """Same effects as refresh; for environments without real webhook delivery."""
    if not settings.ENABLE_WEBHOOK_SIMULATION:
        raise HTTPException(status_code=404, detail="Webhook simulation is disabled")
    try:
        result = await trigger_webhook_simulation(db, provider, order_id)
    except InvalidOrder as e:
        raise _not_found(e)
    return result.to_dict()


@router.get("/orders/{order_id}/history")
async def order_history(order_id: str, db: Session = Depends(get_db)):
    """Stored checkpoints for an order, newest first."""
    try:
        history = read_history(db, order_id)
    except InvalidOrder as e:
        raise _not_found(e)
    return {"success": True, "trackingHistory": history}


@router.get("/history")
async def tracking_history(
    orderId: Optional[str] = Query(None),
    trackingNumber: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """History by order id and/or tracking number."""
    if not orderId and not trackingNumber:
        raise HTTPException(status_code=400, detail="Either orderId or trackingNumber is required")
    if trackingNumber:
        entries = TrackingLedger(db).read_by_tracking_number(trackingNumber, order_id=orderId)
        return {"success": True, "trackingHistory": [history_entry_to_dict(e) for e in entries]}
    try:
        history = read_history(db, orderId)
    except InvalidOrder as e:
        raise _not_found(e)
    return {"success": True, "trackingHistory": history}


@router.post("/webhook")
async def tracking_webhook(
    body: TrackingWebhookRequest,
    db: Session = Depends(get_db),
    provider: TrackingProvider = Depends(get_tracking_provider),
):
    """Provider webhook receiver. Update events run the same sync as a manual refresh."""
    tracking = body.tracking()
    if not tracking.get("tracking_number") or not tracking.get("courier"):
        raise HTTPException(status_code=400, detail="Missing tracking information in webhook data")
    logger.info("Received tracking webhook %s for %s", body.event, tracking.get("tracking_number"))
    result = await process_tracking_webhook(db, provider, body.event, tracking)
    if not result["handled"]:
        raise HTTPException(status_code=404, detail=result["message"])
    return {"success": True, **result}
