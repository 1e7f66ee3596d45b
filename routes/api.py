"""
Central API route registration. HTTP controllers are mounted here under settings.API_PREFIX.
"""
import logging
from fastapi import FastAPI

from shiptrack.http.controllers import tracking

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    prefix = getattr(settings, "API_PREFIX", "/api")
    app.include_router(tracking.router, prefix=f"{prefix}/tracking", tags=["tracking"])
    if getattr(settings, "ENABLE_WEBHOOK_SIMULATION", False):
        logger.info("Webhook simulation endpoint enabled")
