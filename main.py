"""
Campus ShipTrack - FastAPI Backend
"""
import asyncio
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import status
from sqlalchemy import text
import uvicorn
import logging

from routes.api import register_routes
from shiptrack.database import engine, Base, SessionLocal
from shiptrack.config import settings
from shiptrack import models  # noqa: F401 - register all models with Base
from shiptrack.services.tracking_provider import get_client
from shiptrack.services.tracking_sync import sync_active_orders

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Campus ShipTrack API",
    description="Order shipment tracking API",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

logger.info("Starting Campus ShipTrack API")
logger.info("Environment: %s (production=%s)", settings.ENV, settings.IS_PRODUCTION)
logger.info("Host: %s:%s", settings.HOST, settings.PORT)

if not settings.TRACKING_MY_API_KEY:
    logger.warning("TRACKING_MY_API_KEY is not set. Live tracking will fall back to saved history.")


def get_cors_headers(request: Request) -> dict:
    """CORS headers for error responses, which bypass the middleware."""
    origin = request.headers.get("origin", "")
    allowed_origins = settings.ALLOWED_ORIGINS
    if origin in allowed_origins:
        cors_origin = origin
    elif allowed_origins:
        cors_origin = allowed_origins[0]
    else:
        cors_origin = "*"
    return {
        "Access-Control-Allow-Origin": cors_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
        "Access-Control-Allow-Headers": "*",
    }


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry the raised ValueError itself
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error: %s", exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": jsonable_errors(exc),
            "message": "Validation error: Please check your request format"
        },
        headers=get_cors_headers(request)
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    headers = get_cors_headers(request)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred"
        },
        headers=get_cors_headers(request)
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)
logger.info("CORS configured for %s origin(s)", len(settings.ALLOWED_ORIGINS))

register_routes(app, settings)


@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "api",
        "db": db_status,
        "trackingProvider": "configured" if settings.TRACKING_MY_API_KEY else "missing_api_key",
        "environment": settings.ENV,
    }


async def _tracking_poll_loop() -> None:
    """Background: refresh active shipments every TRACKING_POLL_INTERVAL_SEC seconds."""
    interval = settings.TRACKING_POLL_INTERVAL_SEC
    logger.info("Tracking poll started (interval=%ss)", interval)
    while True:
        await asyncio.sleep(interval)
        db = None
        try:
            db = SessionLocal()
            result = await sync_active_orders(db, get_client(), limit=settings.TRACKING_POLL_BATCH_SIZE)
            if result.get("synced", 0) > 0 or result.get("errors"):
                logger.info(
                    "Tracking poll: synced=%s advanced=%s errors=%s",
                    result.get("synced", 0), result.get("advanced", 0), len(result.get("errors", [])),
                )
        except Exception as e:
            logger.exception("Tracking poll failed: %s", e)
        finally:
            if db:
                db.close()


@app.on_event("startup")
async def startup_tracking_poll() -> None:
    """Start the background tracking poll when TRACKING_POLL_INTERVAL_SEC > 0."""
    if settings.TRACKING_POLL_INTERVAL_SEC > 0:
        asyncio.create_task(_tracking_poll_loop())


@app.get("/api")
async def root():
    """API root endpoint"""
    return {
        "message": "Campus ShipTrack API",
        "version": "1.0.0",
        "environment": settings.ENV,
        "docs": "/docs" if settings.IS_DEVELOPMENT else "disabled in production"
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
        log_level=settings.LOG_LEVEL.lower()
    )
