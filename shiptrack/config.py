"""
Application configuration with automatic environment detection
"""
import os
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings with automatic environment detection"""

    # Environment detection
    ENV = os.getenv("ENV", "DEV").upper()
    IS_PRODUCTION = ENV == "PROD" or ENV == "PRODUCTION"
    IS_DEVELOPMENT = not IS_PRODUCTION

    # Server configuration
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", 8000))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shiptrack.db")

    # tracking.my courier-tracking provider
    TRACKING_MY_API_KEY = os.getenv("TRACKING_MY_API_KEY", "")
    TRACKING_MY_BASE_URL = os.getenv("TRACKING_MY_BASE_URL", "https://seller.tracking.my/api/v1")
    # Every provider call is bounded; a timeout counts as a failed call
    TRACKING_HTTP_TIMEOUT = float(os.getenv("TRACKING_HTTP_TIMEOUT", "15"))
    TRACKING_HTTP_RETRIES = int(os.getenv("TRACKING_HTTP_RETRIES", "2"))

    # Webhook simulation is for environments without real webhook delivery
    ENABLE_WEBHOOK_SIMULATION = _env_flag("ENABLE_WEBHOOK_SIMULATION", IS_DEVELOPMENT)

    # Optional background refresh of active shipments (0 = disabled)
    TRACKING_POLL_INTERVAL_SEC = int(os.getenv("TRACKING_POLL_INTERVAL_SEC", "0"))
    TRACKING_POLL_BATCH_SIZE = int(os.getenv("TRACKING_POLL_BATCH_SIZE", "100"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG")

    # API Configuration
    API_PREFIX = "/api"

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """Allowed CORS origins: localhost in development plus ALLOWED_ORIGINS (comma-separated)."""
        origins = []
        if self.IS_DEVELOPMENT:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])
        for origin in os.getenv("ALLOWED_ORIGINS", "").split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
        return origins

    def __str__(self):
        return f"Settings(ENV={self.ENV}, IS_PRODUCTION={self.IS_PRODUCTION})"

# Global settings instance
settings = Settings()
