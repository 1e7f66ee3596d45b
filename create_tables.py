"""
Create the orders, tracking_history and webhook_events tables from the SQLAlchemy models.
Use on a fresh database instead of `alembic upgrade head` when migrations are not wired up.
"""
import logging

from shiptrack.database import engine, Base
from shiptrack import models  # noqa: F401 - register all models with Base

logging.basicConfig(level=logging.INFO)
Base.metadata.create_all(bind=engine)
logging.getLogger(__name__).info("Tables created (or already exist): %s", ", ".join(sorted(Base.metadata.tables)))
