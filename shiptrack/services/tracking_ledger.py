"""
Append-only checkpoint ledger (tracking_history).

Rows are write-once per (order_id, tracking_number, checkpoint_time, details).
Writes use the database's own insert-if-absent primitive, so concurrent
writers for the same order converge on the same set of rows. There are no
update or delete operations.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shiptrack.models import TrackingHistory
from shiptrack.services.checkpoint_normalizer import Checkpoint

logger = logging.getLogger(__name__)

INFO_RECEIVED_STATUS = "info_received"
INFO_RECEIVED_DETAILS = "Shipment information received"


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def info_received_checkpoint(now: Optional[datetime] = None) -> Checkpoint:
    return Checkpoint(
        time=now or datetime.now(timezone.utc),
        status=INFO_RECEIVED_STATUS,
        details=INFO_RECEIVED_DETAILS,
        location="",
        raw={"synthetic": True},
    )


class TrackingLedger:
    """Insert-if-absent writes and sorted reads over tracking_history."""

    def __init__(self, db: Session):
        self.db = db

    @property
    def _dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def _row_values(
        self,
        order_id: str,
        tracking_number: str,
        checkpoint: Checkpoint,
        courier_code: Optional[str],
    ) -> dict:
        return {
            "id": str(uuid.uuid4()),
            "order_id": order_id,
            "tracking_number": tracking_number,
            "courier_code": courier_code,
            "status": checkpoint.status,
            "details": checkpoint.details,
            "location": checkpoint.location or "",
            "checkpoint_time": to_naive_utc(checkpoint.time),
            "raw_data": checkpoint.raw or None,
        }

    def _insert_if_absent(self, values: dict) -> bool:
        """True if a row was written, False if the dedup key already existed."""
        table = TrackingHistory.__table__
        dialect = self._dialect
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
            stmt = insert(table).values(**values).on_conflict_do_nothing()
            return self.db.execute(stmt).rowcount > 0
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
            stmt = insert(table).values(**values).on_conflict_do_nothing()
            with self.db.begin_nested():
                return self.db.execute(stmt).rowcount > 0
        try:
            with self.db.begin_nested():
                self.db.add(TrackingHistory(**values))
                self.db.flush()
            return True
        except IntegrityError:
            return False

    def append(
        self,
        order_id: str,
        tracking_number: str,
        checkpoints: Iterable[Checkpoint],
        courier_code: Optional[str] = None,
    ) -> int:
        """
        Insert each checkpoint unless its dedup key is already present.
        An empty batch records a single "info received" row when the order has
        no history yet. A row that fails to write is logged and skipped.
        Returns the number of rows inserted. Does not commit.
        """
        batch = list(checkpoints)
        if not batch:
            if self.count(order_id) > 0:
                return 0
            logger.info("No checkpoints for order %s; recording info-received entry", order_id)
            batch = [info_received_checkpoint()]

        inserted = 0
        for checkpoint in batch:
            values = self._row_values(order_id, tracking_number, checkpoint, courier_code)
            try:
                if self._insert_if_absent(values):
                    inserted += 1
            except SQLAlchemyError as e:
                logger.warning(
                    "Failed to store checkpoint for order %s (%s @ %s): %s",
                    order_id, checkpoint.details, values["checkpoint_time"], e,
                )
        if inserted:
            logger.debug("Stored %s new checkpoint(s) for order %s", inserted, order_id)
        return inserted

    def read_history(self, order_id: str) -> List[TrackingHistory]:
        return (
            self.db.query(TrackingHistory)
            .filter(TrackingHistory.order_id == order_id)
            .order_by(TrackingHistory.checkpoint_time.desc(), TrackingHistory.created_at.desc())
            .all()
        )

    def read_by_tracking_number(self, tracking_number: str, order_id: Optional[str] = None) -> List[TrackingHistory]:
        query = self.db.query(TrackingHistory).filter(TrackingHistory.tracking_number == tracking_number)
        if order_id:
            query = query.filter(TrackingHistory.order_id == order_id)
        return query.order_by(TrackingHistory.checkpoint_time.desc()).all()

    def count(self, order_id: str) -> int:
        return self.db.query(TrackingHistory).filter(TrackingHistory.order_id == order_id).count()

    def latest_checkpoint_time(self, order_id: str) -> Optional[datetime]:
        """Newest stored checkpoint time (naive UTC), or None for an empty ledger."""
        return (
            self.db.query(func.max(TrackingHistory.checkpoint_time))
            .filter(TrackingHistory.order_id == order_id)
            .scalar()
        )


def history_entry_to_dict(entry: TrackingHistory) -> dict:
    """Display shape shared with live checkpoints (time is UTC ISO-8601)."""
    checkpoint_time = entry.checkpoint_time
    if checkpoint_time is not None and checkpoint_time.tzinfo is None:
        checkpoint_time = checkpoint_time.replace(tzinfo=timezone.utc)
    return {
        "id": entry.id,
        "time": checkpoint_time.isoformat() if checkpoint_time else None,
        "status": entry.status,
        "details": entry.details,
        "location": entry.location or "",
        "trackingNumber": entry.tracking_number,
        "courierCode": entry.courier_code,
    }
