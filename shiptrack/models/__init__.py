"""
SQLAlchemy models for orders, the checkpoint ledger and webhook audit rows.
All model and enum definitions live here to avoid circular imports.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SQLEnum, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from shiptrack.database import Base
import enum
import uuid

# Enums
class OrderStatus(str, enum.Enum):
    """Coarse, tracking-derived order lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, enum.Enum):
    """Payment axis. Shares the "pending" label with OrderStatus but is never compared with it."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

# Models
class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number = Column("order_number", String, nullable=True, index=True)
    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    payment_status = Column("payment_status", SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    tracking_number = Column("tracking_number", String, nullable=True, index=True)
    courier_code = Column("courier_code", String, nullable=True)
    courier_name = Column("courier_name", String, nullable=True)
    short_link = Column("short_link", String, nullable=True)
    detailed_tracking_status = Column("detailed_tracking_status", String, nullable=True)
    shipped_at = Column("shipped_at", DateTime, nullable=True)
    delivered_at = Column("delivered_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    tracking_history = relationship(
        "TrackingHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TrackingHistory(Base):
    """One persisted checkpoint. Write-once per (order_id, tracking_number, checkpoint_time, details)."""
    __tablename__ = "tracking_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    tracking_number = Column("tracking_number", String, nullable=False, index=True)
    courier_code = Column("courier_code", String, nullable=True)
    status = Column("status", String, nullable=True)
    details = Column("details", Text, nullable=False)
    location = Column("location", String, nullable=True)
    # Naive UTC
    checkpoint_time = Column("checkpoint_time", DateTime, nullable=False, index=True)
    raw_data = Column("raw_data", JSON, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    order = relationship("Order", back_populates="tracking_history")

    __table_args__ = (
        UniqueConstraint(
            "order_id",
            "tracking_number",
            "checkpoint_time",
            "details",
            name="uq_tracking_history_checkpoint",
        ),
    )


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    source = Column("source", String, nullable=False, index=True)
    topic = Column("topic", String, nullable=False, index=True)
    tracking_number = Column("tracking_number", String, nullable=True, index=True)
    payload_summary = Column("payload_summary", String, nullable=True)
    processed_at = Column("processed_at", DateTime, nullable=True)
    error = Column("error", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
