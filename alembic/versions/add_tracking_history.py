"""add orders, tracking_history and webhook_events tables

Revision ID: add_tracking_history
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = "add_tracking_history"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        op.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR NOT NULL PRIMARY KEY,
                order_number VARCHAR,
                status VARCHAR NOT NULL DEFAULT 'PENDING',
                payment_status VARCHAR NOT NULL DEFAULT 'PENDING',
                tracking_number VARCHAR,
                courier_code VARCHAR,
                courier_name VARCHAR,
                short_link VARCHAR,
                detailed_tracking_status VARCHAR(500),
                shipped_at TIMESTAMP,
                delivered_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_orders_order_number ON orders (order_number)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_orders_tracking_number ON orders (tracking_number)")
        op.execute("""
            CREATE TABLE IF NOT EXISTS tracking_history (
                id VARCHAR NOT NULL PRIMARY KEY,
                order_id VARCHAR NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                tracking_number VARCHAR NOT NULL,
                courier_code VARCHAR,
                status VARCHAR,
                details TEXT NOT NULL,
                location VARCHAR,
                checkpoint_time TIMESTAMP NOT NULL,
                raw_data JSONB,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT uq_tracking_history_checkpoint
                    UNIQUE (order_id, tracking_number, checkpoint_time, details)
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_tracking_history_order_id ON tracking_history (order_id)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_tracking_history_tracking_number ON tracking_history (tracking_number)")
        op.execute("""
            CREATE TABLE IF NOT EXISTS webhook_events (
                id VARCHAR NOT NULL PRIMARY KEY,
                source VARCHAR NOT NULL,
                topic VARCHAR NOT NULL,
                tracking_number VARCHAR,
                payload_summary VARCHAR,
                processed_at TIMESTAMP,
                error VARCHAR,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_webhook_events_topic ON webhook_events (topic)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_webhook_events_tracking_number ON webhook_events (tracking_number)")
    else:
        op.create_table(
            "orders",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("order_number", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
            sa.Column("payment_status", sa.String(), nullable=False, server_default="PENDING"),
            sa.Column("tracking_number", sa.String(), nullable=True),
            sa.Column("courier_code", sa.String(), nullable=True),
            sa.Column("courier_name", sa.String(), nullable=True),
            sa.Column("short_link", sa.String(), nullable=True),
            sa.Column("detailed_tracking_status", sa.String(500), nullable=True),
            sa.Column("shipped_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_orders_order_number", "orders", ["order_number"])
        op.create_index("ix_orders_tracking_number", "orders", ["tracking_number"])
        op.create_table(
            "tracking_history",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("order_id", sa.String(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
            sa.Column("tracking_number", sa.String(), nullable=False),
            sa.Column("courier_code", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("details", sa.Text(), nullable=False),
            sa.Column("location", sa.String(), nullable=True),
            sa.Column("checkpoint_time", sa.DateTime(), nullable=False),
            sa.Column("raw_data", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "order_id", "tracking_number", "checkpoint_time", "details",
                name="uq_tracking_history_checkpoint",
            ),
        )
        op.create_index("ix_tracking_history_order_id", "tracking_history", ["order_id"])
        op.create_index("ix_tracking_history_tracking_number", "tracking_history", ["tracking_number"])
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("topic", sa.String(), nullable=False),
            sa.Column("tracking_number", sa.String(), nullable=True),
            sa.Column("payload_summary", sa.String(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("error", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_webhook_events_topic", "webhook_events", ["topic"])
        op.create_index("ix_webhook_events_tracking_number", "webhook_events", ["tracking_number"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("tracking_history")
    op.drop_table("orders")
