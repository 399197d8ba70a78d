import uuid

from sqlalchemy import (
    DECIMAL,
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    func,
)

metadata = MetaData()


def _uuid() -> str:
    return str(uuid.uuid4())


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", Text, primary_key=True, default=_uuid),
    Column("external_order_id", Text, nullable=False, unique=True, index=True),
    Column("status", Text, nullable=False),
    Column("payment_status", Text, nullable=False),
    Column("items", JSON, nullable=False),
    Column("total", DECIMAL(10, 2), nullable=False),
    Column("raw_data", JSON, nullable=True),
    Column("last_event_id", Text, nullable=True),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

payments_tbl = Table(
    "payments",
    metadata,
    Column("id", Text, primary_key=True, default=_uuid),
    Column("external_payment_id", Text, nullable=False, unique=True, index=True),
    Column("order_id", Text, ForeignKey("orders.id"), nullable=False),
    Column("amount", DECIMAL(10, 2), nullable=False),
    Column("currency", Text, nullable=True),
    Column("status", Text, nullable=False),
    Column("raw_data", JSON, nullable=True),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

refunds_tbl = Table(
    "refunds",
    metadata,
    Column("id", Text, primary_key=True, default=_uuid),
    Column("external_refund_id", Text, nullable=False, unique=True, index=True),
    Column("payment_id", Text, ForeignKey("payments.id"), nullable=False),
    Column("order_id", Text, ForeignKey("orders.id"), nullable=False),
    Column("amount", DECIMAL(10, 2), nullable=False),
    Column("currency", Text, nullable=True),
    Column("reason", Text, nullable=True),
    Column("status", Text, nullable=False),
    Column("raw_data", JSON, nullable=True),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

webhook_queue_tbl = Table(
    "webhook_queue",
    metadata,
    Column("event_id", Text, primary_key=True),
    Column("event_type", Text, nullable=False),
    Column("payload", JSON, nullable=False),
    Column("status", Text, nullable=False),
    Column("attempts", Integer, nullable=False, default=0),
    Column("error_message", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("last_attempt_at", DateTime, nullable=True),
    Column("processed_at", DateTime, nullable=True),
    Index("ix_webhook_queue_claim", "status", "attempts", "created_at"),
)
