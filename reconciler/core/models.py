from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class OrderStatusEnum(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatusEnum(StrEnum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class RefundStatusEnum(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


class Order(BaseModel):
    id: str
    external_order_id: str
    status: OrderStatusEnum
    payment_status: PaymentStatusEnum
    items: list[dict]
    total: Decimal
    raw_data: dict | None = None
    last_event_id: str | None = None
    created_at: datetime
    updated_at: datetime


class Payment(BaseModel):
    id: str
    external_payment_id: str
    order_id: str
    amount: Decimal
    currency: str | None = None
    status: PaymentStatusEnum
    raw_data: dict | None = None
    created_at: datetime
    updated_at: datetime


class Refund(BaseModel):
    id: str
    external_refund_id: str
    payment_id: str
    order_id: str
    amount: Decimal
    currency: str | None = None
    reason: str | None = None
    status: RefundStatusEnum
    raw_data: dict | None = None
    created_at: datetime
    updated_at: datetime


class EventTypeEnum(StrEnum):
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    PAYMENT_CREATED = "payment.created"
    PAYMENT_UPDATED = "payment.updated"
    REFUND_CREATED = "refund.created"
    REFUND_UPDATED = "refund.updated"


class QueuedEventStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class QueuedEvent(BaseModel):
    event_id: str
    event_type: str
    payload: dict
    status: QueuedEventStatus
    attempts: int
    error_message: str | None = None
    created_at: datetime
    last_attempt_at: datetime | None = None
    processed_at: datetime | None = None


class WebhookData(BaseModel):
    type: str
    id: str
    object: dict[str, Any] = {}


class WebhookEnvelope(BaseModel):
    """Notification body as delivered by the commerce platform."""

    merchant_id: str
    type: str
    event_id: str
    created_at: datetime
    data: WebhookData


class QueueRunStats(BaseModel):
    processed: int = 0
    failed: int = 0
    skipped: int = 0
