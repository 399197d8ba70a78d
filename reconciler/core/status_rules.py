from reconciler.core.models import OrderStatusEnum, PaymentStatusEnum, RefundStatusEnum

# Payment status only ever moves forward; PAID can still become REFUNDED.
PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatusEnum, set[PaymentStatusEnum]] = {
    PaymentStatusEnum.PENDING: {
        PaymentStatusEnum.PAID,
        PaymentStatusEnum.FAILED,
        PaymentStatusEnum.REFUNDED,
    },
    PaymentStatusEnum.PAID: {PaymentStatusEnum.REFUNDED},
    PaymentStatusEnum.FAILED: set(),
    PaymentStatusEnum.REFUNDED: set(),
}


def map_order_state(state: str | None) -> OrderStatusEnum:
    match (state or "").upper():
        case "OPEN":
            return OrderStatusEnum.PENDING
        case "COMPLETED":
            return OrderStatusEnum.COMPLETED
        case "CANCELED":
            return OrderStatusEnum.CANCELLED
        case _:
            return OrderStatusEnum.PROCESSING


def map_payment_status(status: str | None) -> PaymentStatusEnum:
    match (status or "").upper():
        case "COMPLETED":
            return PaymentStatusEnum.PAID
        case "CANCELED" | "FAILED":
            return PaymentStatusEnum.FAILED
        case _:
            return PaymentStatusEnum.PENDING


def map_refund_status(status: str | None) -> RefundStatusEnum:
    try:
        return RefundStatusEnum((status or "").upper())
    except ValueError:
        return RefundStatusEnum.PENDING


def next_refund_status(
    current: RefundStatusEnum, incoming: RefundStatusEnum
) -> RefundStatusEnum:
    if current != RefundStatusEnum.PENDING:
        return current
    return incoming


def next_payment_status(
    current: PaymentStatusEnum, incoming: PaymentStatusEnum
) -> PaymentStatusEnum:
    """
    Resolve the payment status to persist when a webhook maps to `incoming`.
    A move the transition table does not allow keeps `current`, so a stale or
    duplicated event can never regress an order that already advanced.
    """
    if incoming in PAYMENT_STATUS_TRANSITIONS[current]:
        return incoming
    return current
