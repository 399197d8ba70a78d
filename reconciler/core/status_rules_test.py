import pytest

from reconciler.core.models import OrderStatusEnum, PaymentStatusEnum, RefundStatusEnum
from reconciler.core.status_rules import (
    map_order_state,
    map_payment_status,
    map_refund_status,
    next_payment_status,
    next_refund_status,
)


@pytest.mark.parametrize(
    "state, expected",
    [
        ("OPEN", OrderStatusEnum.PENDING),
        ("open", OrderStatusEnum.PENDING),
        ("COMPLETED", OrderStatusEnum.COMPLETED),
        ("CANCELED", OrderStatusEnum.CANCELLED),
        ("DRAFT", OrderStatusEnum.PROCESSING),
        (None, OrderStatusEnum.PROCESSING),
    ],
)
def test_map_order_state(state, expected):
    assert map_order_state(state) == expected


@pytest.mark.parametrize(
    "status, expected",
    [
        ("COMPLETED", PaymentStatusEnum.PAID),
        ("CANCELED", PaymentStatusEnum.FAILED),
        ("FAILED", PaymentStatusEnum.FAILED),
        ("APPROVED", PaymentStatusEnum.PENDING),
        (None, PaymentStatusEnum.PENDING),
    ],
)
def test_map_payment_status(status, expected):
    assert map_payment_status(status) == expected


def test_map_refund_status_defaults_to_pending():
    assert map_refund_status("completed") == RefundStatusEnum.COMPLETED
    assert map_refund_status("SOMETHING_NEW") == RefundStatusEnum.PENDING
    assert map_refund_status(None) == RefundStatusEnum.PENDING


def test_next_refund_status_only_leaves_pending():
    assert (
        next_refund_status(RefundStatusEnum.PENDING, RefundStatusEnum.COMPLETED)
        == RefundStatusEnum.COMPLETED
    )
    assert (
        next_refund_status(RefundStatusEnum.COMPLETED, RefundStatusEnum.PENDING)
        == RefundStatusEnum.COMPLETED
    )


class TestNextPaymentStatus:
    def test_pending_moves_forward(self):
        assert (
            next_payment_status(PaymentStatusEnum.PENDING, PaymentStatusEnum.PAID)
            == PaymentStatusEnum.PAID
        )

    def test_paid_is_not_downgraded_by_stale_event(self):
        assert (
            next_payment_status(PaymentStatusEnum.PAID, PaymentStatusEnum.PENDING)
            == PaymentStatusEnum.PAID
        )
        assert (
            next_payment_status(PaymentStatusEnum.PAID, PaymentStatusEnum.FAILED)
            == PaymentStatusEnum.PAID
        )

    def test_paid_can_be_refunded(self):
        assert (
            next_payment_status(PaymentStatusEnum.PAID, PaymentStatusEnum.REFUNDED)
            == PaymentStatusEnum.REFUNDED
        )

    @pytest.mark.parametrize("terminal", [PaymentStatusEnum.REFUNDED, PaymentStatusEnum.FAILED])
    @pytest.mark.parametrize("incoming", list(PaymentStatusEnum))
    def test_terminal_statuses_never_change(self, terminal, incoming):
        assert next_payment_status(terminal, incoming) == terminal
