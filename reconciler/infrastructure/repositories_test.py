from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.models import (
    Order,
    OrderStatusEnum,
    PaymentStatusEnum,
    QueuedEventStatus,
    RefundStatusEnum,
)
from reconciler.infrastructure.repositories import (
    DoesNotExist,
    OrderRepository,
    PaymentRepository,
    RefundRepository,
    WebhookQueueRepository,
)


@pytest.fixture
async def order_repo(session: AsyncSession) -> OrderRepository:
    return OrderRepository(session)


@pytest.fixture
async def payment_repo(session: AsyncSession) -> PaymentRepository:
    return PaymentRepository(session)


@pytest.fixture
async def refund_repo(session: AsyncSession) -> RefundRepository:
    return RefundRepository(session)


@pytest.fixture
async def webhook_queue_repo(session: AsyncSession) -> WebhookQueueRepository:
    return WebhookQueueRepository(session)


class TestOrderRepository:
    @pytest.mark.asyncio
    async def test_create_order(self, order_repo: OrderRepository):
        # Given
        items = [{"name": "Brunch box", "quantity": 2}]

        # When
        order = await order_repo.create(
            OrderRepository.CreateDTO(
                external_order_id="sq-100", items=items, total=Decimal("31.50")
            )
        )

        # Then
        assert isinstance(order, Order)
        assert order.external_order_id == "sq-100"
        assert order.items == items
        assert order.total == Decimal("31.50")
        assert order.status == OrderStatusEnum.PENDING
        assert order.payment_status == PaymentStatusEnum.PENDING
        assert order.last_event_id is None

    @pytest.mark.asyncio
    async def test_find_by_external_id_returns_none_when_missing(
        self, order_repo: OrderRepository
    ):
        assert await order_repo.find_by_external_id("sq-missing") is None

    @pytest.mark.asyncio
    async def test_get_by_id_raises_when_missing(self, order_repo: OrderRepository):
        with pytest.raises(DoesNotExist):
            await order_repo.get_by_id("missing")

    @pytest.mark.asyncio
    async def test_apply_remote_snapshot(self, order_repo: OrderRepository):
        # Given
        order = await order_repo.create(OrderRepository.CreateDTO(external_order_id="sq-101"))

        # When
        await order_repo.apply_remote_snapshot(
            order_id=order.id,
            status=OrderStatusEnum.COMPLETED,
            raw_data={"state": "COMPLETED"},
            last_event_id="evt-1",
        )

        # Then
        updated = await order_repo.get_by_id(order.id)
        assert updated.status == OrderStatusEnum.COMPLETED
        assert updated.raw_data == {"state": "COMPLETED"}
        assert updated.last_event_id == "evt-1"
        assert updated.payment_status == PaymentStatusEnum.PENDING


class TestPaymentRepository:
    @pytest.mark.asyncio
    async def test_upsert_updates_existing_payment(
        self, order_repo: OrderRepository, payment_repo: PaymentRepository
    ):
        # Given
        order = await order_repo.create(OrderRepository.CreateDTO(external_order_id="sq-200"))
        dto = PaymentRepository.UpsertDTO(
            external_payment_id="pay-200",
            order_id=order.id,
            amount=Decimal("78.01"),
            currency="USD",
            status=PaymentStatusEnum.PENDING,
        )
        created = await payment_repo.upsert(dto)

        # When
        updated = await payment_repo.upsert(
            dto.model_copy(update={"status": PaymentStatusEnum.PAID})
        )

        # Then
        assert updated.id == created.id
        assert updated.status == PaymentStatusEnum.PAID
        assert updated.amount == Decimal("78.01")
        assert updated.order_id == order.id


class TestRefundRepository:
    @pytest.mark.asyncio
    async def test_upsert_refund(
        self,
        order_repo: OrderRepository,
        payment_repo: PaymentRepository,
        refund_repo: RefundRepository,
    ):
        # Given
        order = await order_repo.create(OrderRepository.CreateDTO(external_order_id="sq-300"))
        payment = await payment_repo.upsert(
            PaymentRepository.UpsertDTO(
                external_payment_id="pay-300",
                order_id=order.id,
                amount=Decimal("10.00"),
                status=PaymentStatusEnum.PAID,
            )
        )

        # When
        refund = await refund_repo.upsert(
            RefundRepository.UpsertDTO(
                external_refund_id="ref-300",
                payment_id=payment.id,
                order_id=order.id,
                amount=Decimal("5.00"),
                currency="USD",
                reason="Late delivery",
                status=RefundStatusEnum.PENDING,
            )
        )

        # Then
        assert refund.payment_id == payment.id
        assert refund.order_id == order.id
        assert refund.amount == Decimal("5.00")
        assert refund.reason == "Late delivery"
        assert refund.status == RefundStatusEnum.PENDING


class TestWebhookQueueRepository:
    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row_per_event(
        self, webhook_queue_repo: WebhookQueueRepository
    ):
        # Given
        dto = WebhookQueueRepository.CreateDTO(
            event_id="evt-1", event_type="order.updated", payload={"version": 1}
        )
        await webhook_queue_repo.upsert(dto)
        await webhook_queue_repo.mark_processing("evt-1")

        # When
        await webhook_queue_repo.upsert(
            dto.model_copy(update={"payload": {"version": 2}})
        )

        # Then
        event = await webhook_queue_repo.get_by_id("evt-1")
        counts = await webhook_queue_repo.count_by_status()
        assert event.payload == {"version": 2}
        assert event.status == QueuedEventStatus.PENDING
        assert event.attempts == 0
        assert counts == {QueuedEventStatus.PENDING: 1}
