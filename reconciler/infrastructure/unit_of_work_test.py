import pytest

from reconciler.infrastructure.repositories import (
    OrderRepository,
    PaymentRepository,
    RefundRepository,
    WebhookQueueRepository,
)
from reconciler.infrastructure.unit_of_work import UnitOfWork


class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_provides_repositories(self, unit_of_work: UnitOfWork):
        # Given/When
        async with unit_of_work() as uow:
            # Then
            assert isinstance(uow.orders, OrderRepository)
            assert isinstance(uow.payments, PaymentRepository)
            assert isinstance(uow.refunds, RefundRepository)
            assert isinstance(uow.webhook_queue, WebhookQueueRepository)

    @pytest.mark.asyncio
    async def test_commit_persists_changes(self, unit_of_work: UnitOfWork):
        # Given
        async with unit_of_work() as uow:
            order = await uow.orders.create(
                OrderRepository.CreateDTO(external_order_id="sq-commit")
            )
            await uow.commit()

        # When
        async with unit_of_work() as uow:
            persisted = await uow.orders.get_by_id(order.id)

        # Then
        assert persisted.external_order_id == "sq-commit"

    @pytest.mark.asyncio
    async def test_changes_without_commit_are_rolled_back(self, unit_of_work: UnitOfWork):
        # Given
        async with unit_of_work() as uow:
            await uow.orders.create(OrderRepository.CreateDTO(external_order_id="sq-dropped"))

        # When
        async with unit_of_work() as uow:
            order = await uow.orders.find_by_external_id("sq-dropped")

        # Then
        assert order is None

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, unit_of_work: UnitOfWork):
        # Given/When
        with pytest.raises(RuntimeError):
            async with unit_of_work() as uow:
                await uow.orders.create(
                    OrderRepository.CreateDTO(external_order_id="sq-error")
                )
                raise RuntimeError("handler failed")

        # Then
        async with unit_of_work() as uow:
            assert await uow.orders.find_by_external_id("sq-error") is None
