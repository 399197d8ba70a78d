from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reconciler.infrastructure.repositories import (
    OrderRepository,
    PaymentRepository,
    RefundRepository,
    WebhookQueueRepository,
)


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                yield _UnitOfWorkImplementation(session)
                # Rollback if commit wasn't explicitly called
                await session.rollback()
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImplementation:
    def __init__(self, session: AsyncSession):
        self._session = session
        self._order_repo = OrderRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._refund_repo = RefundRepository(session)
        self._webhook_queue_repo = WebhookQueueRepository(session)

    @property
    def orders(self) -> OrderRepository:
        return self._order_repo

    @property
    def payments(self) -> PaymentRepository:
        return self._payment_repo

    @property
    def refunds(self) -> RefundRepository:
        return self._refund_repo

    @property
    def webhook_queue(self) -> WebhookQueueRepository:
        return self._webhook_queue_repo

    async def commit(self):
        await self._session.commit()
