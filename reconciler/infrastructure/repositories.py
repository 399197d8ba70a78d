import uuid
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy import Row, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.models import (
    Order,
    OrderStatusEnum,
    Payment,
    PaymentStatusEnum,
    QueuedEvent,
    QueuedEventStatus,
    Refund,
    RefundStatusEnum,
)
from reconciler.infrastructure.db_schema import (
    orders_tbl,
    payments_tbl,
    refunds_tbl,
    webhook_queue_tbl,
)


class DoesNotExist(Exception):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _insert(session: AsyncSession):
    # ON CONFLICT support lives in the dialect-specific insert constructs.
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class OrderRepository:
    class CreateDTO(BaseModel):
        external_order_id: str
        items: list[dict] = []
        total: Decimal = Decimal("0")
        status: OrderStatusEnum = OrderStatusEnum.PENDING
        payment_status: PaymentStatusEnum = PaymentStatusEnum.PENDING

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None) -> Order:
        if row is None:
            raise DoesNotExist

        return Order(
            id=row._mapping["id"],
            external_order_id=row._mapping["external_order_id"],
            status=row._mapping["status"],
            payment_status=row._mapping["payment_status"],
            items=row._mapping["items"],
            total=row._mapping["total"],
            raw_data=row._mapping["raw_data"],
            last_event_id=row._mapping["last_event_id"],
            created_at=row._mapping["created_at"],
            updated_at=row._mapping["updated_at"],
        )

    async def create(self, order: CreateDTO) -> Order:
        order_id = str(uuid.uuid4())
        now = utcnow()
        stmt = orders_tbl.insert().values(
            {
                "id": order_id,
                "external_order_id": order.external_order_id,
                "status": order.status,
                "payment_status": order.payment_status,
                "items": order.items,
                "total": order.total,
                "created_at": now,
                "updated_at": now,
            }
        )
        await self._session.execute(stmt)

        return await self.get_by_id(order_id)

    async def get_by_id(self, order_id: str) -> Order:
        stmt = select(orders_tbl).where(orders_tbl.c.id == order_id)
        result = await self._session.execute(stmt)

        return self._construct(result.fetchone())

    async def find_by_external_id(self, external_order_id: str) -> Order | None:
        stmt = select(orders_tbl).where(
            orders_tbl.c.external_order_id == external_order_id
        )
        result = await self._session.execute(stmt)
        row = result.fetchone()

        if row is None:
            return None

        return self._construct(row)

    async def apply_remote_snapshot(
        self,
        order_id: str,
        status: OrderStatusEnum,
        raw_data: dict,
        last_event_id: str,
    ) -> None:
        stmt = (
            orders_tbl.update()
            .where(orders_tbl.c.id == order_id)
            .values(
                status=status,
                raw_data=raw_data,
                last_event_id=last_event_id,
                updated_at=utcnow(),
            )
        )
        await self._session.execute(stmt)

    async def update_payment_status(
        self, order_id: str, payment_status: PaymentStatusEnum
    ) -> None:
        stmt = (
            orders_tbl.update()
            .where(orders_tbl.c.id == order_id)
            .values(payment_status=payment_status, updated_at=utcnow())
        )
        await self._session.execute(stmt)


class PaymentRepository:
    class UpsertDTO(BaseModel):
        external_payment_id: str
        order_id: str
        amount: Decimal
        currency: str | None = None
        status: PaymentStatusEnum
        raw_data: dict | None = None

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None) -> Payment:
        if row is None:
            raise DoesNotExist

        return Payment(
            id=row._mapping["id"],
            external_payment_id=row._mapping["external_payment_id"],
            order_id=row._mapping["order_id"],
            amount=row._mapping["amount"],
            currency=row._mapping["currency"],
            status=row._mapping["status"],
            raw_data=row._mapping["raw_data"],
            created_at=row._mapping["created_at"],
            updated_at=row._mapping["updated_at"],
        )

    async def find_by_external_id(self, external_payment_id: str) -> Payment | None:
        stmt = select(payments_tbl).where(
            payments_tbl.c.external_payment_id == external_payment_id
        )
        result = await self._session.execute(stmt)
        row = result.fetchone()

        if row is None:
            return None

        return self._construct(row)

    async def upsert(self, payment: UpsertDTO) -> Payment:
        now = utcnow()
        insert = _insert(self._session)
        stmt = insert(payments_tbl).values(
            {
                "id": str(uuid.uuid4()),
                "external_payment_id": payment.external_payment_id,
                "order_id": payment.order_id,
                "amount": payment.amount,
                "currency": payment.currency,
                "status": payment.status,
                "raw_data": payment.raw_data,
                "created_at": now,
                "updated_at": now,
            }
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[payments_tbl.c.external_payment_id],
            set_={
                "amount": stmt.excluded.amount,
                "currency": stmt.excluded.currency,
                "status": stmt.excluded.status,
                "raw_data": stmt.excluded.raw_data,
                "updated_at": now,
            },
        )
        await self._session.execute(stmt)

        return await self.find_by_external_id(payment.external_payment_id)


class RefundRepository:
    class UpsertDTO(BaseModel):
        external_refund_id: str
        payment_id: str
        order_id: str
        amount: Decimal
        currency: str | None = None
        reason: str | None = None
        status: RefundStatusEnum
        raw_data: dict | None = None

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None) -> Refund:
        if row is None:
            raise DoesNotExist

        return Refund(
            id=row._mapping["id"],
            external_refund_id=row._mapping["external_refund_id"],
            payment_id=row._mapping["payment_id"],
            order_id=row._mapping["order_id"],
            amount=row._mapping["amount"],
            currency=row._mapping["currency"],
            reason=row._mapping["reason"],
            status=row._mapping["status"],
            raw_data=row._mapping["raw_data"],
            created_at=row._mapping["created_at"],
            updated_at=row._mapping["updated_at"],
        )

    async def find_by_external_id(self, external_refund_id: str) -> Refund | None:
        stmt = select(refunds_tbl).where(
            refunds_tbl.c.external_refund_id == external_refund_id
        )
        result = await self._session.execute(stmt)
        row = result.fetchone()

        if row is None:
            return None

        return self._construct(row)

    async def upsert(self, refund: UpsertDTO) -> Refund:
        now = utcnow()
        insert = _insert(self._session)
        stmt = insert(refunds_tbl).values(
            {
                "id": str(uuid.uuid4()),
                "external_refund_id": refund.external_refund_id,
                "payment_id": refund.payment_id,
                "order_id": refund.order_id,
                "amount": refund.amount,
                "currency": refund.currency,
                "reason": refund.reason,
                "status": refund.status,
                "raw_data": refund.raw_data,
                "created_at": now,
                "updated_at": now,
            }
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[refunds_tbl.c.external_refund_id],
            set_={
                "amount": stmt.excluded.amount,
                "currency": stmt.excluded.currency,
                "reason": stmt.excluded.reason,
                "status": stmt.excluded.status,
                "raw_data": stmt.excluded.raw_data,
                "updated_at": now,
            },
        )
        await self._session.execute(stmt)

        return await self.find_by_external_id(refund.external_refund_id)


class WebhookQueueRepository:
    class CreateDTO(BaseModel):
        event_id: str
        event_type: str
        payload: dict
        created_at: datetime | None = None

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None) -> QueuedEvent:
        if row is None:
            raise DoesNotExist

        return QueuedEvent(
            event_id=row._mapping["event_id"],
            event_type=row._mapping["event_type"],
            payload=row._mapping["payload"],
            status=row._mapping["status"],
            attempts=row._mapping["attempts"],
            error_message=row._mapping["error_message"],
            created_at=row._mapping["created_at"],
            last_attempt_at=row._mapping["last_attempt_at"],
            processed_at=row._mapping["processed_at"],
        )

    def _values(self, event: CreateDTO) -> dict:
        return {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "payload": event.payload,
            "status": QueuedEventStatus.PENDING,
            "attempts": 0,
            "created_at": event.created_at or utcnow(),
        }

    async def upsert(self, event: CreateDTO) -> None:
        """Insert the event, or reset an existing row with the same event id."""
        insert = _insert(self._session)
        stmt = insert(webhook_queue_tbl).values(self._values(event))
        stmt = stmt.on_conflict_do_update(
            index_elements=[webhook_queue_tbl.c.event_id],
            set_={
                "payload": stmt.excluded.payload,
                "status": QueuedEventStatus.PENDING,
                "attempts": 0,
                "error_message": None,
            },
        )
        await self._session.execute(stmt)

    async def create(self, event: CreateDTO) -> None:
        stmt = webhook_queue_tbl.insert().values(self._values(event))
        await self._session.execute(stmt)

    async def create_if_absent(self, event: CreateDTO) -> bool:
        """Insert the event unless its id is already queued. Returns True when inserted."""
        insert = _insert(self._session)
        stmt = (
            insert(webhook_queue_tbl)
            .values(self._values(event))
            .on_conflict_do_nothing(index_elements=[webhook_queue_tbl.c.event_id])
        )
        result = await self._session.execute(stmt)

        return result.rowcount > 0

    async def get_by_id(self, event_id: str) -> QueuedEvent:
        stmt = select(webhook_queue_tbl).where(webhook_queue_tbl.c.event_id == event_id)
        result = await self._session.execute(stmt)

        return self._construct(result.fetchone())

    async def get_claimable(
        self, limit: int, max_attempts: int, visible_before: datetime
    ) -> list[QueuedEvent]:
        stmt = (
            select(webhook_queue_tbl)
            .where(
                webhook_queue_tbl.c.status.in_(
                    [QueuedEventStatus.PENDING, QueuedEventStatus.FAILED]
                ),
                webhook_queue_tbl.c.attempts < max_attempts,
                webhook_queue_tbl.c.created_at <= visible_before,
            )
            .order_by(webhook_queue_tbl.c.created_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)

        return [self._construct(row) for row in result.fetchall()]

    async def mark_processing(self, event_id: str) -> None:
        stmt = (
            webhook_queue_tbl.update()
            .where(webhook_queue_tbl.c.event_id == event_id)
            .values(
                status=QueuedEventStatus.PROCESSING,
                attempts=webhook_queue_tbl.c.attempts + 1,
                last_attempt_at=utcnow(),
            )
        )
        await self._session.execute(stmt)

    async def mark_completed(self, event_id: str) -> None:
        stmt = (
            webhook_queue_tbl.update()
            .where(webhook_queue_tbl.c.event_id == event_id)
            .values(
                status=QueuedEventStatus.COMPLETED,
                processed_at=utcnow(),
                error_message=None,
            )
        )
        await self._session.execute(stmt)

    async def mark_failed(self, event_id: str, error_message: str) -> None:
        stmt = (
            webhook_queue_tbl.update()
            .where(webhook_queue_tbl.c.event_id == event_id)
            .values(
                status=QueuedEventStatus.FAILED,
                error_message=error_message,
                last_attempt_at=utcnow(),
            )
        )
        await self._session.execute(stmt)

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(webhook_queue_tbl.c.status, func.count()).group_by(
            webhook_queue_tbl.c.status
        )
        result = await self._session.execute(stmt)

        return {status: count for status, count in result.fetchall()}
