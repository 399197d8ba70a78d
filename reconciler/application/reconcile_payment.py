import logging

from reconciler.core.models import Order, Payment, QueuedEvent, WebhookEnvelope
from reconciler.core.money import to_major_units
from reconciler.core.status_rules import map_payment_status, next_payment_status
from reconciler.infrastructure.commerce_client import CommerceApiClient
from reconciler.infrastructure.repositories import PaymentRepository
from reconciler.infrastructure.resilient_db import ResilientDatabase
from reconciler.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class PaymentReconciliationHandler:
    """Maps a `payment.created` / `payment.updated` notification onto the local payment and order rows."""

    def __init__(
        self,
        db: ResilientDatabase,
        commerce_client: CommerceApiClient | None = None,
    ):
        self._db = db
        self._commerce_client = commerce_client

    async def _payment_object(self, envelope: WebhookEnvelope) -> dict:
        payment = envelope.data.object.get("payment") or envelope.data.object
        if not payment.get("order_id") and self._commerce_client is not None:
            payment = await self._commerce_client.retrieve_payment(envelope.data.id)
        return payment

    async def __call__(self, event: QueuedEvent) -> None:
        envelope = WebhookEnvelope.model_validate(event.payload)
        payment = await self._payment_object(envelope)

        external_payment_id = payment.get("id") or envelope.data.id
        external_order_id = payment.get("order_id")
        amount_money = payment.get("amount_money") or {}
        incoming_status = map_payment_status(payment.get("status"))

        async def reconcile(uow: UnitOfWork) -> Payment | None:
            order: Order | None = None
            if external_order_id:
                order = await uow.orders.find_by_external_id(external_order_id)
            if order is None:
                return None

            existing = await uow.payments.find_by_external_id(external_payment_id)
            status = incoming_status
            if existing is not None:
                status = next_payment_status(existing.status, incoming_status)

            saved = await uow.payments.upsert(
                PaymentRepository.UpsertDTO(
                    external_payment_id=external_payment_id,
                    order_id=order.id,
                    amount=to_major_units(amount_money.get("amount")),
                    currency=amount_money.get("currency"),
                    status=status,
                    raw_data=payment,
                )
            )
            await uow.orders.update_payment_status(
                order.id, next_payment_status(order.payment_status, incoming_status)
            )
            return saved

        saved = await self._db.execute_with_retry(
            reconcile, label=f"reconcile payment {external_payment_id}"
        )
        if saved is None:
            logger.warning(
                f"Order {external_order_id} not found for payment {external_payment_id}, skipping"
            )
            return

        logger.info(f"Payment {external_payment_id} reconciled with status: {saved.status}")
