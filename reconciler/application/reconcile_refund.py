import logging

from reconciler.core.models import (
    PaymentStatusEnum,
    QueuedEvent,
    Refund,
    RefundStatusEnum,
    WebhookEnvelope,
)
from reconciler.core.money import to_major_units
from reconciler.core.status_rules import (
    map_refund_status,
    next_payment_status,
    next_refund_status,
)
from reconciler.infrastructure.repositories import RefundRepository
from reconciler.infrastructure.resilient_db import ResilientDatabase
from reconciler.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class RefundReconciliationHandler:
    def __init__(self, db: ResilientDatabase):
        self._db = db

    async def __call__(self, event: QueuedEvent) -> None:
        envelope = WebhookEnvelope.model_validate(event.payload)
        refund = envelope.data.object.get("refund") or envelope.data.object

        external_refund_id = refund.get("id") or envelope.data.id
        external_payment_id = refund.get("payment_id")
        amount_money = refund.get("amount_money") or {}
        incoming_status = map_refund_status(refund.get("status"))

        async def reconcile(uow: UnitOfWork) -> Refund | None:
            if not external_payment_id:
                return None
            payment = await uow.payments.find_by_external_id(external_payment_id)
            if payment is None:
                return None
            order = await uow.orders.get_by_id(payment.order_id)

            existing = await uow.refunds.find_by_external_id(external_refund_id)
            status = incoming_status
            if existing is not None:
                status = next_refund_status(existing.status, incoming_status)

            saved = await uow.refunds.upsert(
                RefundRepository.UpsertDTO(
                    external_refund_id=external_refund_id,
                    payment_id=payment.id,
                    order_id=order.id,
                    amount=to_major_units(amount_money.get("amount")),
                    currency=amount_money.get("currency"),
                    reason=refund.get("reason"),
                    status=status,
                    raw_data=refund,
                )
            )
            if saved.status == RefundStatusEnum.COMPLETED:
                await uow.orders.update_payment_status(
                    order.id,
                    next_payment_status(order.payment_status, PaymentStatusEnum.REFUNDED),
                )
            return saved

        saved = await self._db.execute_with_retry(
            reconcile, label=f"reconcile refund {external_refund_id}"
        )
        if saved is None:
            logger.warning(
                f"Payment {external_payment_id} not found for refund {external_refund_id}, skipping"
            )
            return

        logger.info(f"Refund {external_refund_id} reconciled with status: {saved.status}")
