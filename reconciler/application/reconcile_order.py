import asyncio
import logging
import random
from typing import Awaitable, Callable

from reconciler.core.models import Order, QueuedEvent, WebhookData, WebhookEnvelope
from reconciler.core.status_rules import map_order_state
from reconciler.infrastructure.commerce_client import CommerceApiClient
from reconciler.infrastructure.event_queue import EventQueueStore
from reconciler.infrastructure.resilient_db import ResilientDatabase

logger = logging.getLogger(__name__)

ORDER_LOOKUP_MAX_ATTEMPTS = 5
ORDER_LOOKUP_BASE_DELAY = 1.0
ORDER_LOOKUP_MAX_DELAY = 30.0
ORDER_LOOKUP_MAX_JITTER = 0.5
RESCHEDULE_DELAY = 30.0


def extract_order_snapshot(data: WebhookData) -> dict:
    for key in ("order_updated", "order_created", "order"):
        if isinstance(data.object.get(key), dict):
            return data.object[key]
    return data.object


class _OrderReconciler:
    def __init__(
        self,
        db: ResilientDatabase,
        commerce_client: CommerceApiClient | None = None,
    ):
        self._db = db
        self._commerce_client = commerce_client

    async def _find_order(self, external_order_id: str) -> Order | None:
        return await self._db.execute_with_retry(
            lambda uow: uow.orders.find_by_external_id(external_order_id),
            label=f"find order {external_order_id}",
        )

    async def _remote_state(self, envelope: WebhookEnvelope) -> str | None:
        state = extract_order_snapshot(envelope.data).get("state")
        if state is None and self._commerce_client is not None:
            remote_order = await self._commerce_client.retrieve_order(envelope.data.id)
            state = remote_order.get("state")
        return state

    async def _apply(self, order: Order, envelope: WebhookEnvelope) -> None:
        status = map_order_state(await self._remote_state(envelope))
        await self._db.execute_with_retry(
            lambda uow: uow.orders.apply_remote_snapshot(
                order_id=order.id,
                status=status,
                raw_data=envelope.data.object,
                last_event_id=envelope.event_id,
            ),
            label=f"update order {order.id}",
        )
        logger.info(f"Order {envelope.data.id} updated to status: {status}")


class OrderCreatedHandler(_OrderReconciler):
    """
    Applies the remote snapshot of a newly created order to the local row the
    checkout flow wrote. Orders are never created from here.
    """

    async def __call__(self, event: QueuedEvent) -> None:
        envelope = WebhookEnvelope.model_validate(event.payload)

        order = await self._find_order(envelope.data.id)
        if order is None:
            logger.warning(
                f"Order {envelope.data.id} not found for order.created, "
                f"leaving it to the checkout flow"
            )
            return

        if order.last_event_id == envelope.event_id:
            logger.info(f"Event {envelope.event_id} already applied to order {order.id}")
            return

        await self._apply(order, envelope)


class OrderUpdatedHandler(_OrderReconciler):
    """
    Reconciles `order.updated`, which regularly arrives before the checkout
    flow has committed the local order.

    The lookup is retried with capped exponential backoff plus jitter. When the
    budget runs out the event is rescheduled as a new queue row that becomes
    visible after `reschedule_delay` seconds, and this delivery counts as
    handled.
    """

    def __init__(
        self,
        db: ResilientDatabase,
        event_queue: EventQueueStore,
        commerce_client: CommerceApiClient | None = None,
        max_attempts: int = ORDER_LOOKUP_MAX_ATTEMPTS,
        reschedule_delay: float = RESCHEDULE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        super().__init__(db, commerce_client)
        self._event_queue = event_queue
        self._max_attempts = max_attempts
        self._reschedule_delay = reschedule_delay
        self._sleep = sleep
        self._jitter = jitter

    def lookup_delay(self, attempt: int) -> float:
        backoff = min(ORDER_LOOKUP_BASE_DELAY * 2**attempt, ORDER_LOOKUP_MAX_DELAY)
        return backoff + self._jitter(0, ORDER_LOOKUP_MAX_JITTER)

    async def _find_order_with_backoff(self, external_order_id: str) -> Order | None:
        for attempt in range(self._max_attempts):
            order = await self._find_order(external_order_id)
            if order is not None:
                return order

            if attempt < self._max_attempts - 1:
                delay = self.lookup_delay(attempt)
                logger.info(
                    f"Order {external_order_id} not found "
                    f"(attempt {attempt + 1}/{self._max_attempts}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        return None

    async def __call__(self, event: QueuedEvent) -> None:
        envelope = WebhookEnvelope.model_validate(event.payload)

        order = await self._find_order_with_backoff(envelope.data.id)
        if order is None:
            logger.warning(
                f"Order {envelope.data.id} not found after {self._max_attempts} attempts, "
                f"rescheduling {event.event_id}"
            )
            await self._event_queue.reschedule(event, self._reschedule_delay)
            return

        await self._apply(order, envelope)
