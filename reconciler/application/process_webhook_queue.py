import asyncio
import logging
from typing import Awaitable, Callable

from reconciler.core.models import EventTypeEnum, QueuedEvent, QueueRunStats
from reconciler.infrastructure.event_queue import EventQueueStore

logger = logging.getLogger(__name__)

Handler = Callable[[QueuedEvent], Awaitable[None]]

DEFAULT_MAX_ITEMS = 50
DEFAULT_TIMEOUT = 55.0


class ProcessWebhookQueueUseCase:
    def __init__(
        self,
        event_queue: EventQueueStore,
        order_created_handler: Handler,
        order_updated_handler: Handler,
        payment_created_handler: Handler,
        payment_updated_handler: Handler,
        refund_handler: Handler,
        max_items: int = DEFAULT_MAX_ITEMS,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._event_queue = event_queue
        self._order_created_handler = order_created_handler
        self._order_updated_handler = order_updated_handler
        self._payment_created_handler = payment_created_handler
        self._payment_updated_handler = payment_updated_handler
        self._refund_handler = refund_handler
        self._max_items = max_items
        self._timeout = timeout

    def route(self, event_type: str) -> Handler | None:
        match event_type:
            case EventTypeEnum.ORDER_CREATED:
                return self._order_created_handler
            case EventTypeEnum.ORDER_UPDATED:
                return self._order_updated_handler
            case EventTypeEnum.PAYMENT_CREATED:
                return self._payment_created_handler
            case EventTypeEnum.PAYMENT_UPDATED:
                return self._payment_updated_handler
            case EventTypeEnum.REFUND_CREATED | EventTypeEnum.REFUND_UPDATED:
                return self._refund_handler
            case _:
                return None

    async def __call__(
        self, max_items: int | None = None, timeout: float | None = None
    ) -> QueueRunStats:
        """
        Claim a batch of visible events and run each one through its handler.

        A handler error or timeout marks only that event FAILED and the batch
        moves on; it is claimed again on a later run until the attempt budget
        is spent. Unknown event types are completed without handling.
        """
        max_items = max_items or self._max_items
        timeout = timeout or self._timeout
        stats = QueueRunStats()

        events = await self._event_queue.claim_batch(max_items)
        if not events:
            return stats

        logger.info(f"Processing {len(events)} queued webhooks")

        for event in events:
            handler = self.route(event.event_type)
            try:
                if handler is None:
                    logger.info(f"Skipping unsupported webhook type: {event.event_type}")
                    await self._event_queue.mark_completed(event.event_id)
                    stats.skipped += 1
                    continue

                await self._process(event, handler, timeout)
                stats.processed += 1
            except Exception as e:
                logger.error(f"Failed to process webhook {event.event_id}: {e}")
                try:
                    await self._event_queue.mark_failed(event.event_id, e)
                except Exception as mark_error:
                    logger.error(
                        f"Failed to mark webhook {event.event_id} as failed: {mark_error}"
                    )
                stats.failed += 1

        logger.info(
            f"Webhook queue run finished: {stats.processed} processed, "
            f"{stats.failed} failed, {stats.skipped} skipped"
        )
        return stats

    async def _process(self, event: QueuedEvent, handler: Handler, timeout: float) -> None:
        try:
            async with asyncio.timeout(timeout) as scope:
                await self._event_queue.mark_processing(event.event_id)
                await handler(event)
                await self._event_queue.mark_completed(event.event_id)
        except TimeoutError:
            if scope.expired():
                raise TimeoutError(f"Webhook processing timeout after {timeout}s")
            raise
