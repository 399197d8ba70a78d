import logging
import time
from datetime import timedelta

from reconciler.core.models import QueuedEvent, WebhookEnvelope
from reconciler.infrastructure.repositories import WebhookQueueRepository, utcnow
from reconciler.infrastructure.resilient_db import ResilientDatabase

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
RETRY_ID_SUFFIX = "-retry-"


class EventQueueStore:
    """
    Durable queue of inbound webhooks, one row per external event id.

    Every write is a single-row statement in its own transaction, so
    overlapping dispatcher runs never hold locks across rows.
    """

    def __init__(self, db: ResilientDatabase, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._db = db
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def enqueue(self, envelope: WebhookEnvelope, payload: dict | None = None) -> None:
        """
        Queue a validated webhook. `payload` is the body exactly as delivered;
        fields the envelope model does not know about are kept there.
        """
        dto = WebhookQueueRepository.CreateDTO(
            event_id=envelope.event_id,
            event_type=envelope.type,
            payload=payload if payload is not None else envelope.model_dump(mode="json"),
        )
        await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.upsert(dto),
            label=f"enqueue {envelope.event_id}",
        )
        logger.info(f"Webhook queued: {envelope.type} {envelope.event_id}")

    async def claim_batch(
        self, max_items: int, max_attempts: int | None = None
    ) -> list[QueuedEvent]:
        """
        Oldest visible events first. Rows are not locked or marked here; the
        dispatcher marks each one right before handling it, and handlers are
        idempotent for the rare event two overlapping runs both pick up.
        """
        return await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.get_claimable(
                limit=max_items,
                max_attempts=max_attempts or self._max_attempts,
                visible_before=utcnow(),
            ),
            label="claim webhook batch",
        )

    async def mark_processing(self, event_id: str) -> None:
        await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.mark_processing(event_id),
            label=f"mark {event_id} processing",
        )

    async def mark_completed(self, event_id: str) -> None:
        await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.mark_completed(event_id),
            label=f"mark {event_id} completed",
        )

    async def mark_failed(self, event_id: str, error: BaseException | str) -> None:
        await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.mark_failed(event_id, str(error)),
            label=f"mark {event_id} failed",
        )

    async def reschedule(self, event: QueuedEvent, delay: float) -> str:
        """
        Queue a fresh copy of `event` that becomes visible after `delay` seconds.

        Copies of copies keep the first event id as their base, so ids do not
        grow along the chain. A copy scheduled in the same millisecond as an
        existing one is dropped in favour of it.
        """
        now = utcnow()
        base_id = event.event_id.split(RETRY_ID_SUFFIX)[0]
        retry_id = f"{base_id}{RETRY_ID_SUFFIX}{int(time.time() * 1000)}"
        dto = WebhookQueueRepository.CreateDTO(
            event_id=retry_id,
            event_type=event.event_type,
            payload=event.payload,
            created_at=now + timedelta(seconds=delay),
        )
        inserted = await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.create_if_absent(dto),
            label=f"reschedule {event.event_id}",
        )
        if inserted:
            logger.info(f"Webhook {event.event_id} rescheduled as {retry_id} in {delay}s")
        else:
            logger.info(f"Webhook {event.event_id} already rescheduled as {retry_id}")
        return retry_id

    async def get(self, event_id: str) -> QueuedEvent:
        return await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.get_by_id(event_id),
            label=f"get {event_id}",
        )

    async def counts(self) -> dict[str, int]:
        return await self._db.execute_with_retry(
            lambda uow: uow.webhook_queue.count_by_status(),
            label="count webhook queue",
        )
