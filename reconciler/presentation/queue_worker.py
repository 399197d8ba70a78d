import asyncio
import logging

from reconciler.application.process_webhook_queue import ProcessWebhookQueueUseCase

logger = logging.getLogger(__name__)


class QueueWorker:
    """Drains the webhook queue on a fixed interval, standing in for an external scheduler."""

    def __init__(self, use_case: ProcessWebhookQueueUseCase, interval: float = 60.0):
        self._use_case = use_case
        self._interval = interval

    async def run_once(self):
        try:
            return await self._use_case()
        except Exception as e:
            logger.error(f"Webhook queue run failed: {e}", exc_info=True)
            return None

    async def run(self):
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)
