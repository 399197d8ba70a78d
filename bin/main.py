import asyncio
import logging
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from reconciler.application.container import ApplicationContainer
from reconciler.infrastructure.db_schema import metadata
from reconciler.presentation import api
from reconciler.presentation.api import router
from reconciler.presentation.container import PresentationContainer
from reconciler.presentation.queue_worker import QueueWorker

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "reconciler" / "config.yaml"


def build_api(container: ApplicationContainer):
    app = FastAPI()
    app.include_router(router)
    container.wire(modules=[api])
    return app


async def main():
    presentation_container = PresentationContainer()
    presentation_container.config.from_yaml(CONFIG_PATH, required=True)

    infrastructure = presentation_container.application.infrastructure_container
    engine = infrastructure.async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    commerce_client = infrastructure.commerce_client()
    await commerce_client.start()

    app = build_api(presentation_container.application)
    queue_worker: QueueWorker = presentation_container.queue_worker()

    logger.info("Starting webhook reconciler...")
    api_task = asyncio.create_task(
        uvicorn.Server(
            uvicorn.Config(app, host="0.0.0.0", port=8000, log_level="info")
        ).serve()
    )
    worker_task = asyncio.create_task(queue_worker.run())

    try:
        await asyncio.gather(api_task, worker_task)
    finally:
        worker_task.cancel()
        await commerce_client.stop()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
