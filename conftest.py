import uuid
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reconciler.application.container import ApplicationContainer
from reconciler.core.models import Order, QueuedEvent, WebhookEnvelope
from reconciler.infrastructure.db_schema import metadata
from reconciler.infrastructure.event_queue import EventQueueStore
from reconciler.infrastructure.repositories import OrderRepository
from reconciler.infrastructure.resilient_db import ResilientDatabase
from reconciler.infrastructure.unit_of_work import UnitOfWork
from reconciler.presentation import api

CONFIG_PATH = Path(__file__).parent / "reconciler" / "config.yaml"


@pytest.fixture()
async def container(tmp_path: Path) -> ApplicationContainer:
    container = ApplicationContainer()
    container.config.from_yaml(CONFIG_PATH, required=True)
    container.config.infrastructure.db.dsn.from_value(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    )
    container.config.webhook.signature_key.from_value(None)
    return container


@pytest.fixture()
async def session_factory(
    container: ApplicationContainer,
) -> async_sessionmaker[AsyncSession]:
    return container.infrastructure_container.session_factory()


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fast_api_app(container: ApplicationContainer):
    app = FastAPI()
    app.include_router(api.router)
    container.wire(modules=[api])
    app.container = container
    return app


@pytest_asyncio.fixture(autouse=True)
async def setup_database(container: ApplicationContainer):
    engine = container.infrastructure_container.async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def test_async_client(fast_api_app) -> AsyncClient:
    async with AsyncClient(
        transport=ASGITransport(app=fast_api_app),
        base_url="http://test.com",
    ) as client:
        client.app = fast_api_app
        yield client


@pytest.fixture
def unit_of_work(container: ApplicationContainer) -> UnitOfWork:
    return container.infrastructure_container.unit_of_work()


@pytest.fixture
def resilient_db(container: ApplicationContainer) -> ResilientDatabase:
    return container.infrastructure_container.resilient_db()


@pytest.fixture
def event_queue(container: ApplicationContainer) -> EventQueueStore:
    return container.infrastructure_container.event_queue()


@pytest.fixture
def order_factory(unit_of_work: UnitOfWork):
    """Stores an order the way the checkout flow would."""

    async def _create_order(**kwargs) -> Order:
        defaults = {
            "external_order_id": f"sq-order-{uuid.uuid4().hex[:12]}",
            "items": [{"name": "Catering tray", "quantity": 1, "price": "45.00"}],
            "total": Decimal("45.00"),
        }
        defaults.update(kwargs)
        async with unit_of_work() as uow:
            order = await uow.orders.create(OrderRepository.CreateDTO(**defaults))
            await uow.commit()
        return order

    return _create_order


@pytest.fixture
def envelope_factory():
    def _create_envelope(
        event_type: str, data_id: str, data_object: dict | None = None, **kwargs
    ) -> WebhookEnvelope:
        defaults = {
            "merchant_id": "MERCHANT_1",
            "type": event_type,
            "event_id": str(uuid.uuid4()),
            "created_at": "2024-05-01T12:00:00Z",
            "data": {
                "type": event_type.split(".")[0],
                "id": data_id,
                "object": data_object or {},
            },
        }
        defaults.update(kwargs)
        return WebhookEnvelope.model_validate(defaults)

    return _create_envelope


@pytest.fixture
def queued_event_factory(event_queue: EventQueueStore, envelope_factory):
    """Enqueues a webhook and returns the stored queue row."""

    async def _create_queued_event(
        event_type: str, data_id: str, data_object: dict | None = None, **kwargs
    ) -> QueuedEvent:
        envelope = envelope_factory(event_type, data_id, data_object, **kwargs)
        await event_queue.enqueue(envelope)
        return await event_queue.get(envelope.event_id)

    return _create_queued_event
