from typing import Callable

from dependency_injector import containers, providers
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from reconciler.infrastructure.circuit_breaker import CircuitBreaker
from reconciler.infrastructure.commerce_client import CommerceApiClient
from reconciler.infrastructure.event_queue import EventQueueStore
from reconciler.infrastructure.resilient_db import ResilientDatabase
from reconciler.infrastructure.unit_of_work import UnitOfWork


class InfrastructureContainer(containers.DeclarativeContainer):
    config = providers.Configuration()
    async_engine = providers.Singleton[AsyncEngine](
        create_async_engine,
        config.db.dsn,
        pool_size=config.db.pool_size,
        pool_recycle=config.db.pool_recycle,
    )
    session_factory: Callable[..., AsyncSession] = providers.Factory(
        sessionmaker, async_engine, expire_on_commit=False, class_=AsyncSession
    )
    unit_of_work = providers.Singleton[UnitOfWork](
        UnitOfWork, session_factory=session_factory
    )
    resilient_db = providers.Singleton[ResilientDatabase](
        ResilientDatabase,
        unit_of_work=unit_of_work,
        engine=async_engine,
        max_attempts=config.db.max_attempts.as_int(),
        base_delay=config.db.base_delay.as_float(),
    )
    event_queue = providers.Singleton[EventQueueStore](
        EventQueueStore,
        db=resilient_db,
        max_attempts=config.queue.max_attempts.as_int(),
    )
    circuit_breaker = providers.Singleton[CircuitBreaker](
        CircuitBreaker,
        failure_threshold=config.circuit_breaker.failure_threshold.as_int(),
        reset_timeout=config.circuit_breaker.reset_timeout.as_float(),
        half_open_requests=config.circuit_breaker.half_open_requests.as_int(),
        service_name="commerce-api",
    )
    commerce_client = providers.Singleton[CommerceApiClient](
        CommerceApiClient,
        base_url=config.commerce_api.base_url,
        access_token=config.commerce_api.access_token,
        circuit_breaker=circuit_breaker,
        api_version=config.commerce_api.api_version,
        timeout=config.commerce_api.timeout.as_float(),
    )
