import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from pydantic import ValidationError
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncEngine

from reconciler.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0

TRANSIENT_ERROR_MESSAGES = (
    "connection pool timeout",
    "timed out fetching a new connection",
    "queuepool limit",
    "can't reach database server",
    "statement timeout",
    "canceling statement due to statement timeout",
    "connection terminated unexpectedly",
    "connection is closed",
    "server closed the connection unexpectedly",
    "econnreset",
    "econnrefused",
    "etimedout",
    "database is locked",
)


def is_transient_error(error: BaseException) -> bool:
    if isinstance(error, (sa_exc.IntegrityError, ValidationError)):
        return False
    if isinstance(error, (sa_exc.TimeoutError, sa_exc.InterfaceError, ConnectionError)):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True

    message = str(error).lower()
    return any(fragment in message for fragment in TRANSIENT_ERROR_MESSAGES)


class ResilientDatabase:
    """
    Runs store operations inside a fresh unit of work and retries them when the
    failure looks like a transient infrastructure problem.

    Every attempt gets its own session, so concurrent callers retry
    independently. Between attempts the engine's pool is disposed and the
    caller waits ``base_delay * 2 ** attempt`` seconds. Anything that is not
    transient, or the last transient failure, is re-raised unchanged.
    """

    def __init__(
        self,
        unit_of_work: UnitOfWork,
        engine: AsyncEngine | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._unit_of_work = unit_of_work
        self._engine = engine
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    async def execute_with_retry(
        self,
        operation: Callable[..., Awaitable[T]],
        max_attempts: int | None = None,
        label: str | None = None,
    ) -> T:
        max_attempts = max_attempts or self._max_attempts
        label = label or getattr(operation, "__name__", "database operation")

        attempt = 1
        while True:
            try:
                async with self._unit_of_work() as uow:
                    result = await operation(uow)
                    await uow.commit()
                    if attempt > 1:
                        logger.info(f"{label} succeeded on attempt {attempt}")
                    return result
            except Exception as e:
                if not is_transient_error(e) or attempt >= max_attempts:
                    raise

                delay = self._base_delay * 2**attempt
                logger.warning(
                    f"Transient error in {label} "
                    f"(attempt {attempt}/{max_attempts}), retrying in {delay}s: {e}"
                )
                await self._reset_connection()
                await self._sleep(delay)
                attempt += 1

    async def _reset_connection(self) -> None:
        if self._engine is None:
            return
        try:
            await self._engine.dispose()
        except Exception as e:
            logger.warning(f"Failed to reset database connection pool: {e}")
