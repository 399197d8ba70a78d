import asyncio
import logging
import time
from enum import StrEnum
from typing import Awaitable, Callable, TypeVar

import httpx
from pydantic import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    def __init__(self, service_name: str, state: CircuitState = CircuitState.OPEN):
        super().__init__("Circuit is open")
        self.service_name = service_name
        self.state = state


def is_circuit_open_error(value: object) -> bool:
    return isinstance(value, CircuitOpenError)


def default_failure_classifier(error: BaseException) -> bool:
    """
    Return True when `error` should count toward opening the circuit.

    Authentication and other client-side (4xx) responses say nothing about the
    health of the remote service, so only 5xx, rate limiting, transport and
    unclassified errors are counted.
    """
    if isinstance(error, (ValidationError, ValueError)):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
    else:
        status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return status_code >= 500 or status_code == 429
    return True


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_requests: int = 1,
        service_name: str = "commerce-api",
        is_failure: Callable[[BaseException], bool] = default_failure_classifier,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._half_open_requests = half_open_requests
        self._service_name = service_name
        self._is_failure = is_failure
        self._clock = clock
        self.reset()

    @property
    def state(self) -> CircuitState:
        return self._state

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._half_open_attempts = 0
        self._opened_at: float | None = None
        self._last_failure_time: float | None = None
        self._last_success_time: float | None = None

    def stats(self) -> dict:
        return {
            "service_name": self._service_name,
            "state": self._state,
            "failures": self._failures,
            "successes": self._successes,
            "consecutive_failures": self._consecutive_failures,
            "consecutive_successes": self._consecutive_successes,
            "half_open_attempts": self._half_open_attempts,
            "last_failure_time": self._last_failure_time,
            "last_success_time": self._last_success_time,
        }

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        self._before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._release_trial()
            raise
        except Exception as e:
            self._on_error(e)
            raise
        self._on_success()
        return result

    def _before_call(self) -> None:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at < self._reset_timeout:
                raise CircuitOpenError(self._service_name, CircuitState.OPEN)
            self._state = CircuitState.HALF_OPEN
            self._half_open_attempts = 0
            self._consecutive_successes = 0
            logger.info(f"Circuit for {self._service_name} is half-open")

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_attempts >= self._half_open_requests:
                raise CircuitOpenError(self._service_name, CircuitState.HALF_OPEN)
            self._half_open_attempts += 1

    def _on_success(self) -> None:
        self._successes += 1
        self._consecutive_failures = 0
        self._consecutive_successes += 1
        self._last_success_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            if self._consecutive_successes >= self._half_open_requests:
                logger.info(f"Circuit for {self._service_name} closed")
                self._state = CircuitState.CLOSED
                self._half_open_attempts = 0
                self._opened_at = None
            else:
                # Free the trial slot for the next trial call.
                self._half_open_attempts -= 1

    def _on_error(self, error: Exception) -> None:
        if not self._is_failure(error):
            self._release_trial()
            return

        self._failures += 1
        self._consecutive_failures += 1
        self._consecutive_successes = 0
        self._last_failure_time = self._clock()

        if (
            self._state == CircuitState.HALF_OPEN
            or self._consecutive_failures >= self._failure_threshold
        ):
            self._open()

    def _release_trial(self) -> None:
        # A call that ended without a verdict gives its half-open slot back.
        if self._state == CircuitState.HALF_OPEN and self._half_open_attempts > 0:
            self._half_open_attempts -= 1

    def _open(self) -> None:
        logger.warning(
            f"Circuit for {self._service_name} opened after "
            f"{self._consecutive_failures} consecutive failures"
        )
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_attempts = 0
