import logging
from typing import Any

import httpx

from reconciler.infrastructure.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class CommerceApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"Commerce API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class CommerceApiClient:
    """Read-only client for the commerce platform, guarded by a circuit breaker."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None,
        circuit_breaker: CircuitBreaker,
        api_version: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url
        self._access_token = access_token or ""
        self._circuit_breaker = circuit_breaker
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self):
        """Open the underlying HTTP connection pool"""
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }
        if self._api_version:
            headers["Square-Version"] = self._api_version
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def stop(self):
        """Close the underlying HTTP connection pool"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def retrieve_order(self, order_id: str) -> dict[str, Any]:
        body = await self._get(f"/v2/orders/{order_id}")
        return body.get("order", {})

    async def retrieve_payment(self, payment_id: str) -> dict[str, Any]:
        body = await self._get(f"/v2/payments/{payment_id}")
        return body.get("payment", {})

    async def _get(self, path: str) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Client is not started. Call start() first.")

        async def _request() -> dict[str, Any]:
            response = await self._client.get(path)
            if response.is_error:
                raise CommerceApiError(response.status_code, response.text)
            return response.json()

        return await self._circuit_breaker.execute(_request)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
