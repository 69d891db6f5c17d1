from __future__ import annotations

import asyncio
from typing import Any

import httpx

from ..errors import ProviderError, ProviderTimeout, QuotaExceeded

QUOTA_STATUSES = frozenset({"OVER_QUERY_LIMIT", "RESOURCE_EXHAUSTED"})


class HttpProvider:
    """Lazily created ``httpx.AsyncClient`` plus upstream error mapping."""

    provider_name = "provider"

    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        *,
        timeout: float = 6.0,
        connect_timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    def _require_key(self) -> str:
        if not self._api_key:
            raise ProviderError(f"{self.provider_name}: API key not configured")
        return self._api_key

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    timeout = httpx.Timeout(self._timeout, connect=self._connect_timeout)
                    self._client = httpx.AsyncClient(
                        base_url=self._base_url, timeout=timeout, transport=self._transport
                    )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"{self.provider_name} timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_name} request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        status = _upstream_status(data)
        if response.status_code == 429 or status in QUOTA_STATUSES:
            raise QuotaExceeded(f"{self.provider_name} quota exceeded")
        if response.status_code >= 400:
            raise ProviderError(f"{self.provider_name} error {response.status_code}")
        return data

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _upstream_status(data: dict[str, Any]) -> str | None:
    status = data.get("status")
    if isinstance(status, str):
        return status
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("status"), str):
        return error["status"]
    return None


__all__ = ["HttpProvider", "QUOTA_STATUSES"]
