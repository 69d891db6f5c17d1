from __future__ import annotations

import asyncio
from typing import Any

import httpx

from ..errors import ModelError, ModelTimeout, QuotaExceeded
from ..json_utils import extract_json_dict

_NEW_STYLE_MODEL_PREFIXES = (
    "gpt-4o",
    "gpt-4.1",
    "gpt-5",
    "o1",
    "o3",
    "o4",
    "o-",
)


def token_param(model: str | None) -> str:
    name = (model or "").lower()
    for prefix in _NEW_STYLE_MODEL_PREFIXES:
        if name.startswith(prefix):
            return "max_completion_tokens"
    return "max_tokens"


class ChatCompletionsClient:
    """OpenAI-compatible ``/chat/completions`` client with JSON response format."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        *,
        connect_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/") or "https://api.openai.com/v1"
        self._connect_timeout = connect_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> ChatCompletionsClient:
        return cls(
            settings.OPENAI_API_KEY,
            settings.OPENAI_API_BASE,
            connect_timeout=settings.OPENAI_CONNECT_TIMEOUT_SECONDS,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ModelError("OPENAI_API_KEY not configured")
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    timeout = httpx.Timeout(30.0, connect=self._connect_timeout)
                    self._client = httpx.AsyncClient(
                        base_url=self._base_url, timeout=timeout, transport=self._transport
                    )
        return self._client

    async def post_json(
        self, path: str, payload: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        headers = self._headers()
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload, headers=headers, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise ModelTimeout(f"Model request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ModelError(f"Request failed: {exc}") from exc
        if response.status_code == 429:
            raise QuotaExceeded("Model quota exceeded")
        if response.status_code >= 400:
            raise ModelError(f"Model error {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise ModelError("Invalid JSON from model endpoint") from exc

    async def complete_json(
        self,
        *,
        model: str,
        messages: list[dict[str, str]],
        timeout: float,
        max_tokens: int = 450,
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        """Run one chat completion and return the JSON object in its content."""
        payload: dict[str, Any] = {
            "model": model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": messages,
        }
        payload[token_param(model)] = max_tokens
        response = await self.post_json("/chat/completions", payload, timeout=timeout)

        choices = response.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise ModelError("Empty model response")
        try:
            return extract_json_dict(content)
        except ValueError as exc:
            raise ModelError("Model response is not a JSON object") from exc

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["ChatCompletionsClient", "token_param"]
