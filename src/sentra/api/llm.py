"""LLM provider client (Anthropic-compatible messages API).

The whole prompt is sent twice: as the single user-role content block and as
the `system` field. Both copies are built from the same string.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx
from loguru import logger

from ..config import settings
from ..core.exceptions import (
    LLMConnectionError,
    LLMResponseError,
    LLMStreamError,
    LLMTimeoutError,
)
from ..sse import aiter_sse


class LLMClient:
    """Streams or completes a single prompt against the configured provider."""

    def __init__(
        self,
        api_url: str = settings.LLM_API_URL,
        api_key: str = settings.LLM_API_KEY,
        model: str = settings.LLM_MODEL,
        temperature: float = settings.LLM_TEMPERATURE,
        timeout: float = settings.LLM_TIMEOUT_SECONDS,
        api_version: str = settings.LLM_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.api_version = api_version
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}/v1/messages"

    def _headers(self) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }

    def build_payload(
        self,
        prompt: str,
        max_tokens: int,
        *,
        stream: bool,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        return {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "system": prompt,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": prompt}]},
            ],
            "stream": stream,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def stream(
        self,
        prompt: str,
        max_tokens: int,
        model: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments as the provider produces them."""
        payload = self.build_payload(prompt, max_tokens, stream=True, model=model)
        received = ""

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self.endpoint, json=payload, headers=self._headers()
                ) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        raise LLMResponseError(
                            response.status_code,
                            body.decode("utf-8", errors="replace"),
                            self.endpoint,
                        )

                    async for event in aiter_sse(response.aiter_bytes()):
                        if not event.data:
                            continue
                        try:
                            data = event.json()
                        except ValueError:
                            logger.debug(f"Skipping non-JSON provider event: {event.data[:80]!r}")
                            continue

                        kind = data.get("type", event.event)
                        if kind == "content_block_delta":
                            text = data.get("delta", {}).get("text", "")
                            if text:
                                received += text
                                yield text
                        elif kind == "error":
                            reason = data.get("error", {}).get("message", "provider error")
                            raise LLMStreamError(reason, partial_response=received or None)
                        elif kind == "message_stop":
                            break
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(self.timeout, self.endpoint) from e
        except httpx.TransportError as e:
            raise LLMConnectionError(self.endpoint, e) from e

    async def complete(
        self,
        prompt: str,
        max_tokens: int,
        model: Optional[str] = None,
    ) -> str:
        """Return the provider's full reply text."""
        payload = self.build_payload(prompt, max_tokens, stream=False, model=model)

        try:
            async with self._client() as client:
                response = await client.post(self.endpoint, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(self.timeout, self.endpoint) from e
        except httpx.TransportError as e:
            raise LLMConnectionError(self.endpoint, e) from e

        if response.status_code >= 400:
            raise LLMResponseError(response.status_code, response.text, self.endpoint)

        try:
            data = response.json()
            blocks = data["content"]
            text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Unexpected LLM response shape: {e}")
            raise LLMResponseError(response.status_code, response.text, self.endpoint) from e

        if not text:
            raise LLMResponseError(response.status_code, response.text, self.endpoint)
        return text


# Global client instance
llm_client = LLMClient()
