"""HTTP transport from the chat client to the Sentra chat endpoints."""

from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx
from loguru import logger

from ..config import settings
from ..core.exceptions import (
    AuthenticationError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    SentraException,
)
from ..sse import ServerSentEvent, aiter_sse


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        if isinstance(body.get("error"), dict):
            return str(body["error"].get("message", ""))
        if "detail" in body:
            return str(body["detail"])
    return response.text


class GatewayClient:
    """Client for the streaming gateway and the callable fallback."""

    def __init__(
        self,
        base_url: str = settings.SENTRA_API_URL,
        token: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.STREAM_TIMEOUT_SECONDS + 30.0,
    ):
        """Initialize the gateway client.

        Args:
            base_url: Base URL of the Sentra API
            token: Bearer token of the signed-in user
            client: Optional shared client (tests pass an ASGI-backed one)
            timeout: Per-request timeout in seconds; covers the whole stream read
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client
        self._timeout = timeout

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    @staticmethod
    def _raise_for_status(response: httpx.Response, payload: dict[str, Any]) -> None:
        if response.status_code < 400:
            return
        detail = _error_detail(response)
        if response.status_code == 401:
            raise AuthenticationError(detail or "Authentication required")
        if response.status_code == 403:
            raise PermissionDeniedError(detail or "Permission denied")
        if response.status_code == 404:
            raise NotFoundError("Character", str(payload.get("characterId", "")))
        if response.status_code in (400, 422):
            raise InvalidArgumentError(detail)
        if response.status_code == 500:
            raise InternalError(detail or "Internal error")
        raise SentraException(f"Gateway returned {response.status_code}: {detail}")

    async def stream(self, payload: dict[str, Any]) -> AsyncIterator[ServerSentEvent]:
        """POST a chat turn to /api/chat/stream and yield its events as they arrive."""
        url = f"{self.base_url}/api/chat/stream"
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            async with client.stream("POST", url, json=payload, headers=self._headers) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, payload)
                async for event in aiter_sse(response.aiter_bytes()):
                    yield event
        except httpx.TimeoutException as e:
            logger.error(f"Gateway stream timed out: {e}")
            raise InternalError("Timed out waiting for the chat stream") from e
        except httpx.TransportError as e:
            logger.error(f"Gateway stream connection failed: {e}")
            raise InternalError(f"Cannot reach the chat service at {self.base_url}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def call(self, payload: dict[str, Any]) -> str:
        """Non-streaming turn through /api/chat/call; returns the reply text."""
        url = f"{self.base_url}/api/chat/call"
        try:
            if self._client is not None:
                response = await self._client.post(url, json={"data": payload}, headers=self._headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json={"data": payload}, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(f"Chat call failed: {e}")
            raise InternalError(f"Cannot reach the chat service at {self.base_url}") from e

        self._raise_for_status(response, payload)
        return response.json()["result"]["aiMessage"]["content"]
