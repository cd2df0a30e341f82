"""Document store client for the Sentra API's document routes."""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from ..core.exceptions import (
    AuthenticationError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    SentraException,
)
from .documents import DocumentSnapshot, DocumentStore
from .paths import split_path, validate_collection


class RemoteDocumentStore(DocumentStore):
    """DocumentStore that calls `/api/documents` with a bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """Initialize the remote store.

        Args:
            base_url: Base URL of the Sentra API
            token: Bearer token sent with every request
            client: Optional shared client (tests pass an ASGI-backed one)
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._client = client
        self._timeout = timeout

    def _url(self, path: str = "") -> str:
        if not path:
            return f"{self.base_url}/api/documents"
        return f"{self.base_url}/api/documents/{quote(path, safe='/')}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        kwargs.setdefault("headers", {}).update(self._headers)
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, **kwargs)

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.status_code < 400:
            return
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        if response.status_code == 401:
            raise AuthenticationError(str(detail))
        if response.status_code == 403:
            raise PermissionDeniedError(str(detail))
        if response.status_code == 404:
            raise NotFoundError("Document", path)
        if response.status_code in (400, 422):
            raise InvalidArgumentError(str(detail))
        logger.error(f"Document store request for {path} failed: {response.status_code} {detail}")
        raise SentraException(f"Document store error {response.status_code}: {detail}")

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        split_path(path)
        response = await self._request("GET", self._url(path))
        if response.status_code == 404:
            return None
        self._raise_for_status(response, path)
        return response.json()["data"]

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        split_path(path)
        response = await self._request(
            "PUT", self._url(path), params={"merge": str(merge).lower()}, json={"data": data}
        )
        self._raise_for_status(response, path)

    async def update(self, path: str, data: dict[str, Any]) -> None:
        split_path(path)
        response = await self._request("PATCH", self._url(path), json={"data": data})
        self._raise_for_status(response, path)

    async def delete(self, path: str) -> bool:
        split_path(path)
        response = await self._request("DELETE", self._url(path))
        if response.status_code == 404:
            return False
        self._raise_for_status(response, path)
        return True

    async def list(
        self,
        collection: str,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        id_prefix: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        params: dict[str, Any] = {"collection": validate_collection(collection)}
        if order_by:
            params["order_by"] = order_by
            params["descending"] = str(descending).lower()
        if limit is not None:
            params["limit"] = limit
        if id_prefix:
            params["id_prefix"] = id_prefix
        return await self._query(collection, params)

    async def find(
        self,
        collection: str,
        field: str,
        value: Any,
        *,
        limit: Optional[int] = None,
    ) -> list[DocumentSnapshot]:
        params: dict[str, Any] = {
            "collection": validate_collection(collection),
            "field": field,
            "value": str(value),
        }
        if limit is not None:
            params["limit"] = limit
        return await self._query(collection, params)

    async def _query(self, collection: str, params: dict[str, Any]) -> list[DocumentSnapshot]:
        response = await self._request("GET", self._url(), params=params)
        self._raise_for_status(response, collection)
        return [
            DocumentSnapshot(path=item["path"], data=item["data"])
            for item in response.json()["documents"]
        ]
