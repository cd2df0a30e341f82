"""Document store: get/set/update/delete by path plus collection queries.

`DocumentStore` is the interface the chat orchestrator and the memory
subsystem depend on. `SqlDocumentStore` keeps documents in one SQL table;
`sentra.store.remote.RemoteDocumentStore` reaches the same operations over
HTTP. No operation takes a lock: callers that read-modify-write a document
race with other writers and the last write wins.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import ColumnElement, Select, case, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import NotFoundError
from .database import Document, async_session
from .paths import split_path, validate_collection


@dataclass(frozen=True)
class DocumentSnapshot:
    path: str
    data: dict[str, Any]

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


def apply_update(data: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Merge `changes` into a copy of `data`.

    Keys containing dots address nested fields (`memories.chat_1`), creating
    intermediate mappings as needed.
    """
    merged = copy.deepcopy(data)
    for key, value in changes.items():
        parts = key.split(".")
        target = merged
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = value
    return merged


class DocumentStore(ABC):
    """Authenticated key/document store used by every Sentra component."""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict[str, Any]]:
        """Return the document's data, or None when absent."""

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        """Create or replace a document; with merge, shallow-merge into it."""

    @abstractmethod
    async def update(self, path: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document; NotFoundError if absent."""

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a document; returns whether it existed."""

    @abstractmethod
    async def list(
        self,
        collection: str,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        id_prefix: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        """Direct children of a collection, optionally filtered by id prefix."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        field: str,
        value: Any,
        *,
        limit: Optional[int] = None,
    ) -> list[DocumentSnapshot]:
        """Documents of a collection whose `field` equals `value`."""


class SqlDocumentStore(DocumentStore):
    """Document store backed by the `documents` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session):
        self._session_factory = session_factory

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        split_path(path)
        async with self._session_factory() as session:
            doc = await session.get(Document, path)
            if doc is None:
                return None
            return copy.deepcopy(doc.data)

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        collection, _ = split_path(path)
        async with self._session_factory() as session:
            doc = await session.get(Document, path)
            if doc is None:
                session.add(Document(path=path, collection=collection, data=copy.deepcopy(data)))
            else:
                doc.data = apply_update(doc.data, data) if merge else copy.deepcopy(data)
                doc.updated_at = datetime.utcnow()
            await session.commit()

    async def update(self, path: str, data: dict[str, Any]) -> None:
        split_path(path)
        async with self._session_factory() as session:
            doc = await session.get(Document, path)
            if doc is None:
                raise NotFoundError("Document", path)
            doc.data = apply_update(doc.data, data)
            doc.updated_at = datetime.utcnow()
            await session.commit()

    async def delete(self, path: str) -> bool:
        split_path(path)
        async with self._session_factory() as session:
            doc = await session.get(Document, path)
            if doc is None:
                return False
            await session.delete(doc)
            await session.commit()
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
        collection = validate_collection(collection)
        query = select(Document).where(Document.collection == collection)
        if id_prefix:
            start = f"{collection}/{id_prefix}"
            query = query.where(Document.path >= start, Document.path < start + "\uffff")
        if order_by:
            key = Document.data[order_by].as_string()
            # Documents missing the field sort last in either direction.
            query = query.order_by(
                case((key.is_(None), 1), else_=0),
                key.desc() if descending else key.asc(),
            )
        query = query.order_by(Document.path)
        if limit is not None:
            query = query.limit(limit)
        return await self._fetch(query)

    async def find(
        self,
        collection: str,
        field: str,
        value: Any,
        *,
        limit: Optional[int] = None,
    ) -> list[DocumentSnapshot]:
        collection = validate_collection(collection)
        query = (
            select(Document)
            .where(Document.collection == collection, _json_equals(field, value))
            .order_by(Document.path)
        )
        if limit is not None:
            query = query.limit(limit)
        return await self._fetch(query)

    async def _fetch(self, query: Select) -> list[DocumentSnapshot]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [
                DocumentSnapshot(path=doc.path, data=copy.deepcopy(doc.data))
                for doc in result.scalars().all()
            ]


def _json_equals(field: str, value: Any) -> ColumnElement[bool]:
    """SQL equality test on one top-level field of the JSON document."""
    element = Document.data[field]
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    if isinstance(value, str):
        return element.as_string() == value
    raise ValueError(f"Unsupported filter value for {field}: {value!r}")
