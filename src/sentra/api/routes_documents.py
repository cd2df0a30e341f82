"""Document router: authenticated access to the document store over HTTP."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from loguru import logger

from ..core.exceptions import InvalidArgumentError, NotFoundError
from ..store.documents import DocumentStore
from ..store.paths import split_path, validate_collection
from .access import AccessPolicy
from .auth import get_user_id
from .dependencies import get_store
from .schemas import DocumentListResponse, DocumentResponse, DocumentWrite

router = APIRouter(prefix="/documents", tags=["documents"])


def get_access_policy(store: DocumentStore = Depends(get_store)) -> AccessPolicy:
    return AccessPolicy(store)


def _document_path(path: str) -> str:
    try:
        collection, doc_id = split_path(path)
    except ValueError as e:
        raise InvalidArgumentError(str(e), field="path")
    return f"{collection}/{doc_id}"


@router.get("", response_model=DocumentListResponse)
async def query_documents(
    collection: str = Query(..., description="Collection path"),
    order_by: Optional[str] = Query(None),
    descending: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1),
    id_prefix: Optional[str] = Query(None),
    field: Optional[str] = Query(None, description="Equality filter field"),
    value: Optional[str] = Query(None, description="Equality filter value"),
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_access_policy),
):
    """List a collection, or find documents whose `field` equals `value`.

    Documents the caller may not read are left out of the result.
    """
    try:
        collection = validate_collection(collection)
    except ValueError as e:
        raise InvalidArgumentError(str(e), field="collection")

    if field is not None:
        if value is None:
            raise InvalidArgumentError("value is required with field", field="value")
        snapshots = await store.find(collection, field, value)
    else:
        snapshots = await store.list(
            collection,
            order_by=order_by,
            descending=descending,
            id_prefix=id_prefix,
        )

    documents = []
    for snapshot in snapshots:
        if await policy.can_read(user_id, snapshot.path, snapshot.data):
            documents.append(DocumentResponse(path=snapshot.path, data=snapshot.data))
    if limit is not None:
        documents = documents[:limit]

    return DocumentListResponse(documents=documents)


@router.get("/{path:path}", response_model=DocumentResponse)
async def get_document(
    path: str,
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_access_policy),
):
    path = _document_path(path)
    data = await store.get(path)
    await policy.check_read(user_id, path, data)
    if data is None:
        raise NotFoundError("Document", path)
    return DocumentResponse(path=path, data=data)


@router.put("/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
async def set_document(
    path: str,
    body: DocumentWrite,
    merge: bool = Query(False),
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_access_policy),
):
    """Create or replace a document; `merge=true` merges into the existing one."""
    path = _document_path(path)
    existing = await store.get(path)
    await policy.check_write(user_id, path, existing, body.data, replace=not merge)
    await store.set(path, body.data, merge=merge)
    logger.debug(f"{user_id} set {path} (merge={merge})")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
async def update_document(
    path: str,
    body: DocumentWrite,
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_access_policy),
):
    """Merge fields (dotted keys allowed) into an existing document."""
    path = _document_path(path)
    existing = await store.get(path)
    if existing is None:
        raise NotFoundError("Document", path)
    await policy.check_write(user_id, path, existing, body.data)
    await store.update(path, body.data)
    logger.debug(f"{user_id} updated {path}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    path: str,
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
    policy: AccessPolicy = Depends(get_access_policy),
):
    path = _document_path(path)
    existing = await store.get(path)
    if existing is None:
        raise NotFoundError("Document", path)
    await policy.check_write(user_id, path, existing, None)
    await store.delete(path)
    logger.info(f"{user_id} deleted {path}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
