"""Document store layer."""

from .documents import DocumentSnapshot, DocumentStore, SqlDocumentStore
from .remote import RemoteDocumentStore

__all__ = [
    "DocumentSnapshot",
    "DocumentStore",
    "SqlDocumentStore",
    "RemoteDocumentStore",
]
