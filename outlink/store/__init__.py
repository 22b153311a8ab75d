"""Document store adapters."""

from outlink.store.base import (
    ArrayRemoveOp,
    ArrayUnionOp,
    BatchFullError,
    DeleteOp,
    DocumentStore,
    ReplaceReferenceOp,
    SetOp,
    Snapshot,
    Transaction,
    WriteBatch,
    WriteOp,
)
from outlink.store.memory import InMemoryDocumentStore

__all__ = [
    "ArrayRemoveOp",
    "ArrayUnionOp",
    "BatchFullError",
    "DeleteOp",
    "DocumentStore",
    "InMemoryDocumentStore",
    "ReplaceReferenceOp",
    "SetOp",
    "Snapshot",
    "Transaction",
    "WriteBatch",
    "WriteOp",
]
