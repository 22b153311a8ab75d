"""
Document store interface.

The identity layer talks to user profiles only through this module: keyed
documents with get / merge-set / delete, equality, array-containment and
key-prefix queries, read-then-write transactions and bounded atomic write
batches.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")

# Firestore-class stores cap both of these
DEFAULT_MAX_BATCH_OPERATIONS = 500
DEFAULT_ARRAY_QUERY_LIMIT = 30


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time read of one document. ``data`` is None when missing."""

    key: str
    data: dict[str, Any] | None = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    @property
    def auth_id(self) -> str | None:
        return self.data.get("authId") if self.data else None

    def get(self, name: str, default: Any = None) -> Any:
        if not self.data:
            return default
        return self.data.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        """Return a detached copy of the document data."""
        return copy.deepcopy(self.data) if self.data else {}


# --- Write operations ---


@dataclass(frozen=True)
class SetOp:
    key: str
    data: dict[str, Any]
    merge: bool = True


@dataclass(frozen=True)
class DeleteOp:
    key: str


@dataclass(frozen=True)
class ArrayUnionOp:
    key: str
    field: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class ArrayRemoveOp:
    key: str
    field: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class ReplaceReferenceOp:
    """
    Rewrite stale entries of an array field, evaluated at commit time.

    Every value in ``stale`` is removed; ``replacement`` (when given) takes the
    position of the first stale entry and is never listed twice.
    """

    key: str
    field: str
    stale: tuple[str, ...]
    replacement: str | None


WriteOp = SetOp | DeleteOp | ArrayUnionOp | ArrayRemoveOp | ReplaceReferenceOp


def replace_references(
    values: Iterable[str], stale: Iterable[str], replacement: str | None
) -> list[str]:
    """Replace stale references in an array, de-duplicating the result."""
    stale_set = set(stale)
    result: list[str] = []
    for value in values:
        candidate = replacement if value in stale_set else value
        if candidate is None or candidate in result:
            continue
        result.append(candidate)
    return result


def apply_write(current: dict[str, Any] | None, op: WriteOp) -> dict[str, Any] | None:
    """
    Apply one write operation to a document's current data.

    Returns the new data, or None when the document should not exist.
    Array operations on a missing document are no-ops.
    """
    if isinstance(op, DeleteOp):
        return None

    if isinstance(op, SetOp):
        data = copy.deepcopy(op.data)
        if op.merge and current is not None:
            merged = dict(current)
            merged.update(data)
            return merged
        return data

    if current is None:
        return None

    updated = dict(current)
    existing = list(updated.get(op.field) or [])

    if isinstance(op, ArrayUnionOp):
        updated[op.field] = existing + [v for v in op.values if v not in existing]
    elif isinstance(op, ArrayRemoveOp):
        updated[op.field] = [v for v in existing if v not in op.values]
    elif isinstance(op, ReplaceReferenceOp):
        updated[op.field] = replace_references(existing, op.stale, op.replacement)
    else:
        raise TypeError(f"Unsupported write operation: {op!r}")

    return updated


class BatchFullError(ValueError):
    """Raised when adding an operation to a batch that hit its size limit."""


@dataclass
class WriteBatch:
    """
    Atomic multi-document write with a bounded operation count.

    Usage:
        batch = store.batch()
        batch.array_union("alice", "friends", ["bob"])
        batch.array_union("bob", "friends", ["alice"])
        await batch.commit()
    """

    store: DocumentStore
    limit: int
    ops: list[WriteOp] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.ops)

    @property
    def is_full(self) -> bool:
        return len(self.ops) >= self.limit

    def add(self, op: WriteOp) -> WriteBatch:
        if self.is_full:
            raise BatchFullError(f"Batch already holds {self.limit} operations")
        self.ops.append(op)
        return self

    def set(self, key: str, data: dict[str, Any], *, merge: bool = True) -> WriteBatch:
        return self.add(SetOp(key, data, merge))

    def delete(self, key: str) -> WriteBatch:
        return self.add(DeleteOp(key))

    def array_union(self, key: str, field_name: str, values: Iterable[str]) -> WriteBatch:
        return self.add(ArrayUnionOp(key, field_name, tuple(values)))

    def array_remove(self, key: str, field_name: str, values: Iterable[str]) -> WriteBatch:
        return self.add(ArrayRemoveOp(key, field_name, tuple(values)))

    async def commit(self) -> None:
        if self.ops:
            await self.store.commit_batch(self.ops)


class Transaction(ABC):
    """Read-then-write unit of work. Writes are buffered until commit."""

    def __init__(self) -> None:
        self.ops: list[WriteOp] = []

    @abstractmethod
    async def get(self, key: str) -> Snapshot:
        """Read a document, locking it for the rest of the transaction."""

    def set(self, key: str, data: dict[str, Any], *, merge: bool = True) -> None:
        self.ops.append(SetOp(key, data, merge))

    def delete(self, key: str) -> None:
        self.ops.append(DeleteOp(key))

    def array_union(self, key: str, field_name: str, values: Iterable[str]) -> None:
        self.ops.append(ArrayUnionOp(key, field_name, tuple(values)))

    def array_remove(self, key: str, field_name: str, values: Iterable[str]) -> None:
        self.ops.append(ArrayRemoveOp(key, field_name, tuple(values)))


class DocumentStore(ABC):
    """Keyed document collection holding user profiles."""

    max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS
    array_query_limit: int = DEFAULT_ARRAY_QUERY_LIMIT

    @abstractmethod
    async def get(self, key: str) -> Snapshot:
        """Fetch one document by key."""

    @abstractmethod
    async def query_equal(self, field_name: str, value: Any) -> list[Snapshot]:
        """Documents whose ``field_name`` equals ``value``."""

    @abstractmethod
    async def query_array_contains_any(
        self, field_name: str, values: Sequence[str]
    ) -> list[Snapshot]:
        """Documents whose array ``field_name`` contains any of ``values``."""

    @abstractmethod
    async def query_key_prefix(self, prefix: str, limit: int) -> list[Snapshot]:
        """Up to ``limit`` documents whose key starts with ``prefix``, in key order."""

    @abstractmethod
    async def run_transaction(self, callback: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``callback`` in a transaction and commit its buffered writes."""

    @abstractmethod
    async def commit_batch(self, ops: Sequence[WriteOp]) -> None:
        """Apply all operations atomically."""

    async def close(self) -> None:
        """Release any resources held by the store."""

    def batch(self) -> WriteBatch:
        return WriteBatch(store=self, limit=self.max_batch_operations)

    async def set(self, key: str, data: dict[str, Any], *, merge: bool = True) -> None:
        await self.commit_batch([SetOp(key, data, merge)])

    async def delete(self, key: str) -> None:
        await self.commit_batch([DeleteOp(key)])

    def _check_array_query(self, values: Sequence[str]) -> None:
        if len(values) > self.array_query_limit:
            raise ValueError(
                f"array-contains-any accepts at most {self.array_query_limit} values, "
                f"got {len(values)}"
            )
