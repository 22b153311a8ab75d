"""In-memory document store for local development and tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from outlink.store.base import (
    DEFAULT_MAX_BATCH_OPERATIONS,
    DocumentStore,
    Snapshot,
    Transaction,
    WriteOp,
    apply_write,
)

T = TypeVar("T")


class _MemoryTransaction(Transaction):
    def __init__(self, documents: dict[str, dict[str, Any]]):
        super().__init__()
        self._documents = documents

    async def get(self, key: str) -> Snapshot:
        data = self._documents.get(key)
        return Snapshot(key, copy.deepcopy(data) if data is not None else None)


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed store.

    Transactions and batches are serialised by one asyncio lock, so each
    commits atomically with respect to the others. Plain reads do not lock.
    """

    def __init__(
        self,
        documents: dict[str, dict[str, Any]] | None = None,
        *,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
    ):
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self._lock = asyncio.Lock()
        self.max_batch_operations = max_batch_operations
        self.committed_batches: list[int] = []

    def _snapshot(self, key: str) -> Snapshot:
        data = self._documents.get(key)
        return Snapshot(key, copy.deepcopy(data) if data is not None else None)

    def dump(self) -> dict[str, dict[str, Any]]:
        """Copy of every stored document, keyed by document key."""
        return copy.deepcopy(self._documents)

    async def get(self, key: str) -> Snapshot:
        return self._snapshot(key)

    async def query_equal(self, field_name: str, value: Any) -> list[Snapshot]:
        return [
            self._snapshot(key)
            for key, data in sorted(self._documents.items())
            if data.get(field_name) == value
        ]

    async def query_array_contains_any(
        self, field_name: str, values: Sequence[str]
    ) -> list[Snapshot]:
        self._check_array_query(values)
        wanted = set(values)
        return [
            self._snapshot(key)
            for key, data in sorted(self._documents.items())
            if wanted.intersection(data.get(field_name) or [])
        ]

    async def query_key_prefix(self, prefix: str, limit: int) -> list[Snapshot]:
        keys = [key for key in sorted(self._documents) if key.startswith(prefix)]
        return [self._snapshot(key) for key in keys[:limit]]

    async def run_transaction(self, callback: Callable[[Transaction], Awaitable[T]]) -> T:
        async with self._lock:
            txn = _MemoryTransaction(self._documents)
            result = await callback(txn)
            self._apply(txn.ops)
            return result

    async def commit_batch(self, ops: Sequence[WriteOp]) -> None:
        if len(ops) > self.max_batch_operations:
            raise ValueError(
                f"Batch of {len(ops)} exceeds the {self.max_batch_operations} operation limit"
            )
        async with self._lock:
            self._apply(ops)
            self.committed_batches.append(len(ops))

    def _apply(self, ops: Sequence[WriteOp]) -> None:
        # Stage against a copy so a failing op leaves nothing half-written
        staged = dict(self._documents)
        for op in ops:
            updated = apply_write(staged.get(op.key), op)
            if updated is None:
                staged.pop(op.key, None)
            else:
                staged[op.key] = updated
        self._documents = staged
