"""Bounded work queue for cross-document writes."""

from __future__ import annotations

from collections import deque

import structlog

from outlink.store.base import DocumentStore, WriteOp

logger = structlog.get_logger(__name__)


class WriteQueue:
    """
    Pending write operations, committed in fixed-size atomic batches.

    Each batch is atomic; the sequence of batches is not. When a commit
    fails the uncommitted operations stay queued and the error propagates.
    """

    def __init__(self, batch_size: int):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self._pending: deque[WriteOp] = deque()
        self._queued: set[tuple[str, ...]] = set()

    def __len__(self) -> int:
        return len(self._pending)

    @staticmethod
    def _identity(op: WriteOp) -> tuple[str, ...]:
        return (type(op).__name__, op.key, getattr(op, "field", ""))

    def enqueue(self, op: WriteOp) -> bool:
        """Queue ``op`` unless an equivalent op for the same document is pending."""
        identity = self._identity(op)
        if identity in self._queued:
            return False
        self._queued.add(identity)
        self._pending.append(op)
        return True

    def pending(self) -> list[WriteOp]:
        return list(self._pending)

    async def drain(self, store: DocumentStore) -> int:
        """Commit every queued operation; returns how many were committed."""
        batch_size = min(self.batch_size, store.max_batch_operations)
        committed = 0
        while self._pending:
            chunk = [self._pending[i] for i in range(min(batch_size, len(self._pending)))]
            batch = store.batch()
            for op in chunk:
                batch.add(op)
            await batch.commit()

            for op in chunk:
                self._pending.popleft()
                self._queued.discard(self._identity(op))
            committed += len(chunk)
            logger.debug("write_queue.batch_committed", size=len(chunk), remaining=len(self._pending))
        return committed
