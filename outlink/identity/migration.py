"""
Migration execution.

Applies a resolution plan that moves or merges an account's profile:

1. write the merged profile at the target key (transactional, bounded wait)
2. find every profile whose reference arrays (friends, blocked, pending
   friend requests) name a stale key
3. rewrite those back-references in sequential batches
4. delete the stale documents

Only step 1 can fail the migration. Later steps report a
MigrationPartialFailure instead; stale documents are kept until their
back-references are rewritten, so the next upsert for the account finds
them again as duplicates and finishes the job.
"""

from __future__ import annotations

import asyncio

import structlog

from outlink.config import settings
from outlink.exceptions import (
    MigrationPartialFailure,
    StoreUnavailable,
    UsernameTaken,
)
from outlink.identity.types import REFERENCE_FIELDS, MigrationReport, ResolutionPlan
from outlink.identity.write_queue import WriteQueue
from outlink.store.base import DeleteOp, DocumentStore, ReplaceReferenceOp, Transaction

logger = structlog.get_logger(__name__)


def chunked(values: list[str], size: int) -> list[list[str]]:
    return [values[i : i + size] for i in range(0, len(values), size)]


async def with_timeout(awaitable, timeout: float | None, operation: str):
    """Await a primary write, mapping a timeout to StoreUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise StoreUnavailable(
            f"{operation} timed out after {timeout}s; outcome unknown, retry the request"
        ) from None


async def queue_reference_rewrites(
    store: DocumentStore,
    queue: WriteQueue,
    stale_keys: list[str],
    replacement: str | None,
    skip: set[str],
) -> int:
    """Queue one replace op per (document, field) that names a stale key."""
    queued = 0
    for field_name in REFERENCE_FIELDS:
        for chunk in chunked(stale_keys, store.array_query_limit):
            for snapshot in await store.query_array_contains_any(field_name, chunk):
                if snapshot.key in skip:
                    continue
                op = ReplaceReferenceOp(snapshot.key, field_name, tuple(stale_keys), replacement)
                if queue.enqueue(op):
                    queued += 1
    return queued


class MigrationExecutor:
    """Executes resolution plans against a document store."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        batch_size: int | None = None,
        timeout: float | None = None,
    ):
        self._store = store
        self._batch_size = batch_size or settings.batch_max_operations
        self._timeout = timeout if timeout is not None else settings.primary_write_timeout_seconds

    async def execute(self, plan: ResolutionPlan) -> MigrationReport:
        """
        Apply ``plan``.

        Raises:
            UsernameTaken: the target key was claimed by another account
                between resolution and commit
            DocumentConflict: a concurrent writer created the target key first;
                resolve again before reporting the username as taken
            StoreUnavailable: the primary write failed or timed out
        """
        await self.write_primary(plan)
        report = MigrationReport(target_key=plan.target_key, written=True)

        stale_keys = list(plan.stale_keys)
        if not stale_keys:
            return report

        deletes = [k for k in plan.source_keys_to_delete if k != plan.target_key]
        queue = WriteQueue(self._batch_size)

        try:
            await queue_reference_rewrites(
                self._store,
                queue,
                stale_keys,
                plan.target_key,
                skip={plan.target_key, *deletes},
            )
            report.references_rewritten = await queue.drain(self._store)
        except StoreUnavailable as exc:
            report.failure = MigrationPartialFailure(
                f"Back-reference rewrite incomplete for '{plan.target_key}'",
                pending_rewrites=len(queue),
                pending_deletes=tuple(deletes),
            )
            logger.warning(
                "migration.rewrite_incomplete",
                auth_id=plan.auth_id,
                target=plan.target_key,
                stale=stale_keys,
                pending_rewrites=len(queue),
                error=str(exc),
            )
            return report

        for key in deletes:
            queue.enqueue(DeleteOp(key))
        try:
            await queue.drain(self._store)
            report.deleted_keys = deletes
        except StoreUnavailable as exc:
            pending = tuple(op.key for op in queue.pending())
            report.deleted_keys = [k for k in deletes if k not in pending]
            report.failure = MigrationPartialFailure(
                f"Stale documents not deleted for '{plan.target_key}'",
                pending_deletes=pending,
            )
            logger.warning(
                "migration.cleanup_incomplete",
                auth_id=plan.auth_id,
                target=plan.target_key,
                pending_deletes=list(pending),
                error=str(exc),
            )
            return report

        logger.info(
            "migration.completed",
            auth_id=plan.auth_id,
            target=plan.target_key,
            stale=stale_keys,
            references_rewritten=report.references_rewritten,
            deleted=report.deleted_keys,
        )
        return report

    async def write_primary(self, plan: ResolutionPlan) -> None:
        """Step 1: merge-write the profile at the target key, re-checking ownership."""

        async def _write(txn: Transaction) -> None:
            current = await txn.get(plan.target_key)
            if current.exists and current.auth_id != plan.auth_id:
                raise UsernameTaken(plan.target_key)
            txn.set(plan.target_key, plan.merged_data, merge=True)

        await with_timeout(
            self._store.run_transaction(_write),
            self._timeout,
            "Profile write",
        )
