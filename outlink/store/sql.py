"""PostgreSQL-backed document store."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outlink.exceptions import DocumentConflict, StoreUnavailable
from outlink.models.user_document import COLUMN_FIELDS, UserDocument
from outlink.store.base import (
    DocumentStore,
    Snapshot,
    Transaction,
    WriteOp,
    apply_write,
)

T = TypeVar("T")

ARRAY_COLUMNS = {
    "friends": UserDocument.friends,
    "blocked": UserDocument.blocked,
    "incomingRequests": UserDocument.incoming_requests,
    "outgoingRequests": UserDocument.outgoing_requests,
}


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map driver failures onto the store error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        params = exc.params if isinstance(exc.params, dict) else {}
        raise DocumentConflict(str(params.get("key", "unknown"))) from exc
    except (DBAPIError, SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(f"Document store request failed: {exc.__class__.__name__}") from exc


def _snapshot(key: str, row: UserDocument | None) -> Snapshot:
    return Snapshot(key, row.to_document() if row is not None else None)


class _SqlTransaction(Transaction):
    def __init__(self, session: AsyncSession):
        super().__init__()
        self._session = session

    async def get(self, key: str) -> Snapshot:
        row = await self._session.get(UserDocument, key, with_for_update=True)
        return _snapshot(key, row)


class SqlDocumentStore(DocumentStore):
    """
    Stores profile documents in the ``user_documents`` table.

    Every transaction and batch runs in one database transaction with the
    touched rows locked ``FOR UPDATE``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._session_factory = session_factory
        self._on_close = on_close

    async def close(self) -> None:
        if self._on_close is not None:
            await self._on_close()

    async def get(self, key: str) -> Snapshot:
        with _translate_errors():
            async with self._session_factory() as session:
                row = await session.get(UserDocument, key)
                return _snapshot(key, row)

    async def query_equal(self, field_name: str, value: Any) -> list[Snapshot]:
        if field_name in COLUMN_FIELDS and field_name not in ARRAY_COLUMNS:
            condition = getattr(UserDocument, COLUMN_FIELDS[field_name]) == value
        else:
            condition = UserDocument.data.contains({field_name: value})
        return await self._select(condition)

    async def query_array_contains_any(
        self, field_name: str, values: Sequence[str]
    ) -> list[Snapshot]:
        self._check_array_query(values)
        if field_name not in ARRAY_COLUMNS:
            raise ValueError(f"'{field_name}' is not an indexed array field")
        if not values:
            return []
        return await self._select(ARRAY_COLUMNS[field_name].overlap(list(values)))

    async def query_key_prefix(self, prefix: str, limit: int) -> list[Snapshot]:
        # Keys may contain "_", a LIKE wildcard
        condition = UserDocument.key.startswith(prefix, autoescape=True)
        return await self._select(condition, limit=limit)

    async def run_transaction(self, callback: Callable[[Transaction], Awaitable[T]]) -> T:
        with _translate_errors():
            async with self._session_factory() as session:
                async with session.begin():
                    txn = _SqlTransaction(session)
                    result = await callback(txn)
                    await self._apply(session, txn.ops)
                return result

    async def commit_batch(self, ops: Sequence[WriteOp]) -> None:
        if len(ops) > self.max_batch_operations:
            raise ValueError(
                f"Batch of {len(ops)} exceeds the {self.max_batch_operations} operation limit"
            )
        with _translate_errors():
            async with self._session_factory() as session:
                async with session.begin():
                    await self._apply(session, ops)

    async def _select(self, condition, limit: int | None = None) -> list[Snapshot]:
        statement = select(UserDocument).where(condition).order_by(UserDocument.key)
        if limit is not None:
            statement = statement.limit(limit)
        with _translate_errors():
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [_snapshot(row.key, row) for row in result.scalars().all()]

    async def _apply(self, session: AsyncSession, ops: Sequence[WriteOp]) -> None:
        for op in ops:
            row = await session.get(UserDocument, op.key, with_for_update=True)
            current = row.to_document() if row is not None else None
            updated = apply_write(current, op)

            if updated is None:
                if row is not None:
                    await session.delete(row)
            elif row is None:
                row = UserDocument(key=op.key)
                row.assign(updated)
                session.add(row)
            else:
                row.assign(updated)

            # Flush per op so later ops on the same key see this one
            await session.flush()
