"""
Schema checks for the profile store.

Compares the migrated database with the SQLAlchemy models and confirms the
indexes the reconciliation queries rely on are present: the ``auth_id``
B-tree behind duplicate discovery and the GIN indexes behind the
array-contains-any scans of every reference array.
"""

from __future__ import annotations

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from outlink.database import Base
from outlink.models.user_document import UserDocument


def required_indexes() -> dict[str, str]:
    """Index name -> access method for every index declared on the profile table."""
    return {
        index.name: index.dialect_options["postgresql"]["using"] or "btree"
        for index in UserDocument.__table__.indexes
    }


def find_model_drift(connection: Connection) -> list[str]:
    context = MigrationContext.configure(connection, opts={"compare_type": True})
    return [str(diff) for diff in compare_metadata(context, Base.metadata)]


def find_index_problems(connection: Connection) -> list[str]:
    """Describe every required index that is missing or uses the wrong access method."""
    inspector = inspect(connection)
    table = UserDocument.__tablename__
    if not inspector.has_table(table):
        return [f"table {table} is missing"]

    existing = {
        index["name"]: index.get("dialect_options", {}).get("postgresql_using") or "btree"
        for index in inspector.get_indexes(table)
    }
    problems = []
    for name, method in sorted(required_indexes().items()):
        if name not in existing:
            problems.append(f"index {name} is missing")
        elif existing[name] != method:
            problems.append(f"index {name} uses {existing[name]}, expected {method}")
    return problems


async def check_schema(database_url: str, *, compare_models: bool = True) -> list[str]:
    """Return every schema problem found in the database at ``database_url``."""
    engine = create_async_engine(database_url, poolclass=NullPool)
    try:
        async with engine.connect() as conn:
            problems = await conn.run_sync(find_index_problems)
            if compare_models:
                problems += await conn.run_sync(find_model_drift)
    finally:
        await engine.dispose()
    return problems
