"""Store and service providers for FastAPI endpoints."""

from functools import lru_cache

from fastapi import Depends

from outlink.config import settings
from outlink.identity.service import ProfileService
from outlink.store.base import DocumentStore
from outlink.store.memory import InMemoryDocumentStore


@lru_cache
def get_store() -> DocumentStore:
    """Process-wide document store selected by ``STORE_BACKEND``."""
    if settings.store_backend == "memory":
        return InMemoryDocumentStore(max_batch_operations=settings.batch_max_operations)

    # Imported lazily so the memory backend never touches the database engine
    from outlink.database import AsyncSessionLocal, dispose_db
    from outlink.store.sql import SqlDocumentStore

    return SqlDocumentStore(AsyncSessionLocal, on_close=dispose_db)


async def get_profile_service(
    store: DocumentStore = Depends(get_store),
) -> ProfileService:
    return ProfileService(store)
