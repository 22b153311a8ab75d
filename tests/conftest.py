"""
Shared test fixtures for Outlink identity tests.

Provides an in-memory document store, the profile service, an HTTP test
client wired to that store, and identity-token helpers.
"""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from outlink.auth.tokens import create_identity_token
from outlink.dependencies import get_store
from outlink.identity.service import ProfileService
from outlink.identity.types import Principal
from outlink.main import app
from outlink.middleware.rate_limit import reset_limiter
from outlink.store.memory import InMemoryDocumentStore


# --- Rate Limiter Reset Fixture ---


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Reset rate limiter before each test to ensure test isolation."""
    reset_limiter()
    yield


# --- Store Fixtures ---


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Empty in-memory document store, fresh for each test."""
    return InMemoryDocumentStore()


@pytest.fixture
def service(store: InMemoryDocumentStore) -> ProfileService:
    return ProfileService(store)


def make_document(
    key: str,
    auth_id: str,
    *,
    updated_at: str = "2026-01-01T00:00:00+00:00",
    friends: list[str] | None = None,
    blocked: list[str] | None = None,
    changed: bool = False,
    **fields: Any,
) -> dict[str, Any]:
    """Build a stored profile document the way the service writes one."""
    return {
        "authId": auth_id,
        "usernameKey": key,
        "displayUsername": key,
        "displayName": fields.pop("displayName", key.title()),
        "friends": list(friends or []),
        "blocked": list(blocked or []),
        "hasChangedUsernameOnce": changed,
        "createdAt": fields.pop("createdAt", updated_at),
        "updatedAt": updated_at,
        **fields,
    }


@pytest.fixture
def document_factory() -> Callable[..., dict[str, Any]]:
    """Factory fixture for stored profile documents."""
    return make_document


@pytest.fixture
def principal_factory() -> Callable[..., Principal]:
    """Factory fixture for authenticated principals."""

    def _principal(
        auth_id: str = "uid-alice",
        email: str | None = "alice@example.com",
        display_name: str | None = "Alice",
    ) -> Principal:
        return Principal(auth_id=auth_id, email=email, display_name=display_name)

    return _principal


# --- HTTP Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def async_client(store: InMemoryDocumentStore) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client configured for testing.
    Overrides the document store dependency with the in-memory store.
    """
    app.dependency_overrides[get_store] = lambda: store

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        follow_redirects=True,
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Factory fixture for bearer identity-token headers."""

    def _auth_headers(
        auth_id: str = "uid-alice",
        email: str | None = "alice@example.com",
        name: str | None = "Alice",
    ) -> dict[str, str]:
        token = create_identity_token(auth_id, email=email, name=name)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


# --- Utility Fixtures ---


@pytest.fixture
def frozen_time():
    """
    Fixture for time-based testing using freezegun.

    Usage:
        with frozen_time("2026-01-02T00:00:00Z"):
            ...
    """
    from freezegun import freeze_time

    return freeze_time
