"""PostgreSQL engine, sessions and schema migrations for the profile store."""

import asyncio
from pathlib import Path

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from alembic.command import downgrade, upgrade
from alembic.config import Config
from outlink.config import settings

logger = structlog.get_logger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()

REPO_ROOT = Path(__file__).resolve().parents[1]


def _alembic_config(db_url: str | None = None) -> Config:
    config = Config(str(REPO_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(REPO_ROOT / "alembic"))
    if db_url:
        config.set_main_option("sqlalchemy.url", db_url)
    return config


def run_migrations(revision: str = "head", db_url: str | None = None) -> None:
    """Upgrade (or, for ``base``, downgrade) the profile schema."""
    config = _alembic_config(db_url)
    if revision == "base":
        downgrade(config, revision)
    else:
        upgrade(config, revision)


async def migrate_db(revision: str = "head", db_url: str | None = None) -> None:
    """Run Alembic in a worker thread; env.py starts its own event loop."""
    url = db_url or settings.database_url
    await asyncio.to_thread(run_migrations, revision, url)
    logger.info("db.migrated", revision=revision)


async def init_db(db_url: str | None = None) -> None:
    """Bring the ``user_documents`` schema up to date at startup."""
    await migrate_db("head", db_url)


async def dispose_db() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()
