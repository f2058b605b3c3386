import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> AsyncEngine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # concurrent writers wait on the file lock instead of failing at once
        connect_args["timeout"] = 30
    return create_async_engine(database_url, echo=False, future=True, connect_args=connect_args)


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine(get_settings().database_url)
async_session_factory = build_session_factory(engine)


async def create_schema(bind: AsyncEngine) -> None:
    from . import models  # noqa: F401  registers the tables on SQLModel.metadata

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def init_db(bind: AsyncEngine, settings: Settings) -> None:
    """Create the tables, retrying while the database is still coming up."""
    attempts = max(1, settings.db_init_max_retries)
    interval = max(0.5, float(settings.db_init_retry_interval_seconds))

    attempt = 0
    while True:
        attempt += 1
        try:
            await create_schema(bind)
        except Exception as exc:
            if attempt >= attempts:
                logger.exception("Database initialization failed after %s attempts.", attempts)
                raise
            delay = interval * attempt
            logger.warning("Database not ready (%s/%s): %s. Retrying in %.1fs", attempt, attempts, exc, delay)
            await asyncio.sleep(delay)
        else:
            logger.info("Database schema ready.")
            return
