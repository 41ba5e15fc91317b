"""
Async SQLAlchemy session factories.

The API process shares one engine.  Celery tasks call `make_session_factory()`
inside each `asyncio.run()` so no connection outlives its event loop.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from crm_workflows.core.config import settings


def make_session_factory(
    url: str | None = None,
    **engine_kwargs,
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create a fresh async engine + session factory."""
    engine = create_async_engine(url or settings.DATABASE_URL, **engine_kwargs)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return factory, engine


def make_api_session_factory() -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Pooled engine for the long-lived API process."""
    return make_session_factory(
        echo=False,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )
