"""
Async engine and session factory.

Pool settings only apply to server databases; SQLite (used by the test suite)
gets the driver's default pool.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rental_engine.core.config import get_settings

settings = get_settings()


def build_engine(url: str, **overrides):
    options = {"echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
        )
    options.update(overrides)
    return create_async_engine(url, **options)


def build_session_factory(engine) -> async_sessionmaker:
    # expire_on_commit=False: aggregates are returned to callers after the
    # unit of work has committed and closed its session
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)
