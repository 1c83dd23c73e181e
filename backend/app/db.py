import os
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[sessionmaker] = None
Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def _serialize_sqlite_writers(async_engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers ``BEGIN`` until the first write, which lets two
    connections both read a pending match and then race on the upgrade to
    a write lock. Emitting ``BEGIN IMMEDIATE`` ourselves serialises writers
    so the conditional updates in the match store see committed state.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> AsyncEngine:
    database_url = normalize_database_url(database_url)
    engine_kwargs = {"echo": False}
    file_backed_sqlite = False

    if database_url.startswith("sqlite+aiosqlite://"):
        # In-memory SQLite must reuse the same connection to persist schema/data.
        if ":memory:" in database_url:
            engine_kwargs["poolclass"] = StaticPool
        else:
            # File-backed SQLite in CI: do not pool to avoid cross-loop / late GC issues.
            engine_kwargs["poolclass"] = NullPool
            engine_kwargs["connect_args"] = {"timeout": 30}
            file_backed_sqlite = True
    else:
        engine_kwargs["pool_pre_ping"] = True

    async_engine = create_async_engine(database_url, **engine_kwargs)
    if file_backed_sqlite:
        _serialize_sqlite_writers(async_engine)
    return async_engine


def build_sessionmaker(async_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Return a lazily created SQLAlchemy engine.

    The engine is created on first use using the ``DATABASE_URL`` environment
    variable. Importing this module has no side effects so tests can set the
    environment variable at runtime. A ``RuntimeError`` is raised only if the
    function is called without ``DATABASE_URL`` being configured.
    """

    global engine, AsyncSessionLocal

    if engine is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")

        engine = build_engine(database_url)
        AsyncSessionLocal = build_sessionmaker(engine)

    return engine


def get_sessionmaker() -> sessionmaker:
    if AsyncSessionLocal is None:
        get_engine()

    assert AsyncSessionLocal is not None  # for type checkers
    return AsyncSessionLocal


async def get_session() -> AsyncSession:
    """Provide a database session for FastAPI dependencies."""

    async with get_sessionmaker()() as session:
        yield session
