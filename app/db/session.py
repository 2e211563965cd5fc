from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    SQLite only: take the write lock when a transaction begins.

    update_if_match reads and writes in one transaction, so holding the lock
    from BEGIN serializes writers; the others wait on the busy timeout.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # stop the driver from emitting its own BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False, busy_timeout: float = 30.0) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            future=True,
            connect_args={"timeout": busy_timeout},
        )
        _use_immediate_transactions(engine)
        return engine
    # pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
    # when DB or network closed idle connections).
    # pool_recycle: discard connections after this many seconds to avoid stale connections.
    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.database_url, busy_timeout=settings.sqlite_busy_timeout)

AsyncSessionLocal = build_sessionmaker(engine)

Base = declarative_base()


def get_store():
    """Document store bound to the application engine."""
    from app.db.store import DocumentStore

    return DocumentStore(AsyncSessionLocal)
