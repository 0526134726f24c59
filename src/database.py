"""
Database engine, session management and unit of work (SQLAlchemy 2.0 async).

All database access goes through the async session returned by
get_db_session(). Never use synchronous sessions in this codebase.

Design decisions:
- Pool size tuned for a containerized API (not a massive machine)
- All models import Base from here to keep metadata centralized
- Session is committed/rolled back by the FastAPI dependency, not by
  individual service functions - this makes transaction boundaries explicit
- Multi-statement writes that must be all-or-nothing (profile bootstrap,
  invitation acceptance, tenant creation/deletion) go through
  run_in_transaction(), which wraps the closure in a SAVEPOINT when the
  request transaction is already open
- Side effects that must not outlive a rolled-back write (invitation
  emails) are queued with call_after_commit()
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any, TypeVar

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, SessionTransaction
from sqlalchemy.pool import NullPool, StaticPool

from src.config import Settings, get_settings

log = structlog.get_logger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    """Declarative base for all ORM models.

    Centralizing the metadata here ensures Alembic can discover all tables
    by importing this module.
    """

    type_annotation_map: dict[Any, Any] = {}


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let the pysqlite-based drivers emit BEGIN/SAVEPOINT themselves.

    The stdlib sqlite3 module manages transactions on its own and breaks
    SAVEPOINT semantics; handing control back to SQLAlchemy fixes that.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def build_engine(settings: Settings, *, for_test: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine from settings.

    Uses NullPool in test mode to avoid connection leaks between test cases,
    except for in-memory SQLite where every connection would otherwise see
    its own empty database.
    """
    kwargs: dict[str, Any] = {"echo": settings.db_echo_sql}
    is_sqlite = settings.database_url.startswith("sqlite")

    if is_sqlite and ":memory:" in settings.database_url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    elif for_test:
        kwargs["poolclass"] = NullPool
    elif not is_sqlite:
        kwargs.update(
            {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_pre_ping": True,
                "pool_recycle": 300,  # Recycle connections every 5 minutes
            }
        )

    engine = create_async_engine(settings.database_url, **kwargs)
    if is_sqlite:
        enable_sqlite_savepoints(engine)
    return engine


# Module-level singletons, initialized in lifespan
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(settings: Settings | None = None, *, for_test: bool = False) -> None:
    """Initialize the database engine and session factory.

    Called once during application startup (or test setup).
    """
    global _engine, _session_factory
    cfg = settings or get_settings()
    _engine = build_engine(cfg, for_test=for_test)
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Avoid lazy-load issues after commit
        autoflush=True,
    )
    log.info("database.initialized", url=cfg.database_url.split("@")[-1])


async def close_db() -> None:
    """Dispose the engine and release all connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        log.info("database.closed")
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    """Return the initialized engine (raises if not initialized)."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session.

    Commits on success, rolls back on any exception.

    Usage:
        @router.get("/foo")
        async def endpoint(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def run_in_transaction(
    db: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """Run *fn* as one all-or-nothing unit of work.

    If the session already has an open transaction (the usual case inside a
    request, after the context lookups), the closure runs inside a SAVEPOINT
    so a failure rolls back only its own writes. Otherwise a new transaction
    is opened and committed when the closure returns.

    Usage:
        membership = await run_in_transaction(db, lambda tx: _accept(tx, invite))
    """
    if db.in_transaction():
        async with db.begin_nested():
            return await fn(db)
    async with db.begin():
        return await fn(db)


# ------------------------------------------------------------------ #
# After-commit side effects
# ------------------------------------------------------------------ #

_AFTER_COMMIT_KEY = "after_commit_callbacks"


def call_after_commit(db: AsyncSession, callback: Callable[[], object]) -> None:
    """Run *callback* once the session's outermost transaction commits.

    Callbacks queued in a transaction that rolls back (or whose commit
    fails) are discarded without running. SAVEPOINT releases do not count
    as a commit.

    Usage:
        call_after_commit(db, partial(mailer.send_invitation, to=email, ...))
    """
    db.sync_session.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


@event.listens_for(Session, "after_commit")
def _run_after_commit_callbacks(session: Session) -> None:
    if session.in_nested_transaction():
        return
    for callback in session.info.pop(_AFTER_COMMIT_KEY, []):
        callback()


@event.listens_for(Session, "after_transaction_end")
def _discard_after_commit_callbacks(session: Session, transaction: SessionTransaction) -> None:
    # Reached with callbacks still queued only when the root did not commit
    if transaction.parent is None:
        dropped = session.info.pop(_AFTER_COMMIT_KEY, None)
        if dropped:
            log.info("database.after_commit_discarded", count=len(dropped))
