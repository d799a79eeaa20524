"""Database engine and session management utilities."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import Select, event, func, select, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from sitemap_builder.config import Settings, get_settings
from sitemap_builder.models import Base

DEFAULT_POOL_SIZE = 5
DEFAULT_MAX_OVERFLOW = 10
SQLITE_BUSY_TIMEOUT_SECONDS = 30

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_database_health_logger = logging.getLogger("sitemap_builder.database.health")


@dataclass(slots=True, frozen=True)
class DatabaseHealthCheckResult:
    """Integrity check outcome plus dangling rows per foreign key."""

    integrity_ok: bool
    orphan_counts: dict[str, int]

    @property
    def orphaned_rows(self) -> int:
        return sum(self.orphan_counts.values())

    @property
    def is_healthy(self) -> bool:
        return self.integrity_ok and self.orphaned_rows == 0


def _is_sqlite(url: str | URL) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _sqlite_file_path(database_url: str) -> Path | None:
    """Filesystem path behind a SQLite URL, or ``None`` for memory/URI DBs."""

    parsed = make_url(database_url)
    if parsed.get_backend_name() != "sqlite":
        return None
    database = parsed.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return None
    path = Path(database)
    return path if path.is_absolute() else Path.cwd() / path


def _ensure_sqlite_database_file(database_url: str) -> None:
    path = _sqlite_file_path(database_url)
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; SQLite connections get WAL and foreign keys."""

    sqlite = _is_sqlite(database_url)
    built = create_async_engine(
        database_url,
        poolclass=AsyncAdaptedQueuePool,
        pool_pre_ping=True,
        pool_size=DEFAULT_POOL_SIZE,
        max_overflow=DEFAULT_MAX_OVERFLOW,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS} if sqlite else {},
    )
    if sqlite:

        @event.listens_for(built.sync_engine, "connect")
        def _apply_sqlite_pragmas(dbapi_connection: Any, _: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return built


settings: Settings = get_settings()
_ensure_sqlite_database_file(settings.DATABASE_URL)
engine = build_engine(settings.DATABASE_URL)

AsyncSessionFactory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Yield a transaction-scoped session with automatic commit/rollback."""

    session = AsyncSessionFactory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that provides an async database session."""

    async with session_scope() as session:
        yield session


async def initialize_database() -> None:
    """Create all job tables and make sure SQLite actually runs in WAL mode."""

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
        if not _is_sqlite(connection.engine.url):
            return

        journal_mode = (await connection.execute(text("PRAGMA journal_mode;"))).scalar_one()
        if str(journal_mode).lower() != "wal":
            raise RuntimeError(
                f"SQLite WAL mode was not enabled. Current mode: {journal_mode}"
            )


def _orphan_queries() -> dict[str, Select[tuple[int]]]:
    """One count per foreign key of rows whose parent row no longer exists.

    Built from the model metadata, so new tables are covered automatically.
    """

    queries: dict[str, Select[tuple[int]]] = {}
    for table in Base.metadata.sorted_tables:
        for foreign_key in table.foreign_keys:
            child_column = foreign_key.parent
            parent_column = foreign_key.column
            queries[f"{table.name}.{child_column.name}"] = (
                select(func.count())
                .select_from(
                    table.outerjoin(
                        parent_column.table, child_column == parent_column
                    )
                )
                .where(child_column.is_not(None), parent_column.is_(None))
            )
    return queries


async def _sqlite_integrity_ok(connection: AsyncConnection) -> bool:
    rows = (await connection.execute(text("PRAGMA integrity_check;"))).scalars().all()
    if rows == ["ok"]:
        return True
    _database_health_logger.error(
        "database_integrity_check_failed",
        extra={"integrity_rows": list(rows)},
    )
    return False


async def run_startup_database_health_check(
    *,
    fail_fast_on_integrity_error: bool = True,
) -> DatabaseHealthCheckResult:
    """Check SQLite integrity and count rows left behind by missed cascades."""

    async with engine.connect() as connection:
        integrity_ok = True
        if _is_sqlite(connection.engine.url):
            integrity_ok = await _sqlite_integrity_ok(connection)

        orphan_counts = {
            key: int((await connection.execute(query)).scalar_one())
            for key, query in _orphan_queries().items()
        }

    result = DatabaseHealthCheckResult(
        integrity_ok=integrity_ok,
        orphan_counts=orphan_counts,
    )
    if result.orphaned_rows:
        _database_health_logger.warning(
            "database_orphan_rows_detected",
            extra={"orphan_counts": orphan_counts, "orphaned_rows": result.orphaned_rows},
        )
    _database_health_logger.info(
        "database_startup_health_check_completed",
        extra={
            "integrity_ok": result.integrity_ok,
            "orphaned_rows": result.orphaned_rows,
            "healthy": result.is_healthy,
        },
    )

    if fail_fast_on_integrity_error and not result.integrity_ok:
        raise RuntimeError(
            "Database integrity check failed. Review logs before restarting."
        )
    return result


async def close_database() -> None:
    """Dispose database engine and release pooled connections."""

    await engine.dispose()


__all__ = [
    "AsyncSessionFactory",
    "DatabaseHealthCheckResult",
    "SessionScopeFactory",
    "build_engine",
    "close_database",
    "engine",
    "get_db_session",
    "initialize_database",
    "run_startup_database_health_check",
    "session_scope",
]
