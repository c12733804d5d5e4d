"""Async SQLAlchemy engine and session wiring for the local credentials file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from pathlib import Path
    from typing import Protocol

    class _DBAPICursor(Protocol):
        def execute(self, statement: str) -> object: ...

        def close(self) -> None: ...

    class _DBAPIConnection(Protocol):
        def cursor(self) -> _DBAPICursor: ...


SQLITE_PRAGMA_STATEMENTS: tuple[str, ...] = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=5000;",
)

SessionFactory = async_sessionmaker[AsyncSession]


@dataclass(slots=True)
class StorageRuntime:
    """Engine and session factory bound to one credentials database file."""

    engine: AsyncEngine
    session_factory: SessionFactory


def build_sqlite_url(db_path: Path) -> str:
    """Build SQLAlchemy async SQLite URL from configured db path."""
    normalized_path = db_path.expanduser()
    return f"sqlite+aiosqlite:///{normalized_path.as_posix()}"


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Create typed async session factory for the supplied engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def create_storage_runtime(db_path: Path) -> StorageRuntime:
    """Create the engine and session factory for a credentials database."""
    engine = create_async_engine(
        build_sqlite_url(db_path),
        pool_pre_ping=True,
    )
    _install_sqlite_pragma_handler(engine)
    return StorageRuntime(
        engine=engine,
        session_factory=create_session_factory(engine),
    )


async def dispose_storage_runtime(runtime: StorageRuntime) -> None:
    """Dispose the engine for fixture teardown and client shutdown."""
    await runtime.engine.dispose()


def _install_sqlite_pragma_handler(engine: AsyncEngine) -> None:
    """Apply SQLite PRAGMAs on each fresh connection."""

    def _set_sqlite_pragmas(
        dbapi_connection: object,
        connection_record: object,
    ) -> None:
        _ = connection_record
        connection = cast("_DBAPIConnection", dbapi_connection)
        cursor = connection.cursor()
        try:
            for statement in SQLITE_PRAGMA_STATEMENTS:
                _ = cursor.execute(statement)
        finally:
            cursor.close()

    event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
