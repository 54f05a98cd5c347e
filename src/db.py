"""libsql access for the reminder stores.

The ``libsql`` driver is synchronous; every call is pushed to a worker thread
with ``asyncio.to_thread()`` so a slow database never stalls the event loop
that drives reminder firings.

Connection target, by priority:

- an explicit path (tests pass ``tmp_path / "test.db"``)
- ``TURSO_DATABASE_URL`` + ``TURSO_AUTH_TOKEN`` → remote Turso
- ``DATABASE_PATH`` → local SQLite file

Stores open a short-lived connection per operation, so concurrent firings
never share a connection object.
"""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

import libsql

from src.config import settings

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path


class _AsyncCursor:
    """Awaitable view of a libsql cursor."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        """Rows changed by the statement (0 when an upsert hit a conflict)."""
        return self._cursor.rowcount


class _AsyncConnection:
    """Awaitable view of a libsql connection."""

    def __init__(self, conn: Any, write_lock: threading.Lock | None = None) -> None:
        self._conn = conn
        self._write_lock = write_lock or threading.Lock()

    async def execute(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        cursor = await asyncio.to_thread(self._conn.execute, sql, params)
        return _AsyncCursor(cursor)

    async def execute_write(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        """Run one write statement and commit it in a single worker call.

        The write lock is never held across an ``await``; writers to the same
        database take turns instead of parking in SQLite's busy handler.
        """

        def _write() -> Any:
            with self._write_lock:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor

        return _AsyncCursor(await asyncio.to_thread(_write))

    async def execute_script(self, statements: Iterable[str]) -> None:
        """Run several statements as one committed write."""
        statements = list(statements)

        def _write() -> None:
            with self._write_lock:
                for statement in statements:
                    self._conn.execute(statement)
                self._conn.commit()

        await asyncio.to_thread(_write)

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


# One lock per database, shared by every connection this process opens to it
_write_locks: dict[str, threading.Lock] = {}
_write_locks_guard = threading.Lock()


def _write_lock_for(target: str) -> threading.Lock:
    with _write_locks_guard:
        return _write_locks.setdefault(target, threading.Lock())


def _open_local(path: str) -> Any:
    # Switching a fresh file to WAL needs the write lock too
    with _write_lock_for(path):
        conn = libsql.connect(path)
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA journal_mode=WAL")
        # Completions and firings cascade with their task
        conn.execute("PRAGMA foreign_keys=ON")
    return conn


async def get_connection(local_path_override: Path | None = None) -> _AsyncConnection:
    """Open a connection to the configured database."""
    if local_path_override:
        local_path_override.parent.mkdir(parents=True, exist_ok=True)
        target = str(local_path_override)
        conn = await asyncio.to_thread(_open_local, target)
        return _AsyncConnection(conn, _write_lock_for(target))

    if settings.turso_database_url:
        conn = await asyncio.to_thread(
            libsql.connect,
            database=settings.turso_database_url,
            auth_token=settings.turso_auth_token,
        )
        return _AsyncConnection(conn, _write_lock_for(settings.turso_database_url))

    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(settings.database_path)
    conn = await asyncio.to_thread(_open_local, target)
    return _AsyncConnection(conn, _write_lock_for(target))


async def ensure_schema(conn: _AsyncConnection, statements: Iterable[str]) -> None:
    """Run idempotent ``CREATE ... IF NOT EXISTS`` statements and commit."""
    await conn.execute_script(statements)


class SchemaStore:
    """Base for a store owning one or more tables.

    Subclasses set ``schema`` to their DDL; it runs once per instance, on the
    first connection.  Pass *db_path* for test isolation.
    """

    schema: tuple[str, ...] = ()

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    async def _connect(self) -> _AsyncConnection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await ensure_schema(db, self.schema)
            self._initialised = True
        return db
