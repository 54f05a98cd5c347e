"""Tests for async database connection abstraction."""

import asyncio
from pathlib import Path

import pytest

from src.db import SchemaStore, _AsyncConnection, ensure_schema, get_connection

pytestmark = pytest.mark.usefixtures("_no_turso")


class TestGetConnection:
    async def test_returns_async_connection(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        assert isinstance(conn, _AsyncConnection)
        await conn.close()

    async def test_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await get_connection(local_path_override=db_path)
        assert db_path.parent.exists()
        await conn.close()


class TestAsyncConnection:
    async def test_execute_and_fetchall(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
        await conn.execute("INSERT INTO t (name) VALUES (?)", ("alice",))
        await conn.commit()

        cursor = await conn.execute("SELECT name FROM t")
        rows = await cursor.fetchall()
        assert rows == [("alice",)]
        await conn.close()

    async def test_execute_and_fetchone(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, val TEXT)")
        await conn.execute("INSERT INTO t (val) VALUES (?)", ("hello",))
        await conn.commit()

        cursor = await conn.execute("SELECT val FROM t WHERE id = 1")
        row = await cursor.fetchone()
        assert row == ("hello",)
        await conn.close()

    async def test_fetchone_returns_none_when_empty(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")

        cursor = await conn.execute("SELECT * FROM t WHERE id = 999")
        row = await cursor.fetchone()
        assert row is None
        await conn.close()

    async def test_rowcount(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
        await conn.execute("INSERT INTO t (name) VALUES (?)", ("a",))
        await conn.execute("INSERT INTO t (name) VALUES (?)", ("b",))
        await conn.commit()

        cursor = await conn.execute("DELETE FROM t")
        assert cursor.rowcount == 2
        await conn.close()

    async def test_execute_write_commits(self, tmp_path: Path):
        db_path = tmp_path / "test.db"
        conn = await get_connection(local_path_override=db_path)
        await conn.execute_script(("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)",))
        cursor = await conn.execute_write("INSERT INTO t (name) VALUES (?)", ("alice",))
        assert cursor.rowcount == 1
        await conn.close()

        other = await get_connection(local_path_override=db_path)
        cursor = await other.execute("SELECT name FROM t")
        assert await cursor.fetchall() == [("alice",)]
        await other.close()

    async def test_concurrent_writers_on_separate_connections(self, tmp_path: Path):
        db_path = tmp_path / "test.db"
        setup = await get_connection(local_path_override=db_path)
        await setup.execute_script(("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)",))
        await setup.close()

        async def _insert(name: str) -> None:
            conn = await get_connection(local_path_override=db_path)
            try:
                await conn.execute_write("INSERT INTO t (name) VALUES (?)", (name,))
            finally:
                await conn.close()

        names = [f"writer{i}" for i in range(6)]
        await asyncio.gather(*(_insert(name) for name in names))

        conn = await get_connection(local_path_override=db_path)
        cursor = await conn.execute("SELECT name FROM t ORDER BY name")
        assert [row[0] for row in await cursor.fetchall()] == names
        await conn.close()

    async def test_foreign_keys_enforced(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE parent (id TEXT PRIMARY KEY)")
        await conn.execute(
            "CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id TEXT REFERENCES parent(id))"
        )
        await conn.commit()

        with pytest.raises(Exception, match="(?i)foreign key"):
            await conn.execute("INSERT INTO child (parent_id) VALUES (?)", ("missing",))
        await conn.close()


class TestEnsureSchema:
    async def test_creates_tables(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await ensure_schema(
            conn,
            (
                "CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY)",
                "CREATE INDEX IF NOT EXISTS idx_t ON t(id)",
            ),
        )
        cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        assert ("t",) in await cursor.fetchall()
        await conn.close()

    async def test_idempotent(self, tmp_path: Path):
        statements = ("CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY)",)
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await ensure_schema(conn, statements)
        await ensure_schema(conn, statements)
        await conn.close()


class _NotesStore(SchemaStore):
    schema = ("CREATE TABLE IF NOT EXISTS notes (id INTEGER PRIMARY KEY, body TEXT)",)


class TestSchemaStore:
    async def test_schema_created_on_first_connect(self, tmp_path: Path):
        store = _NotesStore(db_path=tmp_path / "test.db")
        db = await store._connect()
        await db.execute("INSERT INTO notes (body) VALUES (?)", ("hi",))
        await db.commit()
        await db.close()

        assert store._initialised is True
        db = await store._connect()
        cursor = await db.execute("SELECT body FROM notes")
        assert await cursor.fetchall() == [("hi",)]
        await db.close()
