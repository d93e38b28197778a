"""SQLite connection pool with explicit write transactions."""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aiosqlite

from core.exceptions import DatabaseError, TransientIO


class SQLitePool:
    """Fixed-size pool of aiosqlite connections.

    Connections run in autocommit mode; every write goes through
    :meth:`transaction`, which opens ``BEGIN IMMEDIATE`` so concurrent writers
    queue on sqlite's write lock (bounded by ``busy_timeout``) instead of
    failing half way through a read-then-write sequence.
    """

    def __init__(self, database_path: str, pool_size: int = 5, busy_timeout_ms: int = 5000) -> None:
        self.database_path = Path(database_path)
        self.pool_size = pool_size
        self.busy_timeout_ms = busy_timeout_ms
        self._all: List[aiosqlite.Connection] = []
        self._idle: Optional[asyncio.Queue[aiosqlite.Connection]] = None
        self._initialized = False

    async def init_pool(self) -> None:
        if self._initialized:
            return

        if not self.database_path.parent.exists():
            self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self._idle = asyncio.Queue()
        try:
            for _ in range(self.pool_size):
                conn = await aiosqlite.connect(self.database_path.as_posix(), isolation_level=None)
                conn.row_factory = aiosqlite.Row
                await self._apply_pragma(conn)
                self._all.append(conn)
                self._idle.put_nowait(conn)
        except sqlite3.Error as exc:
            await self.close()
            raise DatabaseError(f"Cannot open database {self.database_path}: {exc}") from exc

        self._initialized = True

    async def close(self) -> None:
        while self._all:
            conn = self._all.pop()
            await conn.close()
        self._idle = None
        self._initialized = False

    async def _apply_pragma(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        if not self._initialized:
            await self.init_pool()
        conn = await self._idle.get()
        try:
            yield conn
        finally:
            self._idle.put_nowait(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements atomically.

        Lock contention surfaces as :class:`TransientIO`; the caller may retry
        the whole unit of work since nothing was committed.
        """
        async with self.connection() as conn:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                raise TransientIO(f"Store busy: {exc}") from exc
            try:
                yield conn
            except sqlite3.OperationalError as exc:
                await conn.rollback()
                raise TransientIO(f"Store write failed: {exc}") from exc
            except BaseException:
                await conn.rollback()
                raise
            else:
                try:
                    await conn.commit()
                except sqlite3.OperationalError as exc:
                    # A failed COMMIT may leave the transaction open on this connection
                    if conn.in_transaction:
                        await conn.rollback()
                    raise TransientIO(f"Store commit failed: {exc}") from exc


_db_pool: Optional[SQLitePool] = None


def get_db_pool() -> SQLitePool:
    if _db_pool is None:
        raise RuntimeError("Database pool not initialized")
    return _db_pool


async def init_db_pool(database_path: str, pool_size: int, busy_timeout_ms: int) -> SQLitePool:
    global _db_pool
    pool = SQLitePool(database_path=database_path, pool_size=pool_size, busy_timeout_ms=busy_timeout_ms)
    await pool.init_pool()
    _db_pool = pool
    return pool


async def close_db_pool() -> None:
    global _db_pool
    if _db_pool is not None:
        await _db_pool.close()
        _db_pool = None
