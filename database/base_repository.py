"""Base repository pattern for database operations."""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Sequence

import aiosqlite

from core.exceptions import RepositoryError, TransientIO
from database.connection import SQLitePool, get_db_pool


class BaseRepository:
    """Base repository with common database operations."""

    def __init__(self, pool: Optional[SQLitePool] = None) -> None:
        self.pool = pool or get_db_pool()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Atomic unit of work; integrity violations become RepositoryError."""
        try:
            async with self.pool.transaction() as conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise RepositoryError(str(exc)) from exc

    async def execute(self, query: str, params: Sequence[Any] = ()) -> None:
        """Execute a single write statement in its own transaction."""
        async with self.transaction() as conn:
            await conn.execute(query, params)

    async def fetch_one(self, query: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """Fetch a single row."""
        try:
            async with self.pool.connection() as conn:
                cursor = await conn.execute(query, params)
                return await cursor.fetchone()
        except sqlite3.OperationalError as exc:
            raise TransientIO(f"Store read failed: {exc}") from exc

    async def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Fetch all rows."""
        try:
            async with self.pool.connection() as conn:
                cursor = await conn.execute(query, params)
                return list(await cursor.fetchall())
        except sqlite3.OperationalError as exc:
            raise TransientIO(f"Store read failed: {exc}") from exc

    async def fetch_value(self, query: str, params: Sequence[Any] = ()) -> Optional[Any]:
        """Fetch a single value from a single row."""
        row = await self.fetch_one(query, params)
        return row[0] if row else None

    async def fetch_column(self, query: str, params: Sequence[Any] = ()) -> List[Any]:
        """Fetch first column from all rows."""
        rows = await self.fetch_all(query, params)
        return [row[0] for row in rows]

    @staticmethod
    async def fetch_one_in(
        conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()
    ) -> Optional[sqlite3.Row]:
        """Fetch a single row on a connection already inside a transaction.

        Rows are drained so ``INSERT/UPDATE ... RETURNING`` statements are
        complete before the transaction commits.
        """
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return rows[0] if rows else None
