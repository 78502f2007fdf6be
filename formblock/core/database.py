from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
from loguru import logger

from .config import get_settings

_SCHEMA_STATEMENTS: tuple[str, ...] = (
    "CREATE TABLE IF NOT EXISTS options (name VARCHAR(191) PRIMARY KEY, value TEXT NOT NULL)",
)


class Database:
    """Thin async wrapper around the SQLite file holding persisted options."""

    def __init__(self, path: Path | None = None) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._path = path

    def _get_path(self) -> Path:
        if self._path is not None:
            return self._path
        return get_settings().options_db_path

    async def connect(self) -> None:
        if self._conn:
            return
        db_path = self._get_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Connecting to SQLite database at {path}", path=str(db_path))
        self._conn = await aiosqlite.connect(str(db_path))
        self._conn.row_factory = aiosqlite.Row

    async def disconnect(self) -> None:
        if self._conn:
            logger.info("Disconnecting from SQLite database")
            await self._conn.close()
            self._conn = None

    def is_connected(self) -> bool:
        return self._conn is not None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        if not self._conn:
            raise RuntimeError("SQLite database not initialised")
        yield self._conn

    async def ensure_schema(self) -> None:
        await self.connect()
        async with self.acquire() as conn:
            for statement in _SCHEMA_STATEMENTS:
                await conn.execute(statement)
            await conn.commit()

    async def execute(self, sql: str, params: tuple | dict | None = None) -> None:
        async with self.acquire() as conn:
            await conn.execute(sql, params or ())
            await conn.commit()

    async def fetch_one(self, sql: str, params: tuple | dict | None = None) -> dict[str, Any] | None:
        async with self.acquire() as conn:
            cursor = await conn.execute(sql, params or ())
            row = await cursor.fetchone()
            # Convert sqlite3.Row to dict
            return dict(row) if row else None

    async def fetch_all(self, sql: str, params: tuple | dict | None = None) -> list[dict[str, Any]]:
        async with self.acquire() as conn:
            cursor = await conn.execute(sql, params or ())
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


db = Database()
