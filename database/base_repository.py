"""Base repository pattern for database operations."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from .connection import SQLitePool


class BaseRepository:
    """Base repository with common database operations.

    Rows come back as plain dicts so models can read optional columns with
    ``row.get`` whatever the deployed schema looks like.
    """

    def __init__(self, pool: SQLitePool) -> None:
        self.pool = pool

    async def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a query without returning rows; returns the affected row count."""
        async with self.pool.connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetch_one(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        """Fetch a single row."""
        async with self.pool.connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
            return dict(row) if row is not None else None

    async def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Fetch all rows."""
        async with self.pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return [dict(row) async for row in cursor]

    async def insert(self, table: str, values: Mapping[str, Any]) -> None:
        """Insert one record.

        Column names come from the repositories' whitelists, never from
        user input.
        """
        columns = list(values)
        placeholders = ", ".join(["?"] * len(columns))
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        await self.execute(query, tuple(values[c] for c in columns))

    async def update(self, table: str, key: str, key_value: Any, values: Mapping[str, Any]) -> int:
        """Update one record by key; returns the affected row count."""
        assignments = ", ".join(f"{column}=?" for column in values)
        query = f"UPDATE {table} SET {assignments} WHERE {key}=?"
        return await self.execute(query, (*values.values(), key_value))
