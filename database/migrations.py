"""Database schema migrations."""

from __future__ import annotations

from typing import Iterable

from core.logger import get_logger

from .connection import SQLitePool

logger = get_logger(__name__)


EVENTS_SQL = """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        owner_id TEXT,
        title TEXT NOT NULL DEFAULT '',
        date TEXT,
        time TEXT,
        end_time TEXT,
        location TEXT,
        status TEXT DEFAULT 'upcoming',
        max_participants INTEGER,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    );
"""

PARTICIPANTS_SQL = """
    CREATE TABLE IF NOT EXISTS participants (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL,
        user_id TEXT,
        email TEXT NOT NULL DEFAULT '',
        first_name TEXT DEFAULT '',
        last_name TEXT DEFAULT '',
        phone TEXT DEFAULT '',
        status TEXT DEFAULT 'registered',
        {checked_in_at}
        created_at TIMESTAMP,
        updated_at TIMESTAMP,
        FOREIGN KEY(event_id) REFERENCES events(id)
    );
"""

INDEXES_SQL: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_events_owner ON events(owner_id);",
    "CREATE INDEX IF NOT EXISTS idx_events_date_time ON events(date, time);",
    "CREATE INDEX IF NOT EXISTS idx_participants_event ON participants(event_id);",
    "CREATE INDEX IF NOT EXISTS idx_participants_user ON participants(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_participants_email ON participants(event_id, email);",
)


def schema_statements(with_checked_in_at: bool = True) -> tuple[str, ...]:
    """Build the schema.

    ``with_checked_in_at=False`` reproduces deployments created before the
    check-in timestamp existed.
    """
    column = "checked_in_at TIMESTAMP," if with_checked_in_at else ""
    return (EVENTS_SQL, PARTICIPANTS_SQL.format(checked_in_at=column)) + INDEXES_SQL


async def _apply(pool: SQLitePool, statements: Iterable[str]) -> None:
    async with pool.connection() as conn:
        for statement in statements:
            await conn.execute(statement)
        await conn.commit()


async def run_migrations(pool: SQLitePool, with_checked_in_at: bool = True) -> None:
    await _apply(pool, schema_statements(with_checked_in_at))
    logger.debug(f"Schema applied (checked_in_at column: {with_checked_in_at})")
