"""Database package public API."""

from .connection import SQLitePool, init_db_pool
from .migrations import run_migrations
from .models import Event, Participant, Registration
from .store import DataStore, SQLiteDataStore

__all__ = [
    "SQLitePool",
    "init_db_pool",
    "run_migrations",
    "Event",
    "Participant",
    "Registration",
    "DataStore",
    "SQLiteDataStore",
]
