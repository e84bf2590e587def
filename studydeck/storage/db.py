"""
Database connection management.

Provides SQLite connections for the deck, flashcard and study-session store.
"""

import os
import sqlite3
from pathlib import Path
from typing import Optional

DEFAULT_DB_PATH = "studydeck.db"


def resolve_db_path(db_path: Optional[str] = None) -> str:
    """Return the explicit path, else ``STUDYDECK_DB_PATH``, else the default."""
    return db_path or os.getenv("STUDYDECK_DB_PATH", DEFAULT_DB_PATH)


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Cascading deletes of decks (to flashcards and study sessions) depend on
    foreign keys being enforced on every connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
