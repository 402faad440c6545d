"""
Database connection management.

Provides the SQLite connection backing the key-value store.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "account_dashboard.db") -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    return conn


def initialize_schema(db_path: str = "account_dashboard.db") -> None:
    """Create the string and hash tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_string (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_hash (
                key TEXT NOT NULL,
                field TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (key, field)
            )
        """)
        conn.commit()
    finally:
        conn.close()
