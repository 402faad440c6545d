"""
Key-value store access.

The dashboard reads denormalized usage records from a shared key-value
store. KeyValueStore is the interface the repository depends on;
SqliteKeyValueStore implements it on a local SQLite file.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .db import get_connection

Command = Tuple[str, ...]


class KeyValueStore(ABC):
    """Minimal string/hash store with glob key scans and pipelining."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def hgetall(self, key: str) -> Dict[str, str]:
        ...

    @abstractmethod
    def hget(self, key: str, field: str) -> Optional[str]:
        ...

    @abstractmethod
    def hset(self, key: str, mapping: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    def scan_keys(self, pattern: str) -> List[str]:
        """Return all keys matching a glob pattern, sorted."""

    @abstractmethod
    def pipeline(self, commands: Sequence[Command]) -> List[Any]:
        """Execute commands in order and return their results.

        Each command is a tuple of the command name (``get``, ``set``,
        ``hget``, ``hgetall``) followed by its arguments.
        """


class SqliteKeyValueStore(KeyValueStore):
    """KeyValueStore backed by the kv_string and kv_hash tables."""

    def __init__(self, db_path: str = "account_dashboard.db"):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file (schema must exist)
        """
        self.db_path = db_path

    def get(self, key: str) -> Optional[str]:
        return self._run(("get", key))

    def set(self, key: str, value: str) -> None:
        self._run(("set", key, value))

    def hgetall(self, key: str) -> Dict[str, str]:
        return self._run(("hgetall", key))

    def hget(self, key: str, field: str) -> Optional[str]:
        return self._run(("hget", key, field))

    def hset(self, key: str, mapping: Mapping[str, Any]) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.executemany(
                "INSERT OR REPLACE INTO kv_hash (key, field, value) VALUES (?, ?, ?)",
                [(key, field, str(value)) for field, value in mapping.items()],
            )
            conn.commit()
        finally:
            conn.close()

    def scan_keys(self, pattern: str) -> List[str]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT key FROM kv_string WHERE key GLOB ?
                UNION
                SELECT key FROM kv_hash WHERE key GLOB ?
                ORDER BY key
            """, (pattern, pattern))
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    def pipeline(self, commands: Sequence[Command]) -> List[Any]:
        """Execute all commands on one connection in a single transaction."""
        if not commands:
            return []

        conn = get_connection(self.db_path)
        try:
            results = [self._execute(conn, command) for command in commands]
            conn.commit()
            return results
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run(self, command: Command) -> Any:
        return self.pipeline([command])[0]

    def _execute(self, conn: sqlite3.Connection, command: Command) -> Any:
        name, *args = command
        name = name.lower()

        if name == "get":
            row = conn.execute("SELECT value FROM kv_string WHERE key = ?", (args[0],)).fetchone()
            return row[0] if row else None
        if name == "set":
            conn.execute(
                "INSERT OR REPLACE INTO kv_string (key, value) VALUES (?, ?)",
                (args[0], str(args[1])),
            )
            return None
        if name == "hget":
            row = conn.execute(
                "SELECT value FROM kv_hash WHERE key = ? AND field = ?", (args[0], args[1])
            ).fetchone()
            return row[0] if row else None
        if name == "hgetall":
            cursor = conn.execute("SELECT field, value FROM kv_hash WHERE key = ?", (args[0],))
            return {field: value for field, value in cursor.fetchall()}

        raise ValueError(f"Unsupported store command: {command[0]}")
