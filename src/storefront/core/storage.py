"""
Key-value blob stores used to persist cart and checkout state.

Two implementations share one interface:
- InMemoryStore: process-local dict, for tests and throwaway sessions
- SQLiteStore: durable store backed by one of the tables in core.db
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .db import get_db_connection, init_database, STORAGE_TABLES

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """A blob store with string keys and string (JSON) values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class InMemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SQLiteStore(KeyValueStore):
    """Durable store; one instance per table (storage scope)."""

    def __init__(self, table: str, db_path: Optional[str] = None):
        if table not in STORAGE_TABLES:
            raise ValueError(f"Unknown storage table: {table}")
        self.table = table
        self.db_path = db_path
        init_database(db_path)

    def get(self, key: str) -> Optional[str]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT value FROM {self.table} WHERE storage_key = ?", (key,)
            ).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = get_db_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO {self.table} (storage_key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(storage_key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (key, value))
            conn.commit()
            logger.debug(f"[STORAGE] Wrote {self.table}/{key} ({len(value)} bytes)")
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = get_db_connection(self.db_path)
        try:
            conn.execute(f"DELETE FROM {self.table} WHERE storage_key = ?", (key,))
            conn.commit()
            logger.info(f"[STORAGE] Deleted {self.table}/{key}")
        finally:
            conn.close()
