from __future__ import annotations

import asyncio
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from threading import RLock
from typing import Dict, Generator, List, Optional, Protocol

from .settings import Settings, get_settings


# PUBLIC_INTERFACE
class KeyValueStore(Protocol):
    """
    Synchronous whole-value key-value substrate.

    get returns None for absent keys; set overwrites the full value.
    There are no partial writes, transactions or range queries.
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class InMemoryKeyValueStore:
    """
    Thread-safe in-memory substrate suitable for testing and default runtime.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._lock = RLock()
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._values)


@dataclass(frozen=True)
class _Cols:
    table: str = "kv"
    key: str = "key"
    value: str = "value"


_COLS = _Cols()


class SQLiteKeyValueStore:
    """
    Substrate persisted in a single two-column SQLite table.

    Each call opens its own connection, so the store can be used from the
    worker threads asyncio.to_thread dispatches to.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.key} TEXT PRIMARY KEY,
                    {_COLS.value} TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> Optional[str]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_COLS.value} FROM {_COLS.table} WHERE {_COLS.key} = ?", (key,)
            ).fetchone()
            return str(row[0]) if row else None

    def set(self, key: str, value: str) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.key}, {_COLS.value}) VALUES (?, ?)
                ON CONFLICT({_COLS.key}) DO UPDATE SET {_COLS.value} = excluded.{_COLS.value}
                """,
                (key, value),
            )

    def delete(self, key: str) -> None:
        with self._conn() as conn:
            conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.key} = ?", (key,))

    def keys(self) -> List[str]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT {_COLS.key} FROM {_COLS.table}").fetchall()
            return [str(r[0]) for r in rows]


async def read_value(store: KeyValueStore, key: str) -> Optional[str]:
    """Read one value off the event loop thread."""
    return await asyncio.to_thread(store.get, key)


async def write_value(store: KeyValueStore, key: str, value: str) -> None:
    """Overwrite one value off the event loop thread."""
    await asyncio.to_thread(store.set, key, value)


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def footprint(store: KeyValueStore) -> int:
    """
    Total stored size in bytes: UTF-8 length of every key plus its value,
    across all keys in the store.
    """
    total = 0
    for key in store.keys():
        value = store.get(key)
        if value is None:
            # Deleted between keys() and get()
            continue
        total += byte_length(key) + byte_length(value)
    return total


# PUBLIC_INTERFACE
def get_store(settings: Optional[Settings] = None) -> KeyValueStore:
    """
    Factory to return the configured substrate based on settings.
    - memory: InMemoryKeyValueStore
    - sqlite: SQLiteKeyValueStore at settings.sqlite_path
    """
    settings = settings or get_settings()
    if settings.substrate == "sqlite":
        return SQLiteKeyValueStore(settings.sqlite_path)
    return InMemoryKeyValueStore()
