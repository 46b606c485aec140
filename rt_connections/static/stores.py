"""
Key-value stores backing the static GTFS indexes and the connection history.

Two implementations share one contract (get / put / contains / keys / items / close):

  MemStore     plain dict, everything in RAM
  SqliteStore  single-table SQLite file with JSON-encoded values, for
               feeds too big for memory and for the history that has to
               survive between runs

Consumers only ever talk to KeyValueStore.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterator, Optional, Tuple

from rt_connections.errors import ConfigError, UnsupportedStoreError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def __contains__(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def keys(self) -> Iterator[str]:
        raise NotImplementedError

    def items(self) -> Iterator[Tuple[str, Any]]:
        for key in self.keys():
            yield key, self.get(key)

    def put_many(self, items) -> None:
        for key, value in items:
            self.put(key, value)

    def __len__(self) -> int:
        return sum(1 for _ in self.keys())

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemStore(KeyValueStore):

    def __init__(self):
        self._data = {}

    def get(self, key, default=None):
        return self._data.get(key, default)

    def put(self, key, value):
        self._data[key] = value

    def __contains__(self, key):
        return key in self._data

    def keys(self):
        return iter(list(self._data.keys()))

    def clear(self):
        self._data.clear()

    def __len__(self):
        return len(self._data)


class SqliteStore(KeyValueStore):
    """On-disk store. Several named stores can share one database file.

    The connection is shared across threads; a lock serializes access so
    reads observe every earlier write from the same process.
    """

    def __init__(self, path: str, table: str = "kv"):
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table}")
        self.path = path
        self.table = table
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        with self._lock:
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            self._conn.commit()

    def get(self, key, default=None):
        with self._lock:
            row = self._conn.execute(
                f"SELECT value FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    def put(self, key, value):
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            self._conn.commit()

    def put_many(self, items):
        rows = [(key, json.dumps(value)) for key, value in items]
        with self._lock:
            self._conn.executemany(
                f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)", rows
            )
            self._conn.commit()

    def __contains__(self, key):
        with self._lock:
            row = self._conn.execute(
                f"SELECT 1 FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
        return row is not None

    def keys(self):
        with self._lock:
            rows = self._conn.execute(f"SELECT key FROM {self.table}").fetchall()
        return iter([r[0] for r in rows])

    def clear(self):
        with self._lock:
            self._conn.execute(f"DELETE FROM {self.table}")
            self._conn.commit()

    def close(self):
        with self._lock:
            self._conn.close()


STORE_KINDS = {
    "MemStore": "memory",
    "DiskStore": "disk",
    "LevelStore": "disk",
}


def open_store(kind: str, path: Optional[str] = None, table: str = "kv") -> KeyValueStore:
    """Instantiate a store by name. Unknown names are a fatal config error."""
    backend = STORE_KINDS.get(kind)
    if backend is None:
        raise UnsupportedStoreError(kind)
    if backend == "memory":
        return MemStore()
    if not path:
        raise ConfigError(f"{kind} needs a store path")
    logger.debug(f"Opening on-disk store {path}:{table}")
    return SqliteStore(path, table=table)
