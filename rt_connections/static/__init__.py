from rt_connections.static.index import StaticIndex, build_static_index
from rt_connections.static.source import GtfsSource
from rt_connections.static.stores import KeyValueStore, MemStore, SqliteStore, open_store

__all__ = [
    "GtfsSource",
    "KeyValueStore",
    "MemStore",
    "SqliteStore",
    "StaticIndex",
    "build_static_index",
    "open_store",
]
