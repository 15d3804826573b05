"""Indicator storage on top of a key/value backend."""

from threatsync.datastore.backends import KeyValueBackend, MemoryBackend, RedisBackend
from threatsync.datastore.store import IndicatorStore, StoreKeys

__all__ = [
    "IndicatorStore",
    "KeyValueBackend",
    "MemoryBackend",
    "RedisBackend",
    "StoreKeys",
]
