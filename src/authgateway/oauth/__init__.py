"""Token record and the key/value stores that hold it."""

from .storage import FileStore, KeyValueStore, MemoryStore, TokenRecord

__all__ = [
    "FileStore",
    "KeyValueStore",
    "MemoryStore",
    "TokenRecord",
]
