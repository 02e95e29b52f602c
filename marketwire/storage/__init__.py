"""
Storage Module
Key-value backends, ledger markers and the subscriber registry
"""

from .kv_store import KVStore, MemoryStore, SQLiteStore, RedisStore, StorageError, build_store
from .ledger import Ledger
from .subscribers import Subscriber, SubscriberRegistry, SubscriberUpdate

__all__ = [
    'KVStore',
    'MemoryStore',
    'SQLiteStore',
    'RedisStore',
    'StorageError',
    'build_store',
    'Ledger',
    'Subscriber',
    'SubscriberRegistry',
    'SubscriberUpdate'
]
