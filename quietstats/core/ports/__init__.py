# quietstats - Ports (Protocol Interfaces)
# Abstract interfaces for adapters; no implementations here

from quietstats.core.ports.storage import Item, KeyValueStorePort, StorageError
from quietstats.core.ports.time import TimePort

__all__ = [
    # Storage
    "Item",
    "KeyValueStorePort",
    "StorageError",
    # Time
    "TimePort",
]
