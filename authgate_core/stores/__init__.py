"""
AuthGate Stores
===============
Persistence contracts and their in-memory, Redis and SQL implementations.
"""

from .base import (
    BlockStatus,
    BounceRecord,
    BounceStore,
    BounceType,
    ChallengeStore,
    ComplaintRecord,
    CounterStore,
    CounterValue,
    DenylistEntry,
    DenylistStore,
    DeviceStore,
)
from .memory import (
    InMemoryBounceStore,
    InMemoryChallengeStore,
    InMemoryCounterStore,
    InMemoryDenylistStore,
    InMemoryDeviceStore,
)
from .redis import RedisCounterStore, RedisDenylistStore
from .sql import Database, SQLChallengeStore, SQLDeviceStore

__all__ = [
    # Contracts
    "CounterStore",
    "ChallengeStore",
    "DenylistStore",
    "BounceStore",
    "DeviceStore",
    # Records
    "CounterValue",
    "BlockStatus",
    "DenylistEntry",
    "BounceType",
    "BounceRecord",
    "ComplaintRecord",
    # In-memory
    "InMemoryCounterStore",
    "InMemoryChallengeStore",
    "InMemoryDenylistStore",
    "InMemoryBounceStore",
    "InMemoryDeviceStore",
    # Redis
    "RedisCounterStore",
    "RedisDenylistStore",
    # SQL
    "Database",
    "SQLChallengeStore",
    "SQLDeviceStore",
]
