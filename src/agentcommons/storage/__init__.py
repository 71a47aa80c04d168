"""
Identity storage for AgentCommons.

Provides the abstract identity store interface and memory, Redis and
PostgreSQL implementations.
"""

from .provider import AbstractIdentityStore, StorageConfig, create_identity_store
from .memory_provider import MemoryIdentityStore
from .redis_provider import RedisIdentityStore
from .postgres_provider import PostgresIdentityStore

__all__ = [
    "AbstractIdentityStore",
    "StorageConfig",
    "create_identity_store",
    "MemoryIdentityStore",
    "RedisIdentityStore",
    "PostgresIdentityStore",
]
