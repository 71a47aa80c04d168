"""
Abstract Identity Store Interface.

Defines the contract that all identity storage backends must implement.
Correctness across processes depends on two store-level guarantees:

- ``create_identity`` is create-or-fetch under a unique constraint on the
  bound public key, so concurrent first contacts converge on one identity,
  and exactly one of them is told it created it.
- ``compare_and_swap_active_key`` commits a rotation atomically, and only
  if the expected old key is still active.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from agentcommons.identity.models import Identity, KeyHistoryEntry


class StorageConfig(BaseModel):
    """Configuration for identity store."""

    backend: str = Field(default="memory", description="Storage backend type")
    connection_string: Optional[str] = Field(default=None, description="Connection string")
    pool_size: int = Field(default=10, ge=1, le=100, description="Connection pool size")
    timeout_seconds: float = Field(default=5, gt=0, le=300, description="Operation timeout")
    key_prefix: str = Field(default="agentcommons:", description="Key/table namespace")

    # Redis-specific
    redis_host: Optional[str] = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0)
    redis_password: Optional[str] = None
    redis_ssl: bool = False

    # PostgreSQL-specific
    postgres_host: Optional[str] = Field(default="localhost")
    postgres_port: int = Field(default=5432, ge=1, le=65535)
    postgres_database: Optional[str] = Field(default="agentcommons")
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_ssl_mode: str = Field(default="prefer")


class AbstractIdentityStore(ABC):
    """
    Abstract identity store.

    All backends (memory, Redis, PostgreSQL) implement this interface.
    Backend failures (timeouts, lost connections) must surface as
    ``StorageUnavailableError``; a ``None`` lookup result always means the
    identity definitely does not exist.
    """

    def __init__(self, config: StorageConfig):
        """Initialize identity store with configuration."""
        self.config = config

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to storage backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to storage backend."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage backend is healthy."""

    # Lookups

    @abstractmethod
    async def lookup_by_fingerprint(self, fingerprint: str) -> Optional[Identity]:
        """Return the identity for *fingerprint*, or None."""

    @abstractmethod
    async def lookup_by_public_key(self, public_key: str) -> Optional[Identity]:
        """Return the identity *public_key* is or was bound to, or None.

        Superseded keys stay bound to their identity so that stale
        signatures can be recognised and rejected.
        """

    # Mutations

    @abstractmethod
    async def create_identity(
        self, public_key: str, fingerprint: str
    ) -> tuple[Identity, bool]:
        """Create an identity for *public_key*, or fetch it if already bound.

        Returns:
            ``(identity, created)``; ``created`` is True only for the call
            that inserted the identity.

        Raises:
            KeyAlreadyBoundError: If *fingerprint* is already taken by an
                identity whose first key differs (a fingerprint collision).
        """

    @abstractmethod
    async def compare_and_swap_active_key(
        self,
        fingerprint: str,
        expected_old_key: str,
        new_key: str,
        now: datetime,
        rotation_timestamp: float,
    ) -> bool:
        """Atomically rotate the active key.

        In a single all-or-nothing step: supersede the active history entry
        at *now*, append *new_key* as the active entry, update
        ``current_public_key`` and record *rotation_timestamp*.

        Returns:
            False without changing anything if *expected_old_key* is no
            longer active, the rotation timestamp is not newer than the last
            committed one, or *new_key* is already bound to an identity.
        """

    async def key_history(self, fingerprint: str) -> list[KeyHistoryEntry]:
        """Return the ordered key history for *fingerprint* (empty if unknown)."""
        identity = await self.lookup_by_fingerprint(fingerprint)
        return list(identity.key_history) if identity else []


def create_identity_store(config: StorageConfig) -> AbstractIdentityStore:
    """Instantiate the identity store named by ``config.backend``."""
    backend = config.backend.lower()
    if backend == "memory":
        from .memory_provider import MemoryIdentityStore

        return MemoryIdentityStore(config)
    if backend == "redis":
        from .redis_provider import RedisIdentityStore

        return RedisIdentityStore(config)
    if backend in ("postgres", "postgresql"):
        from .postgres_provider import PostgresIdentityStore

        return PostgresIdentityStore(config)
    raise ValueError(f"Unknown storage backend: {config.backend}")
