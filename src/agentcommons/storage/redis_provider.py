"""
Redis Identity Store.

Production Redis backend with connection pooling. Identities are stored as
JSON documents; rotations and first-contact creation run as optimistic
WATCH/MULTI/EXEC transactions so they stay atomic across processes.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

try:
    import redis.asyncio as aioredis
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import TimeoutError as RedisTimeoutError
    from redis.exceptions import WatchError

    _REDIS_AVAILABLE = True
except ImportError:
    _REDIS_AVAILABLE = False

from agentcommons.exceptions import KeyAlreadyBoundError, StorageUnavailableError
from agentcommons.identity.models import Identity

from .provider import AbstractIdentityStore, StorageConfig

logger = logging.getLogger(__name__)


def _require_redis() -> None:
    """Raise ImportError if redis package is not installed."""
    if not _REDIS_AVAILABLE:
        raise ImportError(
            "redis package is required for RedisIdentityStore. "
            "Install with: pip install agentcommons[storage] "
            "or pip install redis>=5.0.1"
        )


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate connectivity failures into StorageUnavailableError."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError, asyncio.TimeoutError, OSError) as exc:
        logger.warning("Redis identity store unavailable: %s", type(exc).__name__)
        raise StorageUnavailableError("Identity store is unavailable") from exc


class RedisIdentityStore(AbstractIdentityStore):
    """
    Redis identity store.

    Layout (under ``config.key_prefix``):

    - ``identity:<fingerprint>``: JSON-encoded :class:`Identity`
    - ``pubkey:<public_key>``: fingerprint the key is (or was) bound to

    Requires: redis>=5 (``redis.asyncio``)
    """

    def __init__(self, config: Optional[StorageConfig] = None, client: Any = None):
        """Initialize Redis storage.

        Args:
            config: Store configuration.
            client: Optional pre-built ``redis.asyncio.Redis`` client.
        """
        _require_redis()
        super().__init__(config or StorageConfig(backend="redis"))
        self._client = client
        self._pool = None

    # -- Key helpers ----------------------------------------------------------

    def _identity_key(self, fingerprint: str) -> str:
        return f"{self.config.key_prefix}identity:{fingerprint}"

    def _pubkey_key(self, public_key: str) -> str:
        return f"{self.config.key_prefix}pubkey:{public_key}"

    # -- Connection -----------------------------------------------------------

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._client is None:
            if self.config.connection_string:
                self._pool = aioredis.ConnectionPool.from_url(
                    self.config.connection_string,
                    max_connections=self.config.pool_size,
                    socket_timeout=self.config.timeout_seconds,
                    socket_connect_timeout=self.config.timeout_seconds,
                    decode_responses=True,
                )
            else:
                self._pool = aioredis.ConnectionPool(
                    host=self.config.redis_host,
                    port=self.config.redis_port,
                    db=self.config.redis_db,
                    password=self.config.redis_password,
                    ssl=self.config.redis_ssl,
                    max_connections=self.config.pool_size,
                    socket_timeout=self.config.timeout_seconds,
                    socket_connect_timeout=self.config.timeout_seconds,
                    decode_responses=True,
                )
            self._client = aioredis.Redis(connection_pool=self._pool)

        with _store_errors():
            await self._client.ping()

    async def disconnect(self) -> None:
        """Close connection to Redis."""
        if self._client is not None:
            await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()

    async def health_check(self) -> bool:
        """Check if Redis is healthy."""
        try:
            if self._client is not None:
                await self._client.ping()
                return True
        except Exception:
            logger.debug("Redis health check failed", exc_info=True)
        return False

    # -- Lookups --------------------------------------------------------------

    async def lookup_by_fingerprint(self, fingerprint: str) -> Optional[Identity]:
        with _store_errors():
            raw = await self._client.get(self._identity_key(fingerprint))
        return Identity.model_validate_json(raw) if raw else None

    async def lookup_by_public_key(self, public_key: str) -> Optional[Identity]:
        with _store_errors():
            fingerprint = await self._client.get(self._pubkey_key(public_key))
        if fingerprint is None:
            return None
        return await self.lookup_by_fingerprint(fingerprint)

    # -- Mutations ------------------------------------------------------------

    async def create_identity(self, public_key: str, fingerprint: str) -> tuple[Identity, bool]:
        pubkey_key = self._pubkey_key(public_key)
        identity_key = self._identity_key(fingerprint)

        with _store_errors():
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(pubkey_key, identity_key)
                        bound = await pipe.get(pubkey_key)
                        if bound is not None:
                            raw = await pipe.get(self._identity_key(bound))
                            await pipe.unwatch()
                            return Identity.model_validate_json(raw), False
                        if await pipe.exists(identity_key):
                            await pipe.unwatch()
                            raise KeyAlreadyBoundError(
                                f'Fingerprint "{fingerprint}" is already bound to a different key'
                            )

                        identity = Identity.new(fingerprint, public_key)
                        pipe.multi()
                        pipe.set(identity_key, identity.model_dump_json())
                        pipe.set(pubkey_key, fingerprint)
                        await pipe.execute()
                        return identity, True
                    except WatchError:
                        # A concurrent first contact touched the same keys; re-read.
                        continue

    async def compare_and_swap_active_key(
        self,
        fingerprint: str,
        expected_old_key: str,
        new_key: str,
        now: datetime,
        rotation_timestamp: float,
    ) -> bool:
        identity_key = self._identity_key(fingerprint)
        new_pubkey_key = self._pubkey_key(new_key)

        with _store_errors():
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(identity_key, new_pubkey_key)
                        raw = await pipe.get(identity_key)
                        if raw is None:
                            await pipe.unwatch()
                            return False
                        identity = Identity.model_validate_json(raw)
                        last = identity.last_rotation_timestamp
                        if (
                            identity.current_public_key != expected_old_key
                            or (last is not None and rotation_timestamp <= last)
                            or await pipe.exists(new_pubkey_key)
                        ):
                            await pipe.unwatch()
                            return False

                        rotated = identity.rotated(new_key, now, rotation_timestamp)
                        pipe.multi()
                        pipe.set(identity_key, rotated.model_dump_json())
                        pipe.set(new_pubkey_key, fingerprint)
                        await pipe.execute()
                        return True
                    except WatchError:
                        # Identity changed under us; the re-read decides the outcome.
                        continue
