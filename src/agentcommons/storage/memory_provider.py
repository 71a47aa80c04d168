"""
In-Memory Identity Store.

Simple in-memory implementation for development and testing.
"""

import threading
from datetime import datetime
from typing import Optional

from agentcommons.exceptions import KeyAlreadyBoundError
from agentcommons.identity.models import Identity

from .provider import AbstractIdentityStore, StorageConfig


class MemoryIdentityStore(AbstractIdentityStore):
    """
    In-memory identity store.

    Uses Python dictionaries for storage. Data is lost on restart and is not
    shared between processes, so it is suitable for development and testing
    only. A lock makes each mutation atomic within the process.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        """Initialize in-memory storage."""
        super().__init__(config or StorageConfig(backend="memory"))
        self._identities: dict[str, Identity] = {}
        self._key_index: dict[str, str] = {}
        self._lock = threading.Lock()
        self._connected = False

    async def connect(self) -> None:
        """Establish connection (no-op for memory)."""
        self._connected = True

    async def disconnect(self) -> None:
        """Close connection (no-op for memory)."""
        self._connected = False

    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        return self._connected

    async def lookup_by_fingerprint(self, fingerprint: str) -> Optional[Identity]:
        identity = self._identities.get(fingerprint)
        return identity.model_copy(deep=True) if identity else None

    async def lookup_by_public_key(self, public_key: str) -> Optional[Identity]:
        fingerprint = self._key_index.get(public_key)
        if fingerprint is None:
            return None
        return await self.lookup_by_fingerprint(fingerprint)

    async def create_identity(self, public_key: str, fingerprint: str) -> tuple[Identity, bool]:
        with self._lock:
            bound = self._key_index.get(public_key)
            if bound is not None:
                return self._identities[bound].model_copy(deep=True), False
            if fingerprint in self._identities:
                raise KeyAlreadyBoundError(
                    f'Fingerprint "{fingerprint}" is already bound to a different key'
                )
            identity = Identity.new(fingerprint, public_key)
            self._identities[fingerprint] = identity
            self._key_index[public_key] = fingerprint
            return identity.model_copy(deep=True), True

    async def compare_and_swap_active_key(
        self,
        fingerprint: str,
        expected_old_key: str,
        new_key: str,
        now: datetime,
        rotation_timestamp: float,
    ) -> bool:
        with self._lock:
            identity = self._identities.get(fingerprint)
            if identity is None or identity.current_public_key != expected_old_key:
                return False
            last = identity.last_rotation_timestamp
            if last is not None and rotation_timestamp <= last:
                return False
            if new_key in self._key_index:
                return False
            self._identities[fingerprint] = identity.rotated(new_key, now, rotation_timestamp)
            self._key_index[new_key] = fingerprint
            return True
