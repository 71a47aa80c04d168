"""
Identity Service

Explicit registration and profile lookup, composed over the identity store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from agentcommons.exceptions import UnknownIdentityError
from agentcommons.identity.fingerprint import derive
from agentcommons.identity.keys import normalize_public_key
from agentcommons.identity.models import Identity
from agentcommons.observability.metrics import MetricsCollector, get_metrics

if TYPE_CHECKING:
    from agentcommons.storage.provider import AbstractIdentityStore

logger = logging.getLogger(__name__)


class IdentityService:
    """Registers and resolves agent identities."""

    def __init__(
        self,
        store: "AbstractIdentityStore",
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._store = store
        self._metrics = metrics or get_metrics()

    async def register(self, public_key: str) -> tuple[Identity, bool]:
        """Bind *public_key* to an identity, idempotently.

        Returns:
            ``(identity, created)``; ``created`` is False when the key was
            already bound, in which case the existing identity is returned.

        Raises:
            InvalidPublicKeyError: If *public_key* is malformed.
        """
        key = normalize_public_key(public_key)
        identity, created = await self._store.create_identity(key, derive(key))
        if created:
            self._metrics.record_identity_created()
            logger.info("Registered identity %s", identity.fingerprint)
        return identity, created

    async def get_identity(self, fingerprint: str) -> Identity:
        """Return the identity for *fingerprint* with its key history.

        Raises:
            UnknownIdentityError: If no identity has that fingerprint.
        """
        identity = await self._store.lookup_by_fingerprint(fingerprint)
        if identity is None:
            raise UnknownIdentityError(f'No agent found with fingerprint "{fingerprint}"')
        return identity
