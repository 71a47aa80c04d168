# Copyright (c) Agent-Commons Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Key Rotation

Moves an identity to a new Ed25519 key while preserving its fingerprint.
The identity's *current* key signs a delegation over
``{"old_key": fingerprint, "new_key": new_public_key, "timestamp": t}``;
the new key never has to prove anything itself. The transition is committed
with a store-level compare-and-swap so concurrent rotations across
processes cannot both succeed.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Union

from agentcommons.constants import DEFAULT_MAX_CLOCK_SKEW_SECONDS, MAX_SAFE_INTEGER_FLOAT
from agentcommons.exceptions import (
    AgentCommonsError,
    ConcurrentRotationError,
    InvalidDelegationError,
    InvalidPublicKeyError,
    KeyAlreadyBoundError,
    ReplayedDelegationError,
    StaleTimestampError,
    UnknownIdentityError,
)
from agentcommons.identity.keys import (
    delegation_message,
    normalize_public_key,
    verify_payload_signature,
)
from agentcommons.identity.models import DelegationProof, Identity
from agentcommons.observability.metrics import MetricsCollector, get_metrics

if TYPE_CHECKING:
    from agentcommons.storage.provider import AbstractIdentityStore

logger = logging.getLogger(__name__)


class KeyRotationManager:
    """Rotates identity keys through signed delegations.

    Args:
        store: Identity store holding the identities to rotate.
        max_clock_skew_seconds: Accepted distance between a delegation's
            timestamp and server time, in either direction.
        clock: Returns current epoch seconds; injectable for tests.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        store: "AbstractIdentityStore",
        max_clock_skew_seconds: float = DEFAULT_MAX_CLOCK_SKEW_SECONDS,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._store = store
        self._max_clock_skew_seconds = max_clock_skew_seconds
        self._clock = clock
        self._metrics = metrics or get_metrics()

    @property
    def max_clock_skew_seconds(self) -> float:
        return self._max_clock_skew_seconds

    # ------------------------------------------------------------------
    # Core rotation
    # ------------------------------------------------------------------

    async def rotate(
        self,
        fingerprint: str,
        new_public_key: str,
        delegation_signature: str,
        timestamp: Union[int, float],
    ) -> Identity:
        """Rotate *fingerprint* to *new_public_key*.

        Returns:
            The identity as committed, with ``new_public_key`` active.

        Raises:
            UnknownIdentityError: No identity under *fingerprint*.
            InvalidPublicKeyError: *new_public_key* is malformed or already active.
            StaleTimestampError: *timestamp* is outside the clock-skew window.
            ReplayedDelegationError: *timestamp* is not newer than the last rotation.
            InvalidDelegationError: The delegation signature does not verify
                under the current key.
            KeyAlreadyBoundError: *new_public_key* belongs to an identity.
            ConcurrentRotationError: Another rotation committed first.
            StorageUnavailableError: The store could not be reached.
        """
        try:
            identity = await self._rotate(fingerprint, new_public_key, delegation_signature, timestamp)
        except AgentCommonsError as exc:
            self._metrics.record_rotation(exc.code)
            logger.warning("Rejected key rotation for %s: %s", fingerprint, exc.code)
            raise
        self._metrics.record_rotation("ok")
        logger.info(
            "Rotated key for %s (%d keys in history)", fingerprint, len(identity.key_history)
        )
        return identity

    async def rotate_with_proof(self, proof: DelegationProof) -> Identity:
        """Rotate using a parsed :class:`DelegationProof`."""
        return await self.rotate(
            proof.fingerprint,
            proof.new_public_key,
            proof.delegation_signature,
            proof.timestamp,
        )

    async def _rotate(
        self,
        fingerprint: str,
        new_public_key: str,
        delegation_signature: str,
        timestamp: Union[int, float],
    ) -> Identity:
        identity = await self._store.lookup_by_fingerprint(fingerprint)
        if identity is None:
            raise UnknownIdentityError(f'No agent found with fingerprint "{fingerprint}"')

        new_key = normalize_public_key(new_public_key)
        now = self._clock()
        self._check_freshness(identity, timestamp, now)

        message = delegation_message(fingerprint, new_public_key, timestamp)
        if not isinstance(delegation_signature, str) or not verify_payload_signature(
            message, delegation_signature, identity.current_public_key
        ):
            raise InvalidDelegationError("Delegation signature verification failed")

        if new_key == identity.current_public_key:
            raise InvalidPublicKeyError("New public key must differ from the active key")
        if await self._store.lookup_by_public_key(new_key) is not None:
            raise KeyAlreadyBoundError("New public key is already bound to an identity")

        committed_at = datetime.fromtimestamp(now, timezone.utc)
        swapped = await self._store.compare_and_swap_active_key(
            fingerprint,
            identity.current_public_key,
            new_key,
            committed_at,
            float(timestamp),
        )
        if not swapped:
            raise ConcurrentRotationError(
                "Another key rotation committed first; retry with fresh state"
            )
        return identity.rotated(new_key, committed_at, float(timestamp))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_freshness(self, identity: Identity, timestamp: Union[int, float], now: float) -> None:
        if (
            isinstance(timestamp, bool)
            or not isinstance(timestamp, (int, float))
            or (isinstance(timestamp, int) and abs(timestamp) >= MAX_SAFE_INTEGER_FLOAT)
            or not math.isfinite(timestamp)
        ):
            raise StaleTimestampError("Timestamp must be a number of epoch seconds")

        if abs(now - timestamp) > self._max_clock_skew_seconds:
            raise StaleTimestampError(
                f"Timestamp must be within {self._max_clock_skew_seconds:g}s of server time"
            )

        last = identity.last_rotation_timestamp
        if last is not None and timestamp <= last:
            raise ReplayedDelegationError(
                "Delegation timestamp must be newer than the last accepted rotation"
            )
