"""Tests for KeyRotationManager: delegated, atomic key rotation."""

import asyncio

import pytest

from agentcommons.exceptions import (
    ConcurrentRotationError,
    InvalidDelegationError,
    InvalidPublicKeyError,
    KeyAlreadyBoundError,
    ReplayedDelegationError,
    StaleTimestampError,
    StorageUnavailableError,
    UnknownIdentityError,
)
from agentcommons.identity import DelegationProof, KeyRotationManager, PayloadSigner
from agentcommons.observability import MetricsCollector
from agentcommons.storage import MemoryIdentityStore

NOW = 1_700_000_000.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Clock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _setup(store=None, clock=None):
    store = store or MemoryIdentityStore()
    signer = PayloadSigner.generate()
    identity, _ = await store.create_identity(signer.public_key, signer.fingerprint)
    manager = KeyRotationManager(store, clock=clock or _Clock(), metrics=MetricsCollector())
    return manager, store, signer, identity.fingerprint


class _RendezvousStore(MemoryIdentityStore):
    """Memory store whose fingerprint lookups wait for *parties* callers.

    Forces concurrent rotations to read the same pre-rotation state before
    either commits.
    """

    def __init__(self, parties: int) -> None:
        super().__init__()
        self._parties = parties
        self._arrived = 0
        self._all_arrived = asyncio.Event()
        self.armed = False

    async def lookup_by_fingerprint(self, fingerprint):
        identity = await super().lookup_by_fingerprint(fingerprint)
        if self.armed:
            self._arrived += 1
            if self._arrived >= self._parties:
                self._all_arrived.set()
            await self._all_arrived.wait()
        return identity


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestKeyRotation:
    """Happy path and fingerprint preservation."""

    @pytest.mark.asyncio
    async def test_rotation_preserves_fingerprint(self):
        manager, store, old, fp = await _setup()
        new = PayloadSigner.generate()

        rotated = await manager.rotate(
            fp, new.public_key, old.delegate(fp, new.public_key, NOW), NOW
        )

        assert rotated.fingerprint == fp
        assert rotated.current_public_key == new.public_key
        stored = await store.lookup_by_fingerprint(fp)
        assert stored == rotated

    @pytest.mark.asyncio
    async def test_history_after_rotation(self):
        manager, store, old, fp = await _setup()
        new = PayloadSigner.generate()

        await manager.rotate(fp, new.public_key, old.delegate(fp, new.public_key, NOW), NOW)

        history = await store.key_history(fp)
        assert [e.public_key for e in history] == [old.public_key, new.public_key]
        assert history[0].superseded_at is not None
        assert history[1].is_active
        assert sum(1 for e in history if e.is_active) == 1
        assert (await store.lookup_by_fingerprint(fp)).last_rotation_timestamp == NOW

    @pytest.mark.asyncio
    async def test_new_key_bound_to_same_identity(self):
        manager, store, old, fp = await _setup()
        new = PayloadSigner.generate()

        await manager.rotate(fp, new.public_key, old.delegate(fp, new.public_key, NOW), NOW)

        assert (await store.lookup_by_public_key(new.public_key)).fingerprint == fp
        assert (await store.lookup_by_public_key(old.public_key)).fingerprint == fp

    @pytest.mark.asyncio
    async def test_chained_rotations(self):
        clock = _Clock()
        manager, store, k1, fp = await _setup(clock=clock)
        k2 = PayloadSigner.generate()
        k3 = PayloadSigner.generate()

        await manager.rotate(fp, k2.public_key, k1.delegate(fp, k2.public_key, NOW), NOW)
        clock.now = NOW + 10
        await manager.rotate(fp, k3.public_key, k2.delegate(fp, k3.public_key, NOW + 10), NOW + 10)

        history = await store.key_history(fp)
        assert [e.public_key for e in history] == [k1.public_key, k2.public_key, k3.public_key]

    @pytest.mark.asyncio
    async def test_rotate_with_proof(self):
        manager, _, old, fp = await _setup()
        new = PayloadSigner.generate()
        proof = DelegationProof(
            fingerprint=fp,
            new_public_key=new.public_key,
            timestamp=NOW,
            delegation_signature=old.delegate(fp, new.public_key, NOW),
        )

        rotated = await manager.rotate_with_proof(proof)
        assert rotated.current_public_key == new.public_key


class TestRotationRejections:
    """Every rejection leaves the identity unchanged."""

    @pytest.mark.asyncio
    async def test_unknown_identity(self):
        manager, _, old, _ = await _setup()
        new = PayloadSigner.generate()
        with pytest.raises(UnknownIdentityError):
            await manager.rotate(
                "ffffffffffffffff", new.public_key,
                old.delegate("ffffffffffffffff", new.public_key, NOW), NOW,
            )

    @pytest.mark.asyncio
    async def test_signature_by_new_key_rejected(self):
        manager, store, old, fp = await _setup()
        new = PayloadSigner.generate()

        with pytest.raises(InvalidDelegationError):
            await manager.rotate(fp, new.public_key, new.delegate(fp, new.public_key, NOW), NOW)
        assert (await store.lookup_by_fingerprint(fp)).current_public_key == old.public_key

    @pytest.mark.asyncio
    async def test_signature_over_other_timestamp_rejected(self):
        manager, _, old, fp = await _setup()
        new = PayloadSigner.generate()
        with pytest.raises(InvalidDelegationError):
            await manager.rotate(fp, new.public_key, old.delegate(fp, new.public_key, NOW - 1), NOW)

    @pytest.mark.asyncio
    async def test_garbage_signature_rejected(self):
        manager, _, _, fp = await _setup()
        new = PayloadSigner.generate()
        with pytest.raises(InvalidDelegationError):
            await manager.rotate(fp, new.public_key, "%%%", NOW)

    @pytest.mark.asyncio
    async def test_malformed_new_key(self):
        manager, _, old, fp = await _setup()
        with pytest.raises(InvalidPublicKeyError):
            await manager.rotate(fp, "abc", old.delegate(fp, "abc", NOW), NOW)

    @pytest.mark.asyncio
    async def test_rotating_to_current_key(self):
        manager, _, old, fp = await _setup()
        with pytest.raises(InvalidPublicKeyError):
            await manager.rotate(fp, old.public_key, old.delegate(fp, old.public_key, NOW), NOW)

    @pytest.mark.asyncio
    async def test_new_key_bound_elsewhere(self):
        manager, store, old, fp = await _setup()
        other = PayloadSigner.generate()
        await store.create_identity(other.public_key, other.fingerprint)

        with pytest.raises(KeyAlreadyBoundError):
            await manager.rotate(
                fp, other.public_key, old.delegate(fp, other.public_key, NOW), NOW
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [-301, 301, -10_000])
    async def test_stale_timestamp(self, offset):
        manager, _, old, fp = await _setup()
        new = PayloadSigner.generate()
        ts = NOW + offset
        with pytest.raises(StaleTimestampError):
            await manager.rotate(fp, new.public_key, old.delegate(fp, new.public_key, ts), ts)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "ts", ["1700000000", None, True, float("nan"), 2**53, -(2**53), 10**400]
    )
    async def test_unusable_timestamp(self, ts):
        manager, _, _, fp = await _setup()
        new = PayloadSigner.generate()
        with pytest.raises(StaleTimestampError):
            await manager.rotate(fp, new.public_key, "AAAA", ts)

    @pytest.mark.asyncio
    async def test_skew_window_is_configurable(self):
        store = MemoryIdentityStore()
        signer = PayloadSigner.generate()
        await store.create_identity(signer.public_key, signer.fingerprint)
        manager = KeyRotationManager(store, max_clock_skew_seconds=5, clock=_Clock())
        new = PayloadSigner.generate()
        ts = NOW - 6
        with pytest.raises(StaleTimestampError):
            await manager.rotate(
                signer.fingerprint, new.public_key,
                signer.delegate(signer.fingerprint, new.public_key, ts), ts,
            )

    @pytest.mark.asyncio
    async def test_replayed_delegation_rejected(self):
        clock = _Clock()
        manager, store, k1, fp = await _setup(clock=clock)
        k2 = PayloadSigner.generate()
        k3 = PayloadSigner.generate()
        await manager.rotate(fp, k2.public_key, k1.delegate(fp, k2.public_key, NOW), NOW)

        # A delegation from the new key cannot reuse or predate the last timestamp.
        with pytest.raises(ReplayedDelegationError):
            await manager.rotate(fp, k3.public_key, k2.delegate(fp, k3.public_key, NOW), NOW)
        with pytest.raises(ReplayedDelegationError):
            await manager.rotate(
                fp, k3.public_key, k2.delegate(fp, k3.public_key, NOW - 5), NOW - 5
            )
        assert (await store.lookup_by_fingerprint(fp)).current_public_key == k2.public_key

    @pytest.mark.asyncio
    async def test_rejection_counted(self):
        manager, _, _, fp = await _setup()
        new = PayloadSigner.generate()
        with pytest.raises(InvalidDelegationError):
            await manager.rotate(fp, new.public_key, "AAAA", NOW)
        value = manager._metrics.registry.get_sample_value(
            "agentcommons_key_rotations_total", {"outcome": "INVALID_DELEGATION"}
        )
        assert value == 1

    @pytest.mark.asyncio
    async def test_store_outage_propagates(self):
        signer = PayloadSigner.generate()
        new = PayloadSigner.generate()
        store = MemoryIdentityStore()
        await store.create_identity(signer.public_key, signer.fingerprint)
        manager = KeyRotationManager(store, clock=_Clock(), metrics=MetricsCollector())

        async def _unavailable(fingerprint):
            raise StorageUnavailableError("Identity store is unavailable")

        store.lookup_by_fingerprint = _unavailable
        with pytest.raises(StorageUnavailableError):
            await manager.rotate(
                signer.fingerprint, new.public_key,
                signer.delegate(signer.fingerprint, new.public_key, NOW), NOW,
            )

        assert store._identities[signer.fingerprint].current_public_key == signer.public_key
        assert store._key_index.get(new.public_key) is None
        value = manager._metrics.registry.get_sample_value(
            "agentcommons_key_rotations_total", {"outcome": "STORE_UNAVAILABLE"}
        )
        assert value == 1


class TestConcurrentRotation:
    """Two rotations racing from the same state: exactly one commits."""

    @pytest.mark.asyncio
    async def test_exactly_one_wins(self):
        store = _RendezvousStore(parties=2)
        manager, _, k1, fp = await _setup(store=store)
        k2 = PayloadSigner.generate()
        k3 = PayloadSigner.generate()
        store.armed = True

        results = await asyncio.gather(
            manager.rotate(fp, k2.public_key, k1.delegate(fp, k2.public_key, NOW), NOW),
            manager.rotate(fp, k3.public_key, k1.delegate(fp, k3.public_key, NOW + 1), NOW + 1),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ConcurrentRotationError)

        store.armed = False
        identity = await store.lookup_by_fingerprint(fp)
        assert identity.current_public_key == winners[0].current_public_key
        assert len(identity.key_history) == 2
        assert sum(1 for e in identity.key_history if e.is_active) == 1

    @pytest.mark.asyncio
    async def test_cas_rejects_stale_expected_key(self):
        from datetime import datetime, timezone

        store = MemoryIdentityStore()
        k1, k2, k3 = (PayloadSigner.generate() for _ in range(3))
        await store.create_identity(k1.public_key, k1.fingerprint)
        now = datetime.now(timezone.utc)

        assert await store.compare_and_swap_active_key(k1.fingerprint, k1.public_key, k2.public_key, now, 1.0)
        assert not await store.compare_and_swap_active_key(
            k1.fingerprint, k1.public_key, k3.public_key, now, 2.0
        )
        assert await store.lookup_by_public_key(k3.public_key) is None
