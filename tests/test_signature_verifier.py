"""Tests for SignatureVerifier: signed-payload authentication."""

import pytest

from agentcommons.exceptions import (
    CanonicalizationError,
    MissingAuthorError,
    MissingSignatureError,
    SignatureMismatchError,
    StaleKeyError,
    StorageUnavailableError,
    UnknownIdentityError,
)
from agentcommons.identity import PayloadSigner, SignatureVerifier, derive
from agentcommons.observability import MetricsCollector
from agentcommons.storage import MemoryIdentityStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _verifier():
    store = MemoryIdentityStore()
    metrics = MetricsCollector()
    return SignatureVerifier(store, metrics=metrics), store, metrics


class _UnavailableStore(MemoryIdentityStore):
    """Memory store whose lookups fail as if the backend timed out."""

    def __init__(self) -> None:
        super().__init__()
        self.create_calls = 0

    async def lookup_by_fingerprint(self, fingerprint):
        raise StorageUnavailableError("Identity store is unavailable")

    async def lookup_by_public_key(self, public_key):
        raise StorageUnavailableError("Identity store is unavailable")

    async def create_identity(self, public_key, fingerprint):
        self.create_calls += 1
        return await super().create_identity(public_key, fingerprint)


def _count(metrics: MetricsCollector, outcome: str) -> float:
    value = metrics.registry.get_sample_value(
        "agentcommons_signature_verifications_total", {"outcome": outcome}
    )
    return value or 0.0


# ---------------------------------------------------------------------------
# First contact
# ---------------------------------------------------------------------------


class TestFirstContact:
    """Payloads carrying an embedded public key."""

    @pytest.mark.asyncio
    async def test_creates_identity(self):
        verifier, store, _ = _verifier()
        signer = PayloadSigner.generate()

        author = await verifier.verify(signer.sign({"title": "T"}, first_contact=True))

        assert author == derive(signer.public_key)
        identity = await store.lookup_by_fingerprint(author)
        assert identity.current_public_key == signer.public_key
        assert len(identity.key_history) == 1

    @pytest.mark.asyncio
    async def test_second_contact_reuses_identity(self):
        verifier, store, _ = _verifier()
        signer = PayloadSigner.generate()

        first = await verifier.verify(signer.sign({"n": 1}, first_contact=True))
        second = await verifier.verify(signer.sign({"n": 2}, first_contact=True))

        assert first == second
        assert len(await store.key_history(first)) == 1

    @pytest.mark.asyncio
    async def test_bad_signature_creates_nothing(self):
        verifier, store, _ = _verifier()
        signer = PayloadSigner.generate()
        body = signer.sign({"title": "T"}, first_contact=True)
        body["title"] = "tampered"

        with pytest.raises(SignatureMismatchError):
            await verifier.verify(body)
        assert await store.lookup_by_public_key(signer.public_key) is None

    @pytest.mark.asyncio
    async def test_malformed_embedded_key_is_mismatch(self):
        verifier, _, _ = _verifier()
        with pytest.raises(SignatureMismatchError):
            await verifier.verify({"public_key": "xyz", "signature": "AAAA"})

    @pytest.mark.asyncio
    async def test_author_must_match_embedded_key(self):
        verifier, store, _ = _verifier()
        signer = PayloadSigner.generate()
        body = signer.sign({"author": "0123456789abcdef", "title": "T"}, first_contact=True)

        with pytest.raises(SignatureMismatchError):
            await verifier.verify(body)
        assert await store.lookup_by_public_key(signer.public_key) is None

    @pytest.mark.asyncio
    async def test_uppercase_embedded_key_normalized(self):
        verifier, store, _ = _verifier()
        signer = PayloadSigner.generate()
        body = {"title": "T", "public_key": signer.public_key.upper()}
        from agentcommons.identity.keys import sign_payload

        body["signature"] = sign_payload(body, signer._private_key_hex)

        author = await verifier.verify(body)
        assert (await store.lookup_by_fingerprint(author)).current_public_key == signer.public_key


# ---------------------------------------------------------------------------
# Known authors
# ---------------------------------------------------------------------------


class TestAuthorVerification:
    @pytest.mark.asyncio
    async def test_known_author(self):
        verifier, store, _ = _verifier()
        signer = PayloadSigner.generate()
        await store.create_identity(signer.public_key, signer.fingerprint)

        assert await verifier.verify(signer.sign({"vote": "yes"})) == signer.fingerprint

    @pytest.mark.asyncio
    async def test_unknown_author(self):
        verifier, _, _ = _verifier()
        signer = PayloadSigner.generate()

        with pytest.raises(UnknownIdentityError):
            await verifier.verify(signer.sign({"vote": "yes"}))

    @pytest.mark.asyncio
    async def test_wrong_key_for_author(self):
        verifier, store, _ = _verifier()
        owner = PayloadSigner.generate()
        impostor = PayloadSigner.generate()
        await store.create_identity(owner.public_key, owner.fingerprint)

        with pytest.raises(SignatureMismatchError):
            await verifier.verify(impostor.sign({"vote": "yes"}, author=owner.fingerprint))

    @pytest.mark.asyncio
    async def test_author_field_is_signed(self):
        verifier, store, _ = _verifier()
        a = PayloadSigner.generate()
        b = PayloadSigner.generate()
        await store.create_identity(a.public_key, a.fingerprint)
        await store.create_identity(b.public_key, b.fingerprint)

        body = a.sign({"vote": "yes"})
        body["author"] = b.fingerprint
        with pytest.raises(SignatureMismatchError):
            await verifier.verify(body)

    @pytest.mark.asyncio
    async def test_superseded_key_is_stale(self):
        verifier, store, _ = _verifier()
        old = PayloadSigner.generate()
        new = PayloadSigner.generate()
        fp = old.fingerprint
        await store.create_identity(old.public_key, fp)
        from datetime import datetime, timezone

        assert await store.compare_and_swap_active_key(
            fp, old.public_key, new.public_key, datetime.now(timezone.utc), 1.0
        )

        with pytest.raises(StaleKeyError):
            await verifier.verify(old.sign({"vote": "yes"}, author=fp))
        with pytest.raises(StaleKeyError):
            await verifier.verify(old.sign({"vote": "yes"}, first_contact=True))
        assert await verifier.verify(new.sign({"vote": "yes"}, author=fp)) == fp


# ---------------------------------------------------------------------------
# Malformed payloads
# ---------------------------------------------------------------------------


class TestMalformedPayloads:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("signature", [None, "", 42])
    async def test_missing_signature(self, signature):
        verifier, _, _ = _verifier()
        body = {"author": "0123456789abcdef", "title": "T"}
        if signature is not None:
            body["signature"] = signature
        with pytest.raises(MissingSignatureError):
            await verifier.verify(body)

    @pytest.mark.asyncio
    async def test_missing_author_and_key(self):
        verifier, _, _ = _verifier()
        with pytest.raises(MissingAuthorError):
            await verifier.verify({"title": "T", "signature": "AAAA"})

    @pytest.mark.asyncio
    async def test_non_string_author(self):
        verifier, _, _ = _verifier()
        with pytest.raises(MissingAuthorError):
            await verifier.verify({"author": 7, "signature": "AAAA"})

    @pytest.mark.asyncio
    async def test_uncanonicalizable_content(self):
        verifier, _, _ = _verifier()
        with pytest.raises(CanonicalizationError):
            await verifier.verify({"author": "0123456789abcdef", "n": 2**60, "signature": "AAAA"})

    @pytest.mark.asyncio
    async def test_non_mapping(self):
        verifier, _, _ = _verifier()
        with pytest.raises(CanonicalizationError):
            await verifier.verify(["not", "an", "object"])


class TestVerifierMetrics:
    @pytest.mark.asyncio
    async def test_outcomes_counted(self):
        verifier, store, metrics = _verifier()
        signer = PayloadSigner.generate()

        await verifier.verify(signer.sign({"a": 1}, first_contact=True))
        with pytest.raises(MissingSignatureError):
            await verifier.verify({"author": signer.fingerprint})

        assert _count(metrics, "ok") == 1
        assert _count(metrics, "MISSING_SIGNATURE") == 1
        assert metrics.registry.get_sample_value("agentcommons_identities_created_total") == 1

    @pytest.mark.asyncio
    async def test_created_counted_once_per_identity(self):
        verifier, _, metrics = _verifier()
        signer = PayloadSigner.generate()

        await verifier.verify(signer.sign({"n": 1}, first_contact=True))
        await verifier.verify(signer.sign({"n": 2}, first_contact=True))

        assert metrics.registry.get_sample_value("agentcommons_identities_created_total") == 1

    @pytest.mark.asyncio
    async def test_fetching_existing_identity_is_not_counted(self):
        verifier, store, metrics = _verifier()
        signer = PayloadSigner.generate()
        await store.create_identity(signer.public_key, signer.fingerprint)

        # Simulates losing a first-contact race: the lookup misses but the
        # identity already exists by the time create_identity runs.
        async def _miss(public_key):
            return None

        store.lookup_by_public_key = _miss
        assert await verifier.verify(signer.sign({"n": 1}, first_contact=True)) == signer.fingerprint
        assert (metrics.registry.get_sample_value("agentcommons_identities_created_total") or 0) == 0


# ---------------------------------------------------------------------------
# Store outages
# ---------------------------------------------------------------------------


class TestStoreUnavailable:
    """An unreachable store is never reported as a rejection."""

    @pytest.mark.asyncio
    async def test_known_author_path_propagates(self):
        store = _UnavailableStore()
        metrics = MetricsCollector()
        verifier = SignatureVerifier(store, metrics=metrics)
        signer = PayloadSigner.generate()

        with pytest.raises(StorageUnavailableError) as excinfo:
            await verifier.verify(signer.sign({"vote": "yes"}))

        assert excinfo.value.retryable
        assert _count(metrics, "STORE_UNAVAILABLE") == 1
        assert _count(metrics, "UNKNOWN_IDENTITY") == 0

    @pytest.mark.asyncio
    async def test_first_contact_path_creates_nothing(self):
        store = _UnavailableStore()
        metrics = MetricsCollector()
        verifier = SignatureVerifier(store, metrics=metrics)
        signer = PayloadSigner.generate()

        with pytest.raises(StorageUnavailableError):
            await verifier.verify(signer.sign({"title": "T"}, first_contact=True))

        assert store.create_calls == 0
        assert (metrics.registry.get_sample_value("agentcommons_identities_created_total") or 0) == 0
