# Copyright (c) Agent-Commons Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Signed Payload Verification

Authentication entry point for every mutating action. A payload carries a
base64 Ed25519 ``signature`` over the canonical encoding of all its other
fields, plus either an embedded ``public_key`` (first contact) or an
``author`` fingerprint. Verification returns the author's fingerprint.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional

from agentcommons.constants import FIELD_AUTHOR, FIELD_PUBLIC_KEY, FIELD_SIGNATURE
from agentcommons.exceptions import (
    AgentCommonsError,
    CanonicalizationError,
    InvalidPublicKeyError,
    MissingAuthorError,
    MissingSignatureError,
    SignatureMismatchError,
    StaleKeyError,
    UnknownIdentityError,
)
from agentcommons.identity.canonical import canonicalize, signable_content
from agentcommons.identity.fingerprint import derive
from agentcommons.identity.keys import normalize_public_key, verify_payload_signature
from agentcommons.observability.metrics import MetricsCollector, get_metrics

if TYPE_CHECKING:
    from agentcommons.identity.models import Identity
    from agentcommons.storage.provider import AbstractIdentityStore

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """Verifies signed payloads against the identity store.

    Every call is verified independently; nothing is cached between calls.

    Args:
        store: Identity store used to resolve and create identities.
        metrics: Optional metrics collector (defaults to the process-wide one).

    Example:
        >>> verifier = SignatureVerifier(store)
        >>> author = await verifier.verify(request_body)
    """

    def __init__(
        self,
        store: "AbstractIdentityStore",
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._store = store
        self._metrics = metrics or get_metrics()

    async def verify(self, payload: Mapping[str, Any]) -> str:
        """Authenticate *payload* and return the author's fingerprint.

        Raises:
            MissingSignatureError: No signature on the payload.
            MissingAuthorError: Neither ``author`` nor ``public_key`` given.
            UnknownIdentityError: ``author`` is not a known fingerprint.
            SignatureMismatchError: The signature does not verify.
            StaleKeyError: The signature verifies under a superseded key.
            StorageUnavailableError: The store could not be reached.
        """
        try:
            fingerprint = await self._verify(payload)
        except AgentCommonsError as exc:
            self._metrics.record_verification(exc.code)
            raise
        self._metrics.record_verification("ok")
        logger.debug("Verified signed payload from %s", fingerprint)
        return fingerprint

    async def _verify(self, payload: Mapping[str, Any]) -> str:
        if not isinstance(payload, Mapping):
            raise CanonicalizationError("Signed payload must be a JSON object")

        signature = payload.get(FIELD_SIGNATURE)
        if not signature or not isinstance(signature, str):
            raise MissingSignatureError(
                'Request body must include a non-empty "signature" field'
            )

        content = signable_content(payload)
        # Reject unsignable content up front so it is not reported as a mismatch.
        canonicalize(content)

        claimed_key = payload.get(FIELD_PUBLIC_KEY)
        author = payload.get(FIELD_AUTHOR)
        if author is not None and not isinstance(author, str):
            raise MissingAuthorError('"author" must be a fingerprint string')

        if claimed_key is not None:
            return await self._verify_embedded_key(content, signature, claimed_key, author)
        if author:
            return await self._verify_author(content, signature, author)
        raise MissingAuthorError(
            'Request body must include an "author" fingerprint or a "public_key"'
        )

    async def _verify_embedded_key(
        self,
        content: dict[str, Any],
        signature: str,
        claimed_key: Any,
        author: Optional[str],
    ) -> str:
        try:
            public_key = normalize_public_key(claimed_key)
        except InvalidPublicKeyError:
            raise SignatureMismatchError(
                "Signature verification failed for the provided content"
            ) from None

        if not verify_payload_signature(content, signature, public_key):
            raise SignatureMismatchError("Signature verification failed for the provided content")

        identity = await self._store.lookup_by_public_key(public_key)
        if identity is None:
            fingerprint = derive(public_key)
            if author and author != fingerprint:
                raise SignatureMismatchError("Author does not match the signing key")
            identity, created = await self._store.create_identity(public_key, fingerprint)
            if created:
                self._metrics.record_identity_created()
                logger.info("Bound identity %s on first contact", identity.fingerprint)

        if author and author != identity.fingerprint:
            raise SignatureMismatchError("Author does not match the signing key")
        self._require_active(identity, public_key)
        return identity.fingerprint

    async def _verify_author(self, content: dict[str, Any], signature: str, author: str) -> str:
        identity = await self._store.lookup_by_fingerprint(author)
        if identity is None:
            raise UnknownIdentityError(f'No agent found with fingerprint "{author}"')

        if verify_payload_signature(content, signature, identity.current_public_key):
            return identity.fingerprint

        for entry in identity.key_history:
            if not entry.is_active and verify_payload_signature(content, signature, entry.public_key):
                raise StaleKeyError(
                    f'Signature was made with a retired key of "{identity.fingerprint}"'
                )
        raise SignatureMismatchError("Signature verification failed for the provided content")

    @staticmethod
    def _require_active(identity: "Identity", public_key: str) -> None:
        if identity.current_public_key != public_key:
            raise StaleKeyError(
                f'Signature was made with a retired key of "{identity.fingerprint}"'
            )
