"""
Ed25519 Key Handling

Hex-encoded Ed25519 public keys, base64-encoded signatures over the
canonical payload encoding, and a small client-side signer used by the CLI
and by agents that talk to the commons.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from agentcommons.constants import (
    DELEGATION_NEW_KEY,
    DELEGATION_OLD_KEY,
    DELEGATION_TIMESTAMP,
    ED25519_PUBLIC_KEY_BYTES,
    FIELD_AUTHOR,
    FIELD_PUBLIC_KEY,
    FIELD_SIGNATURE,
)
from agentcommons.exceptions import CanonicalizationError, InvalidPublicKeyError
from agentcommons.identity.canonical import canonicalize, signable_content

logger = logging.getLogger(__name__)

PublicKeyLike = Union[str, bytes, ed25519.Ed25519PublicKey]


def generate_keypair() -> tuple[str, str]:
    """Generate a new Ed25519 keypair.

    Returns:
        ``(private_key_hex, public_key_hex)``.
    """
    private_key = ed25519.Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return private_bytes.hex(), public_key_hex(private_key.public_key())


def public_key_hex(public_key: ed25519.Ed25519PublicKey) -> str:
    """Return the lowercase hex encoding of a public key's raw bytes."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    ).hex()


def public_key_bytes(public_key: PublicKeyLike) -> bytes:
    """Return the raw 32 public key bytes for any accepted key form.

    Raises:
        InvalidPublicKeyError: If the key is malformed.
    """
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
    if isinstance(public_key, str):
        if len(public_key) != ED25519_PUBLIC_KEY_BYTES * 2:
            raise InvalidPublicKeyError(
                "Public key must be a 64-character hex string (32 bytes)"
            )
        try:
            raw = bytes.fromhex(public_key)
        except ValueError:
            raise InvalidPublicKeyError(
                "Public key must be a 64-character hex string (32 bytes)"
            ) from None
    elif isinstance(public_key, (bytes, bytearray)):
        raw = bytes(public_key)
    else:
        raise InvalidPublicKeyError("Unsupported public key type")
    if len(raw) != ED25519_PUBLIC_KEY_BYTES:
        raise InvalidPublicKeyError("Public key must be 32 bytes")
    return raw


def normalize_public_key(public_key: PublicKeyLike) -> str:
    """Return the canonical (lowercase hex) form of a public key."""
    return public_key_bytes(public_key).hex()


def load_public_key(public_key: PublicKeyLike) -> ed25519.Ed25519PublicKey:
    """Parse a public key into a ``cryptography`` Ed25519 key object."""
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return public_key
    raw = public_key_bytes(public_key)
    try:
        return ed25519.Ed25519PublicKey.from_public_bytes(raw)
    except ValueError:
        raise InvalidPublicKeyError("Public key is not a valid Ed25519 key") from None


def load_private_key(private_key_hex: str) -> ed25519.Ed25519PrivateKey:
    """Parse a 64-character hex private key seed."""
    try:
        raw = bytes.fromhex(private_key_hex.strip())
        return ed25519.Ed25519PrivateKey.from_private_bytes(raw)
    except ValueError:
        raise ValueError("Private key must be a 64-character hex string") from None


def sign_payload(content: Mapping[str, Any], private_key_hex: str) -> str:
    """Sign the canonical encoding of *content*. Returns a base64 signature."""
    private_key = load_private_key(private_key_hex)
    signature = private_key.sign(canonicalize(signable_content(content)))
    return base64.b64encode(signature).decode()


def verify_payload_signature(
    content: Mapping[str, Any],
    signature_b64: str,
    public_key: PublicKeyLike,
) -> bool:
    """Verify a base64 signature over the canonical encoding of *content*.

    Never raises: malformed keys, malformed signatures and content that
    cannot be canonicalized all verify as ``False``.
    """
    try:
        key = load_public_key(public_key)
        signature = base64.b64decode(signature_b64, validate=True)
        key.verify(signature, canonicalize(signable_content(content)))
        return True
    except (InvalidSignature, InvalidPublicKeyError, CanonicalizationError,
            binascii.Error, ValueError, TypeError):
        return False


def delegation_message(fingerprint: str, new_public_key: str, timestamp: Union[int, float]) -> dict:
    """Build the content an identity's current key signs to authorize rotation."""
    return {
        DELEGATION_OLD_KEY: fingerprint,
        DELEGATION_NEW_KEY: new_public_key,
        DELEGATION_TIMESTAMP: timestamp,
    }


def sign_delegation(
    fingerprint: str,
    new_public_key: str,
    timestamp: Union[int, float],
    private_key_hex: str,
) -> str:
    """Produce a delegation signature with the identity's current private key."""
    return sign_payload(
        delegation_message(fingerprint, new_public_key, timestamp), private_key_hex
    )


class PayloadSigner:
    """Client-side signer holding one Ed25519 private key.

    Example:
        >>> signer = PayloadSigner.generate()
        >>> body = signer.sign({"title": "Proposal"}, first_contact=True)
        >>> sorted(body)
        ['public_key', 'signature', 'title']
    """

    def __init__(self, private_key_hex: str) -> None:
        self._private_key_hex = private_key_hex
        self._public_key_hex = public_key_hex(load_private_key(private_key_hex).public_key())

    @classmethod
    def generate(cls) -> "PayloadSigner":
        private_hex, _ = generate_keypair()
        return cls(private_hex)

    @property
    def public_key(self) -> str:
        return self._public_key_hex

    @property
    def fingerprint(self) -> str:
        from agentcommons.identity.fingerprint import derive

        return derive(self._public_key_hex)

    def sign(
        self,
        payload: Mapping[str, Any],
        first_contact: bool = False,
        author: Optional[str] = None,
    ) -> dict[str, Any]:
        """Return a copy of *payload* carrying authorship and a signature.

        Args:
            payload: Content fields to sign.
            first_contact: Embed the public key instead of an ``author``
                fingerprint.
            author: Fingerprint to claim; defaults to this key's own
                fingerprint. After a rotation pass the identity's original
                fingerprint here.
        """
        body = dict(signable_content(payload))
        if first_contact:
            body[FIELD_PUBLIC_KEY] = self._public_key_hex
        else:
            body[FIELD_AUTHOR] = author or self.fingerprint
        body[FIELD_SIGNATURE] = sign_payload(body, self._private_key_hex)
        return body

    def delegate(
        self,
        fingerprint: str,
        new_public_key: str,
        timestamp: Union[int, float],
    ) -> str:
        """Sign a rotation delegation from this key to *new_public_key*."""
        return sign_delegation(fingerprint, new_public_key, timestamp, self._private_key_hex)
