"""
Identity Fingerprints

A fingerprint is the first 16 hex characters of SHA-256 over the raw
Ed25519 public key bytes. It is derived once, from the first key bound to an
identity, and never recomputed after rotation.
"""

import hashlib
import re

from agentcommons.constants import FINGERPRINT_HEX_LENGTH
from agentcommons.identity.keys import PublicKeyLike, public_key_bytes

_FINGERPRINT_RE = re.compile(rf"^[0-9a-f]{{{FINGERPRINT_HEX_LENGTH}}}$")


def derive(public_key: PublicKeyLike) -> str:
    """Derive the fingerprint for a public key.

    Args:
        public_key: Hex string, raw bytes or ``Ed25519PublicKey``.

    Returns:
        Lowercase hex fingerprint of fixed length.

    Raises:
        InvalidPublicKeyError: If the key is malformed.
    """
    digest = hashlib.sha256(public_key_bytes(public_key)).hexdigest()
    return digest[:FINGERPRINT_HEX_LENGTH]


def is_fingerprint(value: object) -> bool:
    """Return True if *value* is shaped like a fingerprint."""
    return isinstance(value, str) and bool(_FINGERPRINT_RE.match(value))
