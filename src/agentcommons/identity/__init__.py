"""
Identity & Signature Core

Persistent agent identities with:
- Deterministic fingerprints derived from the first bound Ed25519 key
- Canonical payload encoding as the signing wire contract
- Signed-payload verification with first-contact identity creation
- Delegated key rotation with atomic compare-and-swap commits
"""

from .canonical import canonicalize, signable_content
from .fingerprint import derive, is_fingerprint
from .keys import (
    PayloadSigner,
    generate_keypair,
    load_public_key,
    normalize_public_key,
    sign_delegation,
    sign_payload,
    verify_payload_signature,
)
from .models import DelegationProof, Identity, KeyHistoryEntry
from .rotation import KeyRotationManager
from .service import IdentityService
from .verifier import SignatureVerifier

__all__ = [
    "canonicalize",
    "signable_content",
    "derive",
    "is_fingerprint",
    "PayloadSigner",
    "generate_keypair",
    "load_public_key",
    "normalize_public_key",
    "sign_delegation",
    "sign_payload",
    "verify_payload_signature",
    "DelegationProof",
    "Identity",
    "KeyHistoryEntry",
    "KeyRotationManager",
    "IdentityService",
    "SignatureVerifier",
]
