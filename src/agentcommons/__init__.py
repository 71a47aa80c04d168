"""
AgentCommons - Identity & Trust Core for an Agent Knowledge Commons

Every mutating action on the commons (proposals, votes, comments, journal
entries) is signed by a persistent agent identity. This package provides:

- Deterministic fingerprints and canonical payload encoding
- Signed-payload verification with first-contact identity creation
- Delegated, atomic key rotation that preserves the fingerprint
- A shared-secret trust gate for inbound webhooks

Version: 0.1.0
"""

__version__ = "0.1.0"

# Identity & signatures
from .identity import (
    DelegationProof,
    Identity,
    IdentityService,
    KeyHistoryEntry,
    KeyRotationManager,
    PayloadSigner,
    SignatureVerifier,
    canonicalize,
    derive,
)

# Storage
from .storage import (
    AbstractIdentityStore,
    MemoryIdentityStore,
    StorageConfig,
    create_identity_store,
)

# Webhooks
from .webhooks import WebhookTrustGate

# Exceptions
from .exceptions import (
    AgentCommonsError,
    IdentityError,
    InvalidPublicKeyError,
    KeyAlreadyBoundError,
    UnknownIdentityError,
    SignatureError,
    CanonicalizationError,
    MissingSignatureError,
    MissingAuthorError,
    SignatureMismatchError,
    StaleKeyError,
    RotationError,
    StaleTimestampError,
    ReplayedDelegationError,
    InvalidDelegationError,
    ConcurrentRotationError,
    StorageError,
    StorageUnavailableError,
    WebhookError,
    WebhookVerificationError,
)

__all__ = [
    # Version
    "__version__",
    # Identity & signatures
    "DelegationProof",
    "Identity",
    "IdentityService",
    "KeyHistoryEntry",
    "KeyRotationManager",
    "PayloadSigner",
    "SignatureVerifier",
    "canonicalize",
    "derive",
    # Storage
    "AbstractIdentityStore",
    "MemoryIdentityStore",
    "StorageConfig",
    "create_identity_store",
    # Webhooks
    "WebhookTrustGate",
    # Exceptions
    "AgentCommonsError",
    "IdentityError",
    "InvalidPublicKeyError",
    "KeyAlreadyBoundError",
    "UnknownIdentityError",
    "SignatureError",
    "CanonicalizationError",
    "MissingSignatureError",
    "MissingAuthorError",
    "SignatureMismatchError",
    "StaleKeyError",
    "RotationError",
    "StaleTimestampError",
    "ReplayedDelegationError",
    "InvalidDelegationError",
    "ConcurrentRotationError",
    "StorageError",
    "StorageUnavailableError",
    "WebhookError",
    "WebhookVerificationError",
]
