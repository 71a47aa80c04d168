# Copyright (c) Agent-Commons Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for AgentCommons.

All AgentCommons exceptions inherit from AgentCommonsError. Every concrete
error carries a stable wire ``code`` and an HTTP ``status_code`` so that HTTP
adapters can render the uniform ``{"error": {"code", "message"}}`` envelope
without inspecting the exception type.

Messages must never contain secret material: no private keys, raw
signatures, MAC digests or webhook secrets.
"""

from typing import Any


class AgentCommonsError(Exception):
    """Base exception for all AgentCommons errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Render the uniform error envelope."""
        return {"error": {"code": self.code, "message": self.message}}


# -- Identity ---------------------------------------------------------------


class IdentityError(AgentCommonsError):
    """Errors related to agent identity (fingerprints, keys)."""

    code = "IDENTITY_ERROR"
    status_code = 400


class InvalidPublicKeyError(IdentityError):
    """Public key is not a 64-character hex Ed25519 key."""

    code = "INVALID_PUBLIC_KEY"
    status_code = 400


class KeyAlreadyBoundError(IdentityError):
    """Public key is already bound to an identity."""

    code = "KEY_ALREADY_BOUND"
    status_code = 409


class UnknownIdentityError(IdentityError):
    """No identity is registered under the given fingerprint."""

    code = "UNKNOWN_IDENTITY"
    status_code = 404


# -- Signatures -------------------------------------------------------------


class SignatureError(AgentCommonsError):
    """Errors raised while authenticating a signed payload."""

    code = "SIGNATURE_ERROR"
    status_code = 401


class CanonicalizationError(SignatureError):
    """Payload cannot be canonicalized for signing."""

    code = "INVALID_PAYLOAD"
    status_code = 400


class MissingSignatureError(SignatureError):
    """Request body must include a non-empty "signature" field."""

    code = "MISSING_SIGNATURE"
    status_code = 401


class MissingAuthorError(SignatureError):
    """Request body must include an "author" fingerprint or a "public_key"."""

    code = "MISSING_AUTHOR"
    status_code = 400


class SignatureMismatchError(SignatureError):
    """Signature verification failed for the provided content."""

    code = "SIGNATURE_MISMATCH"
    status_code = 401


class StaleKeyError(SignatureError):
    """Signature was made with a key that has been rotated out."""

    code = "STALE_KEY"
    status_code = 401


# -- Rotation ---------------------------------------------------------------


class RotationError(AgentCommonsError):
    """Errors related to key rotation."""

    code = "ROTATION_ERROR"
    status_code = 400


class StaleTimestampError(RotationError):
    """Delegation timestamp is outside the accepted clock-skew window."""

    code = "STALE_TIMESTAMP"
    status_code = 400


class ReplayedDelegationError(RotationError):
    """Delegation timestamp is not newer than the last accepted rotation."""

    code = "REPLAYED_DELEGATION"
    status_code = 409


class InvalidDelegationError(RotationError):
    """Delegation signature verification failed."""

    code = "INVALID_DELEGATION"
    status_code = 401


class ConcurrentRotationError(RotationError):
    """Another rotation committed first; retry with fresh state."""

    code = "CONCURRENT_ROTATION"
    status_code = 409
    retryable = True


# -- Storage ----------------------------------------------------------------


class StorageError(AgentCommonsError):
    """Errors related to storage backend operations."""

    code = "STORAGE_ERROR"
    status_code = 500


class StorageUnavailableError(StorageError):
    """Identity store is unavailable; the request may be retried."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True


# -- Webhooks ---------------------------------------------------------------


class WebhookError(AgentCommonsError):
    """Errors related to inbound webhook deliveries."""

    code = "WEBHOOK_ERROR"
    status_code = 400


class WebhookVerificationError(WebhookError):
    """Webhook signature verification failed."""

    code = "INVALID_WEBHOOK_SIGNATURE"
    status_code = 401


__all__ = [
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
