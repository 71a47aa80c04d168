"""Shared constants for AgentCommons."""

# Fingerprints: first 16 hex chars of SHA-256 over the raw public key.
FINGERPRINT_HEX_LENGTH = 16

# Ed25519 raw key and signature sizes.
ED25519_PUBLIC_KEY_BYTES = 32
ED25519_SIGNATURE_BYTES = 64

# Rotation freshness window, seconds either side of server time.
DEFAULT_MAX_CLOCK_SKEW_SECONDS = 300

# Largest integer exactly representable as an IEEE-754 double.
MAX_SAFE_INTEGER_FLOAT = 2**53

# Payload fields that carry authorship.
FIELD_SIGNATURE = "signature"
FIELD_AUTHOR = "author"
FIELD_PUBLIC_KEY = "public_key"

# Delegation message fields.
DELEGATION_OLD_KEY = "old_key"
DELEGATION_NEW_KEY = "new_key"
DELEGATION_TIMESTAMP = "timestamp"

# Webhook headers.
HEADER_HUB_SIGNATURE_256 = "x-hub-signature-256"
HEADER_GITHUB_EVENT = "x-github-event"
WEBHOOK_SIGNATURE_PREFIX = "sha256="
