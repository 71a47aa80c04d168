"""
Inbound webhook trust boundary.
"""

from .push import PushEvent, parse_push_event
from .trust_gate import WebhookTrustGate, compute_signature, verify

__all__ = [
    "PushEvent",
    "parse_push_event",
    "WebhookTrustGate",
    "compute_signature",
    "verify",
]
