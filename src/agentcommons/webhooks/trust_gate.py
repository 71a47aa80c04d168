"""
Webhook Trust Gate

Authenticates inbound webhook deliveries (GitHub push notifications) with a
shared-secret HMAC-SHA256 over the raw, unparsed request body. The sender is
a third-party service, not an agent, so this gate is independent of the
identity model.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional, Union

from agentcommons.constants import WEBHOOK_SIGNATURE_PREFIX
from agentcommons.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


def compute_signature(raw_payload: bytes, shared_secret: Union[str, bytes]) -> str:
    """Return the ``sha256=<hex>`` header value for *raw_payload*."""
    key = shared_secret.encode() if isinstance(shared_secret, str) else shared_secret
    digest = hmac.new(key, raw_payload, hashlib.sha256).hexdigest()
    return WEBHOOK_SIGNATURE_PREFIX + digest


def verify(
    raw_payload: bytes,
    provided_signature: Optional[str],
    shared_secret: Union[str, bytes],
) -> bool:
    """Verify a delivery's ``x-hub-signature-256`` header.

    The comparison is constant time: its duration does not depend on where
    the first mismatching character is.

    Returns:
        False for a missing header, an empty secret, or any mismatch.
    """
    if not provided_signature or not shared_secret:
        return False
    expected = compute_signature(raw_payload, shared_secret)
    return hmac.compare_digest(provided_signature.encode(), expected.encode())


class WebhookTrustGate:
    """Gate for one webhook source.

    Args:
        shared_secret: Secret configured with the webhook sender.
        allow_unsigned: When no secret is configured, accept deliveries
            unverified. Off by default: an unconfigured gate rejects every
            delivery.
        metrics: Optional metrics collector.
    """

    def __init__(
        self,
        shared_secret: Optional[str] = None,
        allow_unsigned: bool = False,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._shared_secret = shared_secret or None
        self._allow_unsigned = allow_unsigned
        self._metrics = metrics or get_metrics()
        if self._shared_secret is None and allow_unsigned:
            logger.warning(
                "Webhook trust gate has no secret and allow_unsigned is set; "
                "deliveries will be accepted without verification"
            )

    @property
    def configured(self) -> bool:
        return self._shared_secret is not None

    def verify(self, raw_payload: bytes, provided_signature: Optional[str]) -> bool:
        """Return True if the delivery should be trusted."""
        if self._shared_secret is None:
            if self._allow_unsigned:
                self._metrics.record_webhook("unsigned")
                logger.warning("Accepted unsigned webhook delivery (no secret configured)")
                return True
            self._metrics.record_webhook("rejected")
            logger.warning("Rejected webhook delivery: no webhook secret configured")
            return False

        if verify(raw_payload, provided_signature, self._shared_secret):
            self._metrics.record_webhook("accepted")
            return True
        self._metrics.record_webhook("rejected")
        logger.warning("Rejected webhook delivery: signature mismatch")
        return False
