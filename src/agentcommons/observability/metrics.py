"""
Prometheus Metrics Integration.

Provides metrics collection and export for AgentCommons.
"""

from typing import Optional


class MetricsCollector:
    """
    Prometheus metrics collector for AgentCommons.

    Exposes metrics:
    - agentcommons_signature_verifications_total{outcome="ok|<error code>"}
    - agentcommons_key_rotations_total{outcome="ok|<error code>"}
    - agentcommons_webhook_deliveries_total{outcome="accepted|rejected|unsigned"}
    - agentcommons_identities_created_total

    Each collector owns its registry so several collectors (one per app or
    test) can coexist in one process.
    """

    def __init__(self):
        """Initialize metrics collector."""
        try:
            from prometheus_client import CollectorRegistry, Counter

            self.registry = CollectorRegistry()

            self.signature_verifications_total = Counter(
                "agentcommons_signature_verifications_total",
                "Signed payload verifications by outcome",
                ["outcome"],
                registry=self.registry,
            )

            self.key_rotations_total = Counter(
                "agentcommons_key_rotations_total",
                "Key rotation attempts by outcome",
                ["outcome"],
                registry=self.registry,
            )

            self.webhook_deliveries_total = Counter(
                "agentcommons_webhook_deliveries_total",
                "Inbound webhook deliveries by outcome",
                ["outcome"],
                registry=self.registry,
            )

            self.identities_created_total = Counter(
                "agentcommons_identities_created_total",
                "Identities created on first contact or registration",
                registry=self.registry,
            )

            self._enabled = True
        except ImportError:
            # Prometheus client not installed
            self.registry = None
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled."""
        return self._enabled

    def record_verification(self, outcome: str):
        """Record a signature verification outcome."""
        if not self._enabled:
            return
        self.signature_verifications_total.labels(outcome=outcome).inc()

    def record_rotation(self, outcome: str):
        """Record a key rotation outcome."""
        if not self._enabled:
            return
        self.key_rotations_total.labels(outcome=outcome).inc()

    def record_webhook(self, outcome: str):
        """Record a webhook delivery outcome."""
        if not self._enabled:
            return
        self.webhook_deliveries_total.labels(outcome=outcome).inc()

    def record_identity_created(self):
        """Record identity creation."""
        if not self._enabled:
            return
        self.identities_created_total.inc()

    def render(self) -> tuple[bytes, str]:
        """Return ``(body, content_type)`` in the Prometheus text format."""
        if not self._enabled:
            return b"", "text/plain; charset=utf-8"
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        return generate_latest(self.registry), CONTENT_TYPE_LATEST


_default_collector: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Return the process-wide default collector."""
    global _default_collector
    if _default_collector is None:
        _default_collector = MetricsCollector()
    return _default_collector
