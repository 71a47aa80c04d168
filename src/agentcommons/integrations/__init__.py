"""
HTTP framework integrations for AgentCommons.
"""

from .http_middleware import (
    AuthResult,
    SignatureMiddleware,
    WebhookMiddleware,
    error_response,
    fastapi_signature_required,
    flask_signature_required,
    install_error_handlers,
)

__all__ = [
    "AuthResult",
    "SignatureMiddleware",
    "WebhookMiddleware",
    "error_response",
    "fastapi_signature_required",
    "flask_signature_required",
    "install_error_handlers",
]
