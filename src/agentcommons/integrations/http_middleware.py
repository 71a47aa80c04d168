"""
HTTP Signature Middleware for AgentCommons
==========================================

Framework-agnostic middleware that authenticates mutating HTTP requests by
their signed JSON body (``signature`` plus ``author`` or ``public_key``), and
inbound webhook deliveries by their ``x-hub-signature-256`` header.

Provides generic ``SignatureMiddleware`` and ``WebhookMiddleware`` classes
plus thin adapters for Flask (``flask_signature_required``) and FastAPI
(``fastapi_signature_required``, ``install_error_handlers``). Framework
imports are deferred, so a missing framework only fails when its adapter is
used.
"""

import inspect
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from agentcommons.constants import HEADER_HUB_SIGNATURE_256
from agentcommons.exceptions import (
    AgentCommonsError,
    CanonicalizationError,
    WebhookVerificationError,
)
from agentcommons.identity.verifier import SignatureVerifier
from agentcommons.webhooks.trust_gate import WebhookTrustGate

logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {
    "error": {"code": "INTERNAL_ERROR", "message": "An internal error occurred"}
}


@dataclass
class AuthResult:
    """Outcome of authenticating a signed request."""

    verified: bool
    author: str = ""
    status_code: int = 200
    code: str = ""


def error_response(exc: AgentCommonsError) -> Tuple[Dict[str, Any], int]:
    """Return ``(envelope, status)`` for an AgentCommons error."""
    return exc.to_dict(), exc.status_code


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class SignatureMiddleware:
    """Framework-independent authentication of signed request bodies.

    Parameters
    ----------
    verifier : SignatureVerifier
        Verifier bound to the identity store.
    """

    def __init__(self, verifier: SignatureVerifier) -> None:
        self.verifier = verifier

    async def authenticate(
        self, body: Any
    ) -> Tuple[AuthResult, Optional[Dict[str, Any]]]:
        """Verify *body* and return *(result, error_body | None)*.

        *error_body* is the uniform error envelope when authentication fails,
        with the HTTP status in ``result.status_code``.
        """
        try:
            if not isinstance(body, Mapping):
                raise CanonicalizationError("Request body must be a JSON object")
            author = await self.verifier.verify(body)
        except AgentCommonsError as exc:
            envelope, status = error_response(exc)
            return AuthResult(verified=False, status_code=status, code=exc.code), envelope
        return AuthResult(verified=True, author=author), None


class WebhookMiddleware:
    """Framework-independent webhook delivery verification."""

    def __init__(self, gate: WebhookTrustGate) -> None:
        self.gate = gate

    def verify_delivery(
        self,
        headers: Mapping[str, str],
        raw_body: bytes,
    ) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """Return *(trusted, error_body | None)* for a webhook delivery."""
        signature = _header(headers, HEADER_HUB_SIGNATURE_256)
        if self.gate.verify(raw_body, signature):
            return True, None
        return False, WebhookVerificationError(
            "Webhook signature verification failed"
        ).to_dict()


# -- Framework-specific adapters -------------------------------------------

def flask_signature_required(middleware: SignatureMiddleware) -> Callable:
    """Flask decorator that rejects requests without a valid signature.

    The verified fingerprint is available as ``g.verified_author``. The
    wrapped view runs as an async view, so Flask needs its ``async`` extra.
    """
    from flask import g, jsonify, request  # noqa: late import

    def decorator(fn: Callable) -> Callable:
        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            result, err = await middleware.authenticate(request.get_json(silent=True))
            if err:
                return jsonify(err), result.status_code
            g.verified_author = result.author
            rv = fn(*args, **kwargs)
            if inspect.isawaitable(rv):
                rv = await rv
            return rv
        return wrapper
    return decorator


def fastapi_signature_required(middleware: SignatureMiddleware) -> Callable:
    """FastAPI dependency that returns the verified author fingerprint.

    Failures raise the underlying AgentCommonsError; register
    :func:`install_error_handlers` on the app to render the envelope.
    """
    from fastapi import Request  # noqa: late import

    async def dependency(request: Request) -> str:
        try:
            body = await request.json()
        except ValueError:
            raise CanonicalizationError("Request body must be valid JSON") from None
        if not isinstance(body, Mapping):
            raise CanonicalizationError("Request body must be a JSON object")
        return await middleware.verifier.verify(body)

    return dependency


def install_error_handlers(app: Any) -> None:
    """Render AgentCommons errors on a FastAPI app as the uniform envelope."""
    from fastapi import Request  # noqa: late import
    from fastapi.responses import JSONResponse  # noqa: late import

    async def handle_agentcommons_error(request: Request, exc: AgentCommonsError) -> Any:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    async def handle_unexpected_error(request: Request, exc: Exception) -> Any:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

    app.add_exception_handler(AgentCommonsError, handle_agentcommons_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
