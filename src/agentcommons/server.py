"""
AgentCommons HTTP Server

FastAPI application exposing the identity and trust core:

- ``POST /v1/identities``: register a public key (idempotent)
- ``GET /v1/identities/{fingerprint}``: identity with key history
- ``POST /v1/identities/{fingerprint}/rotate``: delegated key rotation
- ``POST /v1/verify``: authenticate a signed payload, return its author
- ``POST /webhooks/github``: HMAC-verified push notifications
- ``GET /health``, ``GET /metrics``

Domain routes (proposals, votes, journal entries) mount on the same app and
depend on :func:`fastapi_signature_required` for authorship.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from agentcommons.config import Settings
from agentcommons.constants import HEADER_GITHUB_EVENT
from agentcommons.exceptions import (
    CanonicalizationError,
    InvalidPublicKeyError,
    InvalidDelegationError,
    StaleTimestampError,
    WebhookVerificationError,
)
from agentcommons.identity.rotation import KeyRotationManager
from agentcommons.identity.service import IdentityService
from agentcommons.identity.verifier import SignatureVerifier
from agentcommons.integrations.http_middleware import (
    SignatureMiddleware,
    WebhookMiddleware,
    fastapi_signature_required,
    install_error_handlers,
)
from agentcommons.observability.metrics import MetricsCollector
from agentcommons.storage.provider import AbstractIdentityStore, create_identity_store
from agentcommons.webhooks.push import PushEvent, parse_push_event
from agentcommons.webhooks.trust_gate import WebhookTrustGate

logger = logging.getLogger(__name__)

PushHandler = Callable[[PushEvent], Awaitable[Any]]


def wrap_response(data: Any) -> dict[str, Any]:
    """Wrap a successful response body with request metadata."""
    return {
        "data": data,
        "meta": {
            "request_id": str(uuid.uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise CanonicalizationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise CanonicalizationError("Request body must be a JSON object")
    return body


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[AbstractIdentityStore] = None,
    on_push: Optional[PushHandler] = None,
    metrics: Optional[MetricsCollector] = None,
) -> FastAPI:
    """Build the AgentCommons FastAPI application.

    Args:
        settings: Runtime settings (defaults to :meth:`Settings.from_env`).
        store: Identity store; built from ``settings.storage`` when omitted.
        on_push: Async callback receiving verified push events.
        metrics: Metrics collector; a fresh one per app when omitted.
    """
    settings = settings or Settings.from_env()
    store = store or create_identity_store(settings.storage)
    metrics = metrics or MetricsCollector()

    verifier = SignatureVerifier(store, metrics=metrics)
    rotations = KeyRotationManager(
        store, max_clock_skew_seconds=settings.max_clock_skew_seconds, metrics=metrics
    )
    identities = IdentityService(store, metrics=metrics)
    signatures = SignatureMiddleware(verifier)
    webhooks = WebhookMiddleware(
        WebhookTrustGate(
            settings.webhook_secret,
            allow_unsigned=settings.webhook_allow_unsigned,
            metrics=metrics,
        )
    )
    require_author = fastapi_signature_required(signatures)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.connect()
        logger.info("Identity store connected (%s)", settings.storage.backend)
        yield
        await store.disconnect()

    app = FastAPI(title="AgentCommons", lifespan=lifespan)
    install_error_handlers(app)
    app.state.store = store
    app.state.metrics = metrics

    @app.get("/health")
    async def health():
        healthy = await store.health_check()
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "ok" if healthy else "unavailable"},
        )

    @app.get("/metrics")
    async def metrics_endpoint():
        body, content_type = metrics.render()
        return Response(content=body, media_type=content_type)

    @app.post("/v1/identities")
    async def register_identity(request: Request):
        body = await _json_object(request)
        public_key = body.get("public_key")
        if not isinstance(public_key, str):
            raise InvalidPublicKeyError("A valid public key (hex string) is required")
        identity, created = await identities.register(public_key)
        return JSONResponse(
            status_code=201 if created else 200,
            content=wrap_response(identity.model_dump(mode="json")),
        )

    @app.get("/v1/identities/{fingerprint}")
    async def get_identity(fingerprint: str):
        identity = await identities.get_identity(fingerprint)
        return wrap_response(identity.model_dump(mode="json"))

    @app.post("/v1/identities/{fingerprint}/rotate")
    async def rotate_key(fingerprint: str, request: Request):
        body = await _json_object(request)
        new_public_key = body.get("new_public_key")
        delegation_signature = body.get("delegation_signature")
        timestamp = body.get("timestamp")
        if not isinstance(new_public_key, str):
            raise InvalidPublicKeyError('"new_public_key" must be a 64-character hex string')
        if not isinstance(delegation_signature, str) or not delegation_signature:
            raise InvalidDelegationError('"delegation_signature" is required')
        if timestamp is None:
            raise StaleTimestampError('"timestamp" (epoch seconds) is required')
        identity = await rotations.rotate(
            fingerprint, new_public_key, delegation_signature, timestamp
        )
        return JSONResponse(
            status_code=201, content=wrap_response(identity.model_dump(mode="json"))
        )

    @app.post("/v1/verify")
    async def verify_payload(author: str = Depends(require_author)):
        return wrap_response({"author": author})

    @app.post("/webhooks/github")
    async def github_webhook(request: Request):
        raw_body = await request.body()
        trusted, err = webhooks.verify_delivery(request.headers, raw_body)
        if not trusted:
            raise WebhookVerificationError(err["error"]["message"])

        event = request.headers.get(HEADER_GITHUB_EVENT, "")
        if event != "push":
            return {"message": "Event ignored", "event": event}

        push = parse_push_event(await _json_object(request))
        if on_push is not None and push.changed_paths:
            await on_push(push)
        logger.info(
            "Accepted push %s with %d changed paths", push.commit_sha[:12], len(push.changed_paths)
        )
        return {
            "message": "Webhook processed",
            "synced": len(push.changed_paths),
            "paths": push.changed_paths,
        }

    return app


def main() -> None:
    """Run the server with uvicorn using environment settings."""
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info("Starting AgentCommons on %s:%d", settings.host, settings.port)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
