"""FastAPI application entry point for the webhook bridge.

This module exposes the single webhook endpoint (``POST /``, with the alias
``POST /webhooks/github``), a liveness probe and the Prometheus metrics
endpoint. All event handling is delegated to EventDispatcher.

Startup loads and validates BridgeSettings, configures structlog, logs the
configuration with secrets redacted, clears staging roots left behind by a
previous process and wires the dispatcher. Shutdown drains background
handlers.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry

from tfbridge import __version__
from tfbridge.auth.app import AppAuthenticator
from tfbridge.config import BridgeSettings, get_settings
from tfbridge.dispatcher import EventDispatcher
from tfbridge.harvest.staging import StagingArea
from tfbridge.harvest.walker import HarvestLimits, RepoTreeWalker
from tfbridge.logs import configure_logging, redact_secret
from tfbridge.metrics import BridgeMetrics
from tfbridge.upload.orchestrator import UploadOrchestrator
from tfbridge.webhook.models import WebhookEvent
from tfbridge.webhook.signature import SignatureVerifier, select_signature_header

logger = structlog.get_logger(__name__)

EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"

# Seconds to wait for background handlers at shutdown
DRAIN_TIMEOUT_SECONDS = 30.0


def _log_configuration(settings: BridgeSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info(
        "bridge_configuration",
        github_app_identifier=settings.github_app_identifier,
        github_base_url=settings.github_base_url,
        github_private_key_path=settings.github_private_key_path,
        github_private_key=redact_secret(settings.github_private_key or ""),
        github_webhook_secret=redact_secret(settings.github_webhook_secret),
        assertion_ttl_seconds=settings.assertion_ttl_seconds,
        issue_label=settings.issue_label,
        staging_base_path=settings.staging_base_path,
        harvest_suffixes=list(settings.harvest_suffixes),
        harvest_max_depth=settings.harvest_max_depth,
        harvest_max_total_bytes=settings.harvest_max_total_bytes,
        ingest_url=settings.ingest_url,
        customer_id=redact_secret(settings.customer_id),
        upload_max_retries=settings.upload_max_retries,
        strict_payloads=settings.strict_payloads,
        background_dispatch=settings.background_dispatch,
        host=settings.host,
        port=settings.port,
    )


def build_dispatcher(settings: BridgeSettings, metrics: BridgeMetrics) -> EventDispatcher:
    """Wire all bridge dependencies into an EventDispatcher.

    Args:
        settings: Validated bridge settings.
        metrics: Metrics the dispatcher records into.

    Returns:
        Fully wired EventDispatcher.
    """
    authenticator = AppAuthenticator(
        app_id=settings.github_app_identifier,
        private_key=settings.load_private_key(),
        base_url=settings.github_base_url,
        assertion_ttl=settings.assertion_ttl_seconds,
        clock_skew=settings.assertion_clock_skew_seconds,
        max_retries=settings.github_max_retries,
        timeout=settings.http_timeout_seconds,
    )

    walker = RepoTreeWalker(
        suffixes=settings.harvest_suffixes,
        limits=HarvestLimits(
            max_depth=settings.harvest_max_depth,
            max_total_bytes=settings.harvest_max_total_bytes,
        ),
    )

    uploader = UploadOrchestrator(
        ingest_url=settings.ingest_url,
        customer_id=settings.customer_id,
        timeout=settings.http_timeout_seconds,
        max_retries=settings.upload_max_retries,
    )

    return EventDispatcher(
        verifier=SignatureVerifier(settings.github_webhook_secret),
        authenticator=authenticator,
        walker=walker,
        staging=StagingArea(Path(settings.staging_base_path)),
        uploader=uploader,
        issue_label=settings.issue_label,
        metrics=metrics,
        strict_payloads=settings.strict_payloads,
        background=settings.background_dispatch,
    )


def create_app(
    settings: Optional[BridgeSettings] = None,
    dispatcher: Optional[EventDispatcher] = None,
    metrics: Optional[BridgeMetrics] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment at startup
            when omitted.
        dispatcher: Pre-built dispatcher, for tests. Built from settings
            when omitted.
        metrics: Metrics to expose; a private registry is used when omitted.

    Returns:
        The configured FastAPI application.
    """
    bridge_metrics = metrics or BridgeMetrics(registry=CollectorRegistry())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.dispatcher is None:
            cfg = settings or get_settings()
            configure_logging(cfg.log_level, json_output=cfg.log_json)
            logger.info("bridge_starting", version=__version__)
            _log_configuration(cfg)

            StagingArea(Path(cfg.staging_base_path)).cleanup_stale(cfg.staging_stale_seconds)
            app.state.dispatcher = build_dispatcher(cfg, bridge_metrics)

        logger.info("bridge_started")

        yield

        logger.info("bridge_shutting_down")
        await app.state.dispatcher.drain(timeout=DRAIN_TIMEOUT_SECONDS)
        logger.info("bridge_shutdown_complete")

    app = FastAPI(
        title="tfbridge",
        description="GitHub App webhook bridge forwarding Terraform sources",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher
    app.state.metrics = bridge_metrics

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def metrics_endpoint(request: Request):
        """Prometheus metrics endpoint."""
        return Response(
            content=request.app.state.metrics.render(),
            media_type=CONTENT_TYPE_LATEST,
        )

    async def github_webhook(request: Request):
        """GitHub webhook receiver.

        Reads the exact raw body for signature verification. Answers 401 on
        a signature failure and 200 "ok" otherwise, whatever the handler
        outcome.
        """
        body = await request.body()
        event = WebhookEvent(
            event_type=request.headers.get(EVENT_HEADER, ""),
            body=body,
            signature_header=select_signature_header(request.headers),
            delivery_id=request.headers.get(DELIVERY_HEADER),
        )

        result = await request.app.state.dispatcher.dispatch(event)
        return PlainTextResponse(result.body, status_code=result.status_code)

    app.add_api_route("/", github_webhook, methods=["POST"], response_class=PlainTextResponse)
    app.add_api_route(
        "/webhooks/github",
        github_webhook,
        methods=["POST"],
        response_class=PlainTextResponse,
    )

    return app


app = create_app()


def run() -> None:
    """Run the bridge with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
