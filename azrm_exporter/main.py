"""FastAPI Application Entry Point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from azrm_exporter import __version__
from azrm_exporter.core.config import Settings, settings
from azrm_exporter.core.logging import configure_logging
from azrm_exporter.workers.jobs import ExporterService

logger = structlog.get_logger()


def init_sentry(settings: Settings) -> None:
    """Initialize Sentry error tracking when a DSN is configured."""
    if not settings.SENTRY_DSN:
        logger.info("sentry.disabled")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[FastApiIntegration(transaction_style="endpoint")],
        send_default_pii=False,
        release=f"azure-resourcemanager-exporter@{__version__}",
        attach_stacktrace=True,
    )
    logger.info("sentry.initialized", environment=settings.SENTRY_ENVIRONMENT)


def create_app(settings: Settings = settings, service: ExporterService | None = None) -> FastAPI:
    """
    Build the exporter application.

    The service is started in the lifespan: a failure to resolve
    subscriptions or to restore the portscan cache aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        init_sentry(settings)

        exporter = service or ExporterService(settings)
        app.state.exporter = exporter
        exporter.start()
        try:
            yield
        finally:
            exporter.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Azure ResourceManager inventory, quota and portscan metrics",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/metrics", tags=["metrics"])
    async def metrics(request: Request) -> Response:
        """Prometheus exposition of every exporter gauge."""
        exporter: ExporterService = request.app.state.exporter
        return Response(content=exporter.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health", tags=["health"])
    async def health_check(request: Request) -> JSONResponse:
        """Health check endpoint."""
        exporter: ExporterService = request.app.state.exporter
        portscanner = exporter.portscanner
        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "service": settings.APP_NAME,
                "subscriptions": len(exporter.subscription_ids),
                "portscan": {
                    "enabled": portscanner is not None and portscanner.enabled,
                    "addresses": len(portscanner.addresses()) if portscanner else 0,
                    "cached": len(portscanner.cached_addresses()) if portscanner else 0,
                },
            },
        )

    return app
