"""Stream relay FastAPI application.

Creates the relay service, wires routes, configures logging, and exposes
readiness and Prometheus metrics endpoints.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from stream_relay.api.routes import create_http_client, router
from stream_relay.core.config import Settings, settings as default_settings
from stream_relay.core.errors import ProxyError
from stream_relay.core.logging import setup_logging
from stream_relay.metrics.prometheus import metrics_router
from stream_relay.services.tracker import SessionTracker

log = logging.getLogger("Stream-Relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan.

    Owns the shared upstream client (HTTP pool) unless one was injected, and
    on shutdown drains streaming sessions before the client is closed.
    """
    owned = app.state.http_client is None
    if owned:
        app.state.http_client = create_http_client(app.state.settings)
    try:
        yield
    finally:
        await app.state.tracker.drain(app.state.settings.shutdown_grace_s)
        if owned:
            await app.state.http_client.aclose()
            app.state.http_client = None


async def proxy_error_handler(_: Request, exc: ProxyError) -> PlainTextResponse:
    log.info("%s: %s", type(exc).__name__, exc.detail)
    return PlainTextResponse(exc.detail, status_code=exc.status_code)


def create_app(settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Build the relay app; `settings` and `http_client` are injectable for tests."""
    setup_logging()
    app = FastAPI(title="Stream Relay", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings or default_settings
    app.state.http_client = http_client
    app.state.tracker = SessionTracker()

    app.add_exception_handler(ProxyError, proxy_error_handler)

    @app.get("/readyz")
    async def readyz():
        """Readiness check; reports not-ready once draining has begun."""
        if not app.state.tracker.accepting:
            return PlainTextResponse("draining", status_code=503)
        return {"status": "ok"}

    app.include_router(metrics_router)
    # catch-all last so the local endpoints above win
    app.include_router(router)
    return app


app = create_app()
