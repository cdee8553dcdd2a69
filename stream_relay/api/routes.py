"""API routes for the stream relay.

A single catch-all route forwards `/<target>` to the resolved upstream and
hands the response to the dispatcher.
"""
from __future__ import annotations

from logging import getLogger
from typing import Optional

import httpx
from fastapi import APIRouter, Request, Response

from stream_relay.core.config import Settings
from stream_relay.core.errors import ProxyError, TopLevelHandlerError
from stream_relay.metrics.prometheus import REQUESTS
from stream_relay.services.dispatcher import dispatch
from stream_relay.services.resolver import resolve_target
from stream_relay.services.tracker import SessionTracker
from stream_relay.services.upstream import build_upstream_request, raw_target, read_proxy_request, send_upstream

log = getLogger("Stream-Relay.API")
router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Shared upstream client; redirects are never followed."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_s),
        follow_redirects=False,
        verify=settings.verify_tls,
    )


def _get_client_and_tracker(request: Request) -> tuple[httpx.AsyncClient, SessionTracker]:
    """Return the HTTP client and session tracker.

    Prefers application-scoped singletons placed on ``app.state`` during
    application lifespan. Falls back to creating them on first use when the
    lifespan did not run (e.g., ASGI transports in tests).
    """
    state = request.app.state
    client: Optional[httpx.AsyncClient] = getattr(state, "http_client", None)
    tracker: Optional[SessionTracker] = getattr(state, "tracker", None)
    if client is None:
        client = state.http_client = create_http_client(state.settings)
    if tracker is None:
        tracker = state.tracker = SessionTracker()
    return client, tracker


@router.api_route("/{target:path}", methods=PROXY_METHODS)
async def relay(target: str, request: Request) -> Response:
    """
    Forward the request to the upstream named by the path:
      - /service/<alias>/<rest> -> internal service base + /<rest>
      - /<url>                  -> external URL (https when no scheme)
    """
    REQUESTS.labels(method=request.method).inc()
    log.info("%s %s", request.method, request.url.path)
    settings: Settings = request.app.state.settings
    client, tracker = _get_client_and_tracker(request)

    # the path parameter is percent-decoded; resolve from the raw path instead
    target = raw_target(request)
    try:
        resolved = resolve_target(target, request.url.query, settings)
        log.info("target %s", resolved.url)

        preq = await read_proxy_request(request, target)
        upstream = await send_upstream(client, build_upstream_request(client, preq, resolved, settings))
        return await dispatch(upstream, settings, tracker)
    except ProxyError:
        raise
    except Exception as e:
        log.exception("top-level error handling %s %s", request.method, request.url.path)
        raise TopLevelHandlerError() from e
