"""Upstream request construction and sending.

Derives the outbound request from the inbound one and opens the upstream
response in streaming mode so the dispatcher decides how to consume it.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Tuple

import httpx
from fastapi import Request

from stream_relay.core.config import Settings
from stream_relay.core.errors import UpstreamFetchFailure
from stream_relay.metrics.prometheus import UPSTREAM_FAILURES
from stream_relay.models.schemas import ProxyRequest, ResolvedTarget

log = logging.getLogger("upstream")

# RFC 9110 hop-by-hop headers (must not be forwarded)
HOP_BY_HOP = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade",
}

# Edge-layer headers that would leak the CDN in front of us
EDGE_HEADERS = {"cf-ray", "cf-connecting-ip"}

BODYLESS_METHODS = {"GET", "HEAD"}


def strip_hop_headers(headers: Mapping[str, str], *extra: str) -> Dict[str, str]:
    """Copy `headers` without hop-by-hop headers and any `extra` names."""
    drop = HOP_BY_HOP | {e.lower() for e in extra}
    return {k: v for k, v in headers.items() if k.lower() not in drop}


def hop_free_items(headers: httpx.Headers, *extra: str) -> List[Tuple[str, str]]:
    """Like strip_hop_headers, but keeps repeated headers (set-cookie) as separate pairs."""
    drop = HOP_BY_HOP | {e.lower() for e in extra}
    return [(k, v) for k, v in headers.multi_items() if k.lower() not in drop]


def raw_target(req: Request) -> str:
    """Request path exactly as sent (percent-escapes intact), without the leading "/"."""
    raw = req.scope.get("raw_path")
    if raw is None:
        path = req.url.path
    else:
        # some servers include the query string in raw_path
        path = raw.decode("latin-1").split("?", 1)[0]
    return path.lstrip("/")


async def read_proxy_request(req: Request, target: str) -> ProxyRequest:
    """Snapshot the inbound request; the body is read fully unless GET/HEAD."""
    body = None
    if req.method.upper() not in BODYLESS_METHODS:
        body = await req.body()
        log.debug("request body length: %d", len(body))
    return ProxyRequest(
        method=req.method.upper(),
        path=target,
        query=req.url.query,
        headers={k.lower(): v for k, v in req.headers.items()},
        body=body,
    )


def build_headers(preq: ProxyRequest, target: ResolvedTarget, settings: Settings) -> Dict[str, str]:
    """Outbound headers for `preq` forwarded to `target`."""
    headers = strip_hop_headers(preq.headers, "content-length", *EDGE_HEADERS)
    headers["host"] = target.host
    if settings.strip_accept_encoding:
        # httpx fills in "gzip, deflate" when the header is missing
        headers["accept-encoding"] = "identity"
    headers.setdefault("user-agent", settings.default_user_agent)
    headers.setdefault("accept", settings.default_accept)
    return headers


def build_upstream_request(
    client: httpx.AsyncClient, preq: ProxyRequest, target: ResolvedTarget, settings: Settings
) -> httpx.Request:
    """Build (but do not send) the upstream request."""
    return client.build_request(
        preq.method,
        target.url,
        headers=build_headers(preq, target, settings),
        content=preq.body,
    )


async def send_upstream(client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
    """
    Send `request` without following redirects and return the open response.

    The caller owns the response and must close it. Transport failures are
    reported as `UpstreamFetchFailure` and never retried.
    """
    log.info("forwarding %s %s", request.method, request.url)
    try:
        return await client.send(request, stream=True, follow_redirects=False)
    except httpx.HTTPError as e:
        UPSTREAM_FAILURES.inc()
        log.error("fetch error for %s: %r", request.url, e)
        raise UpstreamFetchFailure(str(e) or type(e).__name__) from e
