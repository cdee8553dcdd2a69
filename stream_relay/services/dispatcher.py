"""Response dispatch: passthrough, buffered sanitize, or streaming transduce."""
from __future__ import annotations

import logging
from typing import List, Tuple

import httpx
from fastapi import Response
from fastapi.responses import StreamingResponse

from stream_relay.core.config import Settings
from stream_relay.core.errors import ProxyError
from stream_relay.metrics.prometheus import EMPTY_RESPONSES, STREAM_TERMINATIONS
from stream_relay.services.sanitizer import sanitize_body
from stream_relay.services.stream_session import SSE_HEADERS, StreamSession
from stream_relay.services.tracker import SessionTracker
from stream_relay.services.upstream import hop_free_items

log = logging.getLogger("dispatch")


def is_event_stream(response: httpx.Response) -> bool:
    return "text/event-stream" in response.headers.get("content-type", "")


async def dispatch(upstream: httpx.Response, settings: Settings, tracker: SessionTracker) -> Response:
    """
    Turn an open upstream response into the client response.

    Only a 200 is transformed; everything else (3xx included) is relayed as
    received. The upstream response is closed on every path.
    """
    log.info(
        "upstream %s %s content-type=%r",
        upstream.status_code, upstream.reason_phrase, upstream.headers.get("content-type", ""),
    )
    if upstream.status_code != 200:
        return passthrough(upstream, settings)
    try:
        if is_event_stream(upstream):
            return await transduce(upstream, settings, tracker)
        return await sanitize(upstream, settings)
    except ProxyError as e:
        if e.status_code == 503:
            EMPTY_RESPONSES.labels(kind=type(e).__name__).inc()
        await upstream.aclose()
        raise


def _copy_headers(response: Response, items: List[Tuple[str, str]]) -> Response:
    for key, value in items:
        response.headers.append(key, value)
    return response


def passthrough(upstream: httpx.Response, settings: Settings) -> Response:
    """Relay status, headers and raw body bytes unchanged."""
    extra = ["content-length"] if settings.scrub_passthrough_length else []
    preread = upstream.is_stream_consumed
    if preread:
        # .content is already decoded, so the upstream encoding no longer applies
        extra += ["content-length", "content-encoding"]

    async def iter_upstream():
        try:
            if preread:
                yield upstream.content
            else:
                async for chunk in upstream.aiter_raw():
                    yield chunk
        finally:
            await upstream.aclose()

    response = StreamingResponse(iter_upstream(), status_code=upstream.status_code)
    return _copy_headers(response, hop_free_items(upstream.headers, *extra))


async def sanitize(upstream: httpx.Response, settings: Settings) -> Response:
    """Buffer the body, strip the sentinel and answer with a fresh length."""
    try:
        await upstream.aread()
    finally:
        await upstream.aclose()
    text = upstream.text
    log.debug("buffered body length: %d", len(text))

    body = sanitize_body(text, settings.sentinel, settings.fallback_sentinel_policy)
    # body is decoded text now; length and content-encoding are the transport's to set,
    # the declared charset still holds
    encoded = body.encode(upstream.encoding or "utf-8", errors="replace")
    response = Response(content=encoded, status_code=200)
    return _copy_headers(response, hop_free_items(upstream.headers, "content-length", "content-encoding"))


async def transduce(upstream: httpx.Response, settings: Settings, tracker: SessionTracker) -> Response:
    """Prime a StreamSession on the upstream body and stream it to the client."""
    session = StreamSession(
        upstream.aiter_bytes(),
        sentinel=settings.sentinel,
        inactivity_timeout_s=settings.inactivity_timeout_s,
        aclose=upstream.aclose,
    )
    await session.prime()
    tracker.admit(session)
    session.add_finish_callback(lambda s: STREAM_TERMINATIONS.labels(reason=s.reason.value).inc())
    return StreamingResponse(session.events(), status_code=200, headers=SSE_HEADERS)
