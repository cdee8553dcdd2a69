"""Error kinds surfaced to proxy clients.

Each error carries the HTTP status and the plain-text body the client
receives. The 503 family signals "upstream produced nothing usable" so a
caller can retry at a higher layer; the relay itself never retries.
"""
from __future__ import annotations


class ProxyError(Exception):
    """Base class for errors rendered as plain-text responses."""

    status_code: int = 500
    detail: str = "Proxy Error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class MissingTarget(ProxyError):
    status_code = 400
    detail = "Missing target URL"


class UnknownService(ProxyError):
    status_code = 404

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Unknown service: {alias}")


class UpstreamFetchFailure(ProxyError):
    status_code = 500

    def __init__(self, reason: str):
        super().__init__(f"Fetch Error: {reason}")


class EmptyResponse(ProxyError):
    status_code = 503
    detail = "Empty Response"


class EmptyStream(ProxyError):
    status_code = 503
    detail = "Empty Stream"


class StreamClosedImmediately(ProxyError):
    status_code = 503
    detail = "Stream Closed Immediately"


class EmptyContentAfterFilter(ProxyError):
    status_code = 503
    detail = "Empty Content After Filter"


class ShuttingDown(ProxyError):
    status_code = 503
    detail = "Shutting Down"


class TopLevelHandlerError(ProxyError):
    status_code = 500
    detail = "Proxy Error"
