"""Target resolution: inbound path -> absolute upstream URL."""
from __future__ import annotations

import re

import httpx

from stream_relay.core.config import Settings
from stream_relay.core.errors import MissingTarget, UnknownService
from stream_relay.models.schemas import ResolvedTarget

_ALIAS_RE = re.compile(r"^service/(?P<alias>[^/]+)(?P<rest>/.*)?$")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
# "https:/host" left behind by path normalizers that merge "//"
_COLLAPSED_SCHEME_RE = re.compile(r"^(https?):/(?!/)", re.IGNORECASE)


def _with_query(url: str, query: str) -> str:
    return f"{url}?{query}" if query else url


def resolve_target(path: str, query: str, settings: Settings) -> ResolvedTarget:
    """
    Turn an inbound request path into the upstream URL it should reach.

    `service/<alias>/<rest>` is looked up in the internal service table;
    anything else is an external URL, defaulting to https when no scheme is
    given. The original query string is appended unchanged.
    """
    raw = path.lstrip("/")
    if not raw:
        raise MissingTarget()

    m = _ALIAS_RE.match(raw)
    if m:
        alias = m.group("alias")
        base = settings.service_base(alias)
        if base is None:
            raise UnknownService(alias)
        url = _with_query(f"{base}{m.group('rest') or ''}", query)
        return ResolvedTarget(url=url, alias=alias)

    raw = _COLLAPSED_SCHEME_RE.sub(r"\1://", raw)
    if not _SCHEME_RE.match(raw):
        raw = f"https://{raw}"
    url = _with_query(raw, query)

    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        raise MissingTarget() from None
    if not parsed.host:
        raise MissingTarget()
    return ResolvedTarget(url=url)
