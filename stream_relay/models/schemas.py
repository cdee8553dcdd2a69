"""Pydantic models and enums shared across the relay."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict


class ProxyRequest(BaseModel):
    """Inbound request as seen by the relay. Header keys are lower-cased."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    query: str = ""
    headers: Dict[str, str] = {}
    body: Optional[bytes] = None


class ResolvedTarget(BaseModel):
    """Absolute upstream URL a request is forwarded to."""

    model_config = ConfigDict(frozen=True)

    url: str
    alias: Optional[str] = None

    @property
    def host(self) -> str:
        """Host header value for the target (host, plus port when explicit)."""
        return httpx.URL(self.url).netloc.decode("ascii")


class StreamState(str, Enum):
    """Lifecycle of a streaming session."""
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    RELAYING = "relaying"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    """Why a streaming session ended."""
    SENTINEL = "sentinel"
    END_OF_STREAM = "end_of_stream"
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"
    CLIENT_GONE = "client_gone"
    SHUTDOWN = "shutdown"
