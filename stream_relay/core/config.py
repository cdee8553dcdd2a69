"""Configuration for the stream relay service.

Provides strongly-typed, immutable settings using Pydantic and a loader from
environment variables with defaults suitable for local development.
"""

from __future__ import annotations

import json
import os
from typing import Dict, Literal

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, ValidationError

# Co-located backends reachable as /service/<alias>/...
DEFAULT_SERVICE_TABLE: Dict[str, str] = {
    "deepseek": "http://127.0.0.1:5001",
    "qwen": "http://127.0.0.1:3000",
    "qwenchat": "http://127.0.0.1:8000",
    "tts": "http://127.0.0.1:5050",
}

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class Settings(BaseModel):
    """Pydantic settings for the relay. Frozen once loaded."""

    model_config = ConfigDict(frozen=True)

    service_table: Dict[str, AnyHttpUrl] = Field(default_factory=lambda: dict(DEFAULT_SERVICE_TABLE))
    sentinel: str = Field("FINISHED", min_length=1)
    inactivity_timeout_s: float = Field(8.0, gt=0)
    request_timeout_s: float = Field(30.0, gt=0)
    strip_accept_encoding: bool = True
    scrub_passthrough_length: bool = True
    fallback_sentinel_policy: Literal["strip", "truncate"] = "strip"
    verify_tls: bool = True
    default_user_agent: str = DEFAULT_USER_AGENT
    default_accept: str = "*/*"
    shutdown_grace_s: float = Field(5.0, ge=0)
    host: str = "0.0.0.0"
    port: int = 3002

    def service_base(self, alias: str) -> str | None:
        """Return the base URL for `alias` without a trailing slash, or None."""
        base = self.service_table.get(alias)
        if base is None:
            return None
        return str(base).rstrip("/")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def load_settings() -> Settings:
    """Load settings from environment variables and return a Settings object."""
    try:
        table = json.loads(os.getenv("SERVICE_TABLE", "null")) or DEFAULT_SERVICE_TABLE
        return Settings(
            service_table=table,
            sentinel=os.getenv("SENTINEL", "FINISHED"),
            inactivity_timeout_s=float(os.getenv("INACTIVITY_TIMEOUT_S", "8.0")),
            request_timeout_s=float(os.getenv("REQUEST_TIMEOUT_S", "30.0")),
            strip_accept_encoding=_env_bool("STRIP_ACCEPT_ENCODING", True),
            scrub_passthrough_length=_env_bool("SCRUB_PASSTHROUGH_LENGTH", True),
            fallback_sentinel_policy=os.getenv("FALLBACK_SENTINEL_POLICY", "strip"),
            verify_tls=_env_bool("VERIFY_TLS", True),
            default_user_agent=os.getenv("DEFAULT_USER_AGENT", DEFAULT_USER_AGENT),
            default_accept=os.getenv("DEFAULT_ACCEPT", "*/*"),
            shutdown_grace_s=float(os.getenv("SHUTDOWN_GRACE_S", "5.0")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3002")),
        )
    except (ValidationError, ValueError) as e:
        raise RuntimeError(f"Invalid configuration: {e}") from e


settings = load_settings()
