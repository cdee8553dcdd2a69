"""Logging configuration utilities for the stream relay service."""
import logging
import os

# Client libraries that log every upstream request at INFO; the relay logs
# the forward itself, so these only speak up on warnings.
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging() -> None:
    """Configure root logging from LOG_LEVEL and quiet the HTTP client loggers.

    UPSTREAM_LOG_LEVEL overrides the level of the httpx/httpcore loggers
    (default WARNING) when per-request client logs are wanted.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    upstream_level = os.getenv("UPSTREAM_LOG_LEVEL", "WARNING").upper()
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(upstream_level)
