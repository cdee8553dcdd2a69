import logging

from stream_relay.core.logging import NOISY_LOGGERS, setup_logging


def test_client_loggers_default_to_warning(monkeypatch):
    monkeypatch.delenv("UPSTREAM_LOG_LEVEL", raising=False)
    setup_logging()
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_client_log_level_is_configurable(monkeypatch):
    monkeypatch.setenv("UPSTREAM_LOG_LEVEL", "debug")
    setup_logging()
    try:
        assert logging.getLogger("httpx").level == logging.DEBUG
    finally:
        logging.getLogger("httpx").setLevel(logging.WARNING)
