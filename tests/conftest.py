import pytest

from stream_relay.core.config import Settings


@pytest.fixture
def anyio_backend():
    # StreamSession arms its watchdog with loop.call_later
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        service_table={"deepseek": "http://127.0.0.1:5001", "qwen": "http://127.0.0.1:3000/"},
        inactivity_timeout_s=0.2,
    )
