"""Run the relay with uvicorn: ``python -m stream_relay``."""
import uvicorn

from stream_relay.core.config import settings


def main() -> None:
    uvicorn.run("stream_relay.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
