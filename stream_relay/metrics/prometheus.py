from fastapi import APIRouter, Response
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST

metrics_router = APIRouter()

# Standalone registry so repeated app construction (tests) never re-registers
registry = CollectorRegistry()
REQUESTS = Counter("relay_requests_total", "Inbound proxy requests", ["method"], registry=registry)
UPSTREAM_FAILURES = Counter("relay_upstream_failures_total", "Upstream connection/transport failures", registry=registry)
EMPTY_RESPONSES = Counter("relay_empty_responses_total", "Upstream responses with no usable content", ["kind"], registry=registry)
STREAM_TERMINATIONS = Counter("relay_stream_terminations_total", "Streaming sessions ended", ["reason"], registry=registry)
ACTIVE_STREAMS = Gauge("relay_active_streams", "Streaming sessions currently relaying", registry=registry)


@metrics_router.get("/metrics")
async def metrics():
    """Prometheus exposition endpoint for relay metrics."""
    data = generate_latest(registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
