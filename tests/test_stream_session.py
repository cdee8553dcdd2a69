import asyncio

import httpx
import pytest

from stream_relay.core.errors import EmptyStream, StreamClosedImmediately, UpstreamFetchFailure
from stream_relay.models.schemas import StreamState, TerminationReason
from stream_relay.services.stream_session import DONE_EVENT, StreamSession, partial_suffix_len

# --- helpers ---------------------------------------------------------------


class _Upstream:
    """Scripted upstream body: bytes are yielded, floats are pauses, exceptions are raised."""

    def __init__(self, *script):
        self.script = script
        self.read = []
        self.cancelled = False
        self.closed = False

    async def chunks(self):
        try:
            for step in self.script:
                if isinstance(step, float):
                    await asyncio.sleep(step)
                elif isinstance(step, Exception):
                    raise step
                else:
                    self.read.append(step)
                    yield step
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def aclose(self):
        self.closed = True


def _session(upstream: _Upstream, timeout: float = 0.2) -> StreamSession:
    return StreamSession(
        upstream.chunks(), sentinel="FINISHED", inactivity_timeout_s=timeout, aclose=upstream.aclose
    )


async def _run(upstream: _Upstream, timeout: float = 0.2) -> tuple[StreamSession, str]:
    session = _session(upstream, timeout)
    await session.prime()
    body = b"".join([frame async for frame in session.events()])
    return session, body.decode("utf-8")


# --- tests ----------------------------------------------------------------


@pytest.mark.anyio
async def test_natural_end_appends_done_marker():
    up = _Upstream(b"data: foo")
    session, body = await _run(up)
    assert body == "data: foo" + DONE_EVENT
    assert session.reason is TerminationReason.END_OF_STREAM
    assert session.state is StreamState.TERMINATED
    assert up.closed


@pytest.mark.anyio
async def test_sentinel_is_stripped_and_stream_stops():
    up = _Upstream(b"data: a\n\n", b"bar FINISHEDxyz", b"never read")
    session, body = await _run(up)
    assert body == "data: a\n\nbar xyz" + DONE_EVENT
    assert session.reason is TerminationReason.SENTINEL
    assert b"never read" not in up.read


@pytest.mark.anyio
async def test_every_occurrence_in_chunk_is_removed():
    _, body = await _run(_Upstream(b"xFINISHEDyFINISHEDz"))
    assert body == "xyz" + DONE_EVENT


@pytest.mark.anyio
async def test_sentinel_in_first_chunk_ends_before_reading_more():
    up = _Upstream(b"FINISHED", b"more")
    session, body = await _run(up)
    assert body == DONE_EVENT
    assert session.reason is TerminationReason.SENTINEL
    assert up.read == [b"FINISHED"]


@pytest.mark.anyio
async def test_sentinel_split_across_chunks():
    session, body = await _run(_Upstream(b"data: FINI", b"SHED\n\n", b"tail"))
    assert body == "data: \n\n" + DONE_EVENT
    assert session.reason is TerminationReason.SENTINEL


@pytest.mark.anyio
async def test_held_back_prefix_is_released_when_not_sentinel():
    _, body = await _run(_Upstream(b"data: FIN", b"AL\n\n"))
    assert body == "data: FINAL\n\n" + DONE_EVENT


@pytest.mark.anyio
async def test_held_back_prefix_is_flushed_at_end():
    _, body = await _run(_Upstream(b"data: FINI"))
    assert body == "data: FINI" + DONE_EVENT


@pytest.mark.anyio
async def test_multibyte_character_split_across_chunks():
    _, body = await _run(_Upstream(b"data: caf\xc3", b"\xa9\n\n"))
    assert body == "data: café\n\n" + DONE_EVENT


@pytest.mark.anyio
async def test_stall_is_terminated_by_watchdog():
    up = _Upstream(b"data: a\n\n", 10.0, b"late")
    session, body = await _run(up, timeout=0.1)
    assert body == "data: a\n\n" + DONE_EVENT
    assert session.reason is TerminationReason.TIMEOUT
    assert b"late" not in up.read
    assert up.cancelled
    assert up.closed


@pytest.mark.anyio
async def test_watchdog_is_rearmed_on_every_chunk():
    up = _Upstream(b"a", 0.08, b"b", 0.08, b"c", 0.08, b"d")
    session, body = await _run(up, timeout=0.15)
    assert body == "abcd" + DONE_EVENT
    assert session.reason is TerminationReason.END_OF_STREAM


@pytest.mark.anyio
async def test_no_timer_side_effect_after_termination():
    session, body = await _run(_Upstream(b"data: xFINISHED"), timeout=0.05)
    assert not session.timer_armed
    await asyncio.sleep(0.15)
    assert session.reason is TerminationReason.SENTINEL
    assert session.finish(TerminationReason.TIMEOUT) is False
    assert body.count(DONE_EVENT) == 1


@pytest.mark.anyio
async def test_read_error_closes_cleanly():
    up = _Upstream(b"data: a\n\n", httpx.ReadError("connection reset"))
    session, body = await _run(up)
    assert body == "data: a\n\n" + DONE_EVENT
    assert session.reason is TerminationReason.UPSTREAM_ERROR


@pytest.mark.anyio
async def test_client_going_away_finishes_session():
    up = _Upstream(b"data: a\n\n", 10.0)
    session = _session(up, timeout=5.0)
    await session.prime()
    events = session.events()
    assert await events.__anext__() == b"data: a\n\n"
    await events.aclose()
    assert session.reason is TerminationReason.CLIENT_GONE
    assert not session.timer_armed
    assert up.closed


@pytest.mark.anyio
async def test_empty_upstream_is_empty_stream():
    with pytest.raises(EmptyStream):
        await _session(_Upstream()).prime()


@pytest.mark.anyio
async def test_bare_done_first_chunk_is_closed_immediately():
    with pytest.raises(StreamClosedImmediately):
        await _session(_Upstream(b"data: [DONE]\n\n")).prime()


@pytest.mark.anyio
async def test_done_with_content_in_first_chunk_is_relayed():
    first = b'data: {"choices":[{"delta":{"content":"hi"}}]}\n\ndata: [DONE]\n\n'
    _, body = await _run(_Upstream(first))
    assert body == first.decode() + DONE_EVENT


@pytest.mark.anyio
async def test_first_read_failure_is_fetch_failure():
    with pytest.raises(UpstreamFetchFailure):
        await _session(_Upstream(httpx.ReadError("boom"))).prime()


def test_partial_suffix_len():
    assert partial_suffix_len("data: FIN", "FINISHED") == 3
    assert partial_suffix_len("data: F", "FINISHED") == 1
    assert partial_suffix_len("data: x", "FINISHED") == 0
    assert partial_suffix_len("FINISHED", "FINISHED") == 0
