"""Streaming watchdog and sentinel transducer.

A `StreamSession` relays an upstream event stream to the client while
removing the completion sentinel and guarding against stalls:

* the first chunk is read before any response headers go out, so an empty
  or immediately-closed upstream can still be reported as a 503;
* every chunk is decoded with one incremental decoder, so multi-byte
  characters split between chunks survive;
* text that could be the beginning of a split sentinel is held back until
  the next chunk decides it;
* an inactivity timer is re-armed after each chunk; if it fires the stream
  ends exactly as if upstream had finished.

All terminal transitions go through `finish()`, which runs at most once and
always emits the `data: [DONE]` marker before closing the client stream.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import httpx

from stream_relay.core.errors import EmptyStream, StreamClosedImmediately, UpstreamFetchFailure
from stream_relay.models.schemas import StreamState, TerminationReason

log = logging.getLogger("stream")

DONE_MARKER = "data: [DONE]"
DONE_EVENT = f"{DONE_MARKER}\n\n"

SSE_HEADERS = {
    "content-type": "text/event-stream",
    "cache-control": "no-cache",
    "connection": "keep-alive",
}

FinishCallback = Callable[["StreamSession"], None]


def partial_suffix_len(text: str, token: str) -> int:
    """Length of the longest suffix of `text` that is a proper prefix of `token`."""
    for size in range(min(len(token) - 1, len(text)), 0, -1):
        if text.endswith(token[:size]):
            return size
    return 0


class StreamSession:
    """Per-response state machine: AWAITING_FIRST_CHUNK -> RELAYING -> TERMINATED."""

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        *,
        sentinel: str,
        inactivity_timeout_s: float,
        aclose: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.state = StreamState.AWAITING_FIRST_CHUNK
        self.reason: Optional[TerminationReason] = None
        self._chunks = chunks
        self._sentinel = sentinel
        self._timeout = inactivity_timeout_s
        self._aclose = aclose
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._held = ""
        self._first_text = ""
        self._timer: Optional[asyncio.TimerHandle] = None
        self._reader: Optional[asyncio.Task] = None
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._on_finish: List[FinishCallback] = []

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def add_finish_callback(self, cb: FinishCallback) -> None:
        self._on_finish.append(cb)

    async def prime(self) -> None:
        """
        Read the first upstream chunk before committing to a 200 response.

        Raises EmptyStream when upstream sends nothing, StreamClosedImmediately
        when the first chunk is a bare completion marker, and
        UpstreamFetchFailure when the read itself fails.
        """
        try:
            first = await self._chunks.__anext__()
        except StopAsyncIteration:
            first = b""
        except httpx.HTTPError as e:
            raise UpstreamFetchFailure(str(e) or type(e).__name__) from e
        if not first:
            log.info("empty stream")
            raise EmptyStream()

        text = self._decoder.decode(first)
        if DONE_MARKER in text and '"content"' not in text:
            log.info("stream closed immediately")
            raise StreamClosedImmediately()
        self._first_text = text

    async def events(self) -> AsyncIterator[bytes]:
        """Client-facing body: relayed text frames, ending with the DONE event."""
        self._start()
        try:
            while True:
                frame = await self._outbox.get()
                if frame is None:
                    return
                yield frame.encode("utf-8")
        finally:
            self.finish(TerminationReason.CLIENT_GONE)
            await self.aclose()

    async def aclose(self) -> None:
        """Wait for the reader to stop, then release the upstream response."""
        if self._reader is not None and not self._reader.done():
            await asyncio.wait({self._reader})
        if self._aclose is not None:
            close, self._aclose = self._aclose, None
            try:
                await close()
            except Exception as e:
                log.debug("error closing upstream: %r", e)

    def finish(self, reason: TerminationReason) -> bool:
        """
        Terminate the session. Only the first call has any effect; it returns
        True when this call performed the transition.
        """
        if self.state is StreamState.TERMINATED:
            return False
        self.state = StreamState.TERMINATED
        self.reason = reason
        self._cancel_timer()

        if self._held:
            self._outbox.put_nowait(self._held)
            self._held = ""
        self._outbox.put_nowait(DONE_EVENT)
        self._outbox.put_nowait(None)

        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()

        log.info("stream terminated (%s)", reason.value)
        for cb in self._on_finish:
            cb(self)
        return True

    def _start(self) -> None:
        if self.state is not StreamState.AWAITING_FIRST_CHUNK:
            return
        self.state = StreamState.RELAYING
        if self._relay(self._first_text):
            return
        self._reset_timer()
        self._reader = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            async for chunk in self._chunks:
                if self.state is StreamState.TERMINATED:
                    return
                if self._relay(self._decoder.decode(chunk)):
                    return
                self._reset_timer()
        except Exception as e:
            log.warning("upstream read error: %r", e)
            self.finish(TerminationReason.UPSTREAM_ERROR)
            return

        if self.state is StreamState.TERMINATED:
            return
        if self._relay(self._decoder.decode(b"", final=True)):
            return
        self.finish(TerminationReason.END_OF_STREAM)

    def _relay(self, text: str) -> bool:
        """Forward decoded text; returns True when the sentinel ended the stream."""
        text = self._held + text
        self._held = ""
        if self._sentinel in text:
            log.info("sentinel found in chunk")
            residual = text.replace(self._sentinel, "")
            if residual:
                self._outbox.put_nowait(residual)
            self.finish(TerminationReason.SENTINEL)
            return True

        keep = partial_suffix_len(text, self._sentinel)
        if keep:
            self._held = text[-keep:]
            text = text[:-keep]
        if text:
            self._outbox.put_nowait(text)
        return False

    def _reset_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._timeout, self._on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        log.warning("no upstream data for %.1fs, closing stream", self._timeout)
        self.finish(TerminationReason.TIMEOUT)
