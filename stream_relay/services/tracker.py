"""Registry of live streaming sessions, used for graceful shutdown."""
from __future__ import annotations

import asyncio
import logging
from typing import Set

from stream_relay.core.errors import ShuttingDown
from stream_relay.metrics.prometheus import ACTIVE_STREAMS
from stream_relay.models.schemas import TerminationReason
from stream_relay.services.stream_session import StreamSession

log = logging.getLogger("stream")


class SessionTracker:
    """
    Tracks streaming sessions between admission and termination.

    Once `drain()` starts no new session is admitted; sessions still running
    when the grace period ends are terminated with the normal DONE marker.
    """

    def __init__(self, poll_interval_s: float = 0.05):
        self._sessions: Set[StreamSession] = set()
        self._accepting = True
        self._poll = poll_interval_s

    @property
    def accepting(self) -> bool:
        return self._accepting

    def __len__(self) -> int:
        return len(self._sessions)

    def admit(self, session: StreamSession) -> None:
        """Register `session`; raises ShuttingDown once draining has begun."""
        if not self._accepting:
            raise ShuttingDown()
        self._sessions.add(session)
        ACTIVE_STREAMS.inc()
        session.add_finish_callback(self._discard)

    def _discard(self, session: StreamSession) -> None:
        if session in self._sessions:
            self._sessions.discard(session)
            ACTIVE_STREAMS.dec()

    async def drain(self, grace_s: float) -> None:
        """Stop admitting sessions, wait up to `grace_s`, then finish the rest."""
        self._accepting = False
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_s
        while self._sessions and loop.time() < deadline:
            await asyncio.sleep(self._poll)

        if self._sessions:
            log.warning("terminating %d stream(s) still open at shutdown", len(self._sessions))
        for session in list(self._sessions):
            session.finish(TerminationReason.SHUTDOWN)
        # let client generators flush the DONE marker
        await asyncio.sleep(0)
