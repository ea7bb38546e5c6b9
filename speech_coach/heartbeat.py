"""Challenge heartbeat: periodic transcript reports to the external judge."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from speech_coach.client import CoachClient
from speech_coach.errors import CoachTransportError

log = logging.getLogger(__name__)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ChallengeHeartbeat:
    """Reports the live transcript to the judge on a fixed period.

    Ticks fire at ``origin + n * interval``. At most one tick request is in
    flight; a tick that comes due while the previous one is unresolved is
    skipped, never queued. A transport failure on a tick is logged and
    counts as "continue"; only an explicit fail verdict ends the challenge.

    Args:
        client: Coaching service client
        get_transcript: Returns the transcript at tick time
        on_fail: Called with the judge's reason after ticking has stopped
        interval: Seconds between ticks
    """

    def __init__(
        self,
        client: CoachClient,
        get_transcript: Callable[[], str],
        on_fail: Callable[[str], None],
        interval: float = 0.5,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.client = client
        self.get_transcript = get_transcript
        self.on_fail = on_fail
        self.interval = interval

        self.user_id: Optional[str] = None
        self.ticks_sent = 0
        self.ticks_skipped = 0
        self.ticks_failed = 0

        self._generation = 0
        self._scheduler: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    async def begin(self, user_id: str):
        """Send the begin signal, then start ticking.

        Raises:
            CoachTransportError: The judge could not be told the challenge began
        """
        self.stop()
        self._generation += 1
        generation = self._generation
        self.user_id = user_id
        self.ticks_sent = self.ticks_skipped = self.ticks_failed = 0

        await self.client.start_challenge(user_id)

        if generation != self._generation:
            return
        self._scheduler = asyncio.create_task(self._schedule(generation))
        log.info("[HEARTBEAT] started user=%s interval=%.3fs", user_id, self.interval)

    def stop(self):
        """Halt ticking now. Verdicts that arrive later are ignored."""
        self._generation += 1
        current = _current_task()

        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and not scheduler.done() and scheduler is not current:
            scheduler.cancel()

        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done() and inflight is not current:
            inflight.cancel()

    async def _schedule(self, generation: int):
        loop = asyncio.get_running_loop()
        origin = loop.time()
        n = 0
        while generation == self._generation:
            n += 1
            await asyncio.sleep(max(0.0, origin + n * self.interval - loop.time()))
            if generation != self._generation:
                return
            if self._inflight is not None and not self._inflight.done():
                self.ticks_skipped += 1
                log.debug("[HEARTBEAT] previous tick unresolved, skipping tick %d", n)
                continue
            self._inflight = asyncio.create_task(self._tick(generation))

    async def _tick(self, generation: int):
        transcript = self.get_transcript()
        self.ticks_sent += 1
        try:
            verdict = await self.client.challenge_tick(self.user_id, transcript)
        except CoachTransportError as e:
            # A network hiccup must not fail the challenge; the next tick supersedes this one
            self.ticks_failed += 1
            log.warning("[HEARTBEAT] tick failed, continuing: %s", e.detail or e.message)
            return

        if generation != self._generation:
            return
        if verdict.failed:
            log.info("[HEARTBEAT] judge failed the challenge: %s", verdict.reason)
            self.stop()
            self.on_fail(verdict.reason or "Challenge failed")
