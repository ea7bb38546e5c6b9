"""Periodic UI timers: the practice metronome and the avatar blink."""

import asyncio
import logging
from typing import Callable, Optional

log = logging.getLogger(__name__)

BLINK_PERIOD_SECONDS = 4.0
BLINK_DURATION_SECONDS = 0.2

MIN_BPM = 40
MAX_BPM = 120


def check_bpm(bpm: int) -> int:
    if not MIN_BPM <= bpm <= MAX_BPM:
        raise ValueError(f"bpm must be between {MIN_BPM} and {MAX_BPM}, got {bpm}")
    return bpm


class Metronome:
    """Toggles a beat flag every 60000 / bpm milliseconds while running."""

    def __init__(self, bpm: int = 60, on_beat: Optional[Callable[[bool], None]] = None):
        self.bpm = check_bpm(bpm)
        self.beat = False
        self._on_beat = on_beat
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval_seconds(self) -> float:
        return 60.0 / self.bpm

    def start(self, bpm: Optional[int] = None):
        if bpm is not None:
            self.bpm = check_bpm(bpm)
        self.stop()
        self._task = asyncio.create_task(self._run())

    def stop(self):
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self.beat = False

    async def _run(self):
        loop = asyncio.get_running_loop()
        origin = loop.time()
        n = 0
        while True:
            n += 1
            await asyncio.sleep(max(0.0, origin + n * self.interval_seconds - loop.time()))
            self.beat = not self.beat
            if self._on_beat is not None:
                self._on_beat(self.beat)


class BlinkTimer:
    """
    Closes the avatar's eyes for 200 ms every 4 s. Runs regardless of
    session state.
    """

    def __init__(
        self,
        on_change: Optional[Callable[[bool], None]] = None,
        period: float = BLINK_PERIOD_SECONDS,
        duration: float = BLINK_DURATION_SECONDS,
    ):
        self.period = period
        self.duration = duration
        self.blinking = False
        self._on_change = on_change
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self):
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self.blinking = False

    def _set(self, value: bool):
        self.blinking = value
        if self._on_change is not None:
            try:
                self._on_change(value)
            except Exception:
                log.exception("[BLINK] listener failed")

    async def _run(self):
        while True:
            await asyncio.sleep(self.period)
            self._set(True)
            await asyncio.sleep(self.duration)
            self._set(False)
