"""Recording lifecycle: microphone ownership, audio buffering and the duration counter."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

from speech_coach.audio_utils import chunks_to_wav
from speech_coach.capabilities import AudioInput, AudioStreamHandle, RecognitionSource
from speech_coach.errors import MicrophoneError, RecognitionError
from speech_coach.models import AudioArtifact, RecognitionEvent, RecordingSession
from speech_coach.transcript import TranscriptAggregator

log = logging.getLogger(__name__)


class RecordingManager:
    """Owns the one RecordingSession and the microphone handle.

    Audio capture and recognition start and stop together but independently:
    without a recognizer (or when it fails to start) capture continues
    audio-only. All callbacks arrive on the event loop.

    Args:
        aggregator: Transcript writer fed by recognition events
        microphone: Microphone capability, None when the host has none
        recognizer: Recognition capability, None when absent
        locale: Callable returning the recognizer locale for the next start
        recognition_timeout: Seconds without any recognition event before
            ``recognition_stalled`` is raised (0 disables)
        tick_seconds: Wall-clock length of one duration increment
    """

    def __init__(
        self,
        aggregator: TranscriptAggregator,
        microphone: Optional[AudioInput],
        recognizer: Optional[RecognitionSource] = None,
        locale: Callable[[], str] = lambda: "en-US",
        recognition_timeout: float = 8.0,
        tick_seconds: float = 1.0,
    ):
        self.aggregator = aggregator
        self.microphone = microphone
        self.recognizer = recognizer
        self._locale = locale
        self.recognition_timeout = recognition_timeout
        self.tick_seconds = tick_seconds

        self.session = RecordingSession()
        self.artifact: Optional[AudioArtifact] = None
        self.recognition_active = False
        self.recognition_stalled = False

        self._handle: Optional[AudioStreamHandle] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._generation = 0
        # generation of a start() still waiting on the microphone
        self._opening: Optional[int] = None
        self._recognition_starting = False
        self._listeners: List[Callable[[], None]] = []

    @property
    def is_active(self) -> bool:
        return self.session.is_active

    @property
    def duration_seconds(self) -> int:
        return self.session.duration_seconds

    def subscribe(self, listener: Callable[[], None]):
        """Listener is called on duration ticks and lifecycle changes."""
        self._listeners.append(listener)

    def _changed(self):
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                log.exception("[RECORDING] listener failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Begin a fresh recording.

        Raises:
            MicrophoneError: Permission denied or no device; the attempt is over
        """
        if self.session.is_active:
            self.stop()

        self._generation += 1
        generation = self._generation

        # Reset before any device access so no event from the last take leaks in
        self.session = RecordingSession()
        self.artifact = None
        self.recognition_stalled = False
        self.aggregator.reset()

        if self.microphone is None:
            raise MicrophoneError("No microphone is available on this device.")

        self._opening = generation
        try:
            handle = await self.microphone.open(self._on_audio)
        except MicrophoneError as e:
            log.warning("[RECORDING] microphone failed: %s", e.detail or e.message)
            raise
        finally:
            if self._opening == generation:
                self._opening = None

        if generation != self._generation:
            # stop() or another start() ran while the device was opening
            handle.close()
            return

        self._handle = handle
        self.session.is_active = True
        self.session.started_at = time.time()
        self._timer_task = asyncio.create_task(self._count_seconds(generation))
        log.info("[RECORDING] started")
        self._changed()

        await self._start_recognition(generation)

    async def _start_recognition(self, generation: int):
        if self.recognizer is None:
            log.info("[RECORDING] no recognition engine, capturing audio only")
            return
        locale = self._locale()
        self._recognition_starting = True
        try:
            await self.recognizer.start(locale, self._on_recognition)
        except RecognitionError as e:
            if generation == self._generation:
                self._recognition_starting = False
            log.warning("[RECORDING] recognition failed to start, audio only: %s", e.detail or e.message)
            return

        if generation != self._generation:
            # stop() already stopped the recognizer, and a newer start may own it now
            return

        self._recognition_starting = False
        self.recognition_active = True
        if self.recognition_timeout > 0:
            self._watchdog_task = asyncio.create_task(self._watch_recognition(generation))

    def stop(self) -> Optional[AudioArtifact]:
        """Stop the active recording. A no-op when nothing is recording.

        Returns:
            The flushed audio artifact, or None
        """
        if not self.session.is_active:
            if self._opening is not None:
                # start() is still waiting on the microphone; make it back out
                self._generation += 1
                self._opening = None
                log.info("[RECORDING] stop requested while the microphone was opening")
            return None

        self._generation += 1
        self.session.is_active = False

        for task in (self._timer_task, self._watchdog_task):
            if task is not None and not task.done():
                task.cancel()
        self._timer_task = None
        self._watchdog_task = None

        if (self.recognition_active or self._recognition_starting) and self.recognizer is not None:
            self.recognizer.stop()
        self.recognition_active = False
        self._recognition_starting = False

        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.close()
            except Exception:
                log.exception("[RECORDING] failed to release microphone")

        sample_rate = getattr(self.microphone, "sample_rate", 16000)
        self.artifact = chunks_to_wav(self.session.audio_chunks, sample_rate)
        log.info(
            "[RECORDING] stopped after %ss, %d chunks",
            self.session.duration_seconds,
            len(self.session.audio_chunks),
        )
        self._changed()
        return self.artifact

    def reset(self):
        """Discard the last take: empty transcript, fresh session, no artifact."""
        self.stop()
        self.session = RecordingSession()
        self.artifact = None
        self.recognition_stalled = False
        self.aggregator.reset()
        self._changed()

    # ------------------------------------------------------------------
    # Event sources
    # ------------------------------------------------------------------

    def _on_audio(self, chunk: bytes):
        if not self.session.is_active:
            return
        self.session.audio_chunks.append(chunk)
        if self.recognition_active and self.recognizer is not None:
            self.recognizer.send_audio(chunk)

    def _on_recognition(self, event: RecognitionEvent):
        if not self.session.is_active:
            return
        if self._watchdog_task is not None:
            self._watchdog_task.cancel()
            self._watchdog_task = None
        if self.recognition_stalled:
            self.recognition_stalled = False
            self._changed()
        self.aggregator.handle_event(event)

    async def _count_seconds(self, generation: int):
        loop = asyncio.get_running_loop()
        origin = loop.time()
        n = 0
        while generation == self._generation:
            n += 1
            await asyncio.sleep(max(0.0, origin + n * self.tick_seconds - loop.time()))
            if generation != self._generation:
                return
            self.session.duration_seconds += 1
            self._changed()

    async def _watch_recognition(self, generation: int):
        await asyncio.sleep(self.recognition_timeout)
        if generation != self._generation:
            return
        # No result yet: likely an unsupported locale or a dead engine
        log.warning("[RECORDING] no recognition results after %ss", self.recognition_timeout)
        self.recognition_stalled = True
        self._watchdog_task = None
        self._changed()
