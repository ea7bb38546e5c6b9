"""Microphone capture through sounddevice (PortAudio)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

import sounddevice as sd

from speech_coach.audio_utils import to_mono_int16
from speech_coach.capabilities import AudioInput, AudioStreamHandle, ChunkCallback
from speech_coach.errors import MicrophoneError

log = logging.getLogger(__name__)


def list_input_devices():
    """
    Returns available INPUT audio devices for device selection.
    """
    devices = []
    try:
        for idx, d in enumerate(sd.query_devices()):
            if int(d.get("max_input_channels", 0)) <= 0:
                continue

            devices.append(
                {
                    "index": idx,
                    "name": d.get("name", f"Device {idx}"),
                    "max_input_channels": int(d.get("max_input_channels", 0)),
                    "default_samplerate": int(d.get("default_samplerate", 0) or 0),
                }
            )
    except Exception as e:
        return {
            "ok": False,
            "error": repr(e),
            "devices": [],
        }

    return {
        "ok": True,
        "devices": devices,
    }


class _InputStreamHandle(AudioStreamHandle):
    def __init__(self, stream: sd.InputStream):
        self._stream: Optional[sd.InputStream] = stream

    def close(self):
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class SoundDeviceMicrophone(AudioInput):
    """Opens a mono InputStream and hands PCM16 chunks to the event loop.

    The PortAudio callback runs on its own C thread; it only converts the
    block and schedules delivery with call_soon_threadsafe.
    """

    def __init__(
        self,
        device: Union[int, str, None] = None,
        sample_rate: int = 16000,
        blocksize: int = 1024,
    ) -> None:
        self.device = device
        self.sample_rate = int(sample_rate)
        self.blocksize = int(blocksize)

    async def open(self, on_chunk: ChunkCallback) -> AudioStreamHandle:
        loop = asyncio.get_running_loop()

        def audio_cb(indata, frames, time_info, status):
            if status:
                loop.call_soon_threadsafe(log.debug, "[MIC] sd_status: %s", status)
            loop.call_soon_threadsafe(on_chunk, to_mono_int16(indata))

        def _open() -> sd.InputStream:
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.blocksize,
                callback=audio_cb,
            )
            stream.start()
            return stream

        # Opening can block on OS permission prompts; keep the loop responsive
        try:
            stream = await loop.run_in_executor(None, _open)
        except (sd.PortAudioError, ValueError) as e:
            raise MicrophoneError(
                "Microphone access was denied or no microphone is available.",
                detail=repr(e),
            ) from e

        log.info("[MIC] capture started device=%s sr=%s bs=%s", self.device, self.sample_rate, self.blocksize)
        return _InputStreamHandle(stream)
