"""Optional platform capabilities: microphone, recognition, haptics, speech output."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from speech_coach.models import RecognitionEvent

log = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], None]
RecognitionCallback = Callable[[RecognitionEvent], None]


class AudioStreamHandle(ABC):
    """An open microphone stream. Closing releases the device."""

    @abstractmethod
    def close(self):
        pass


class AudioInput(ABC):
    """Microphone capability."""

    sample_rate: int = 16000

    @abstractmethod
    async def open(self, on_chunk: ChunkCallback) -> AudioStreamHandle:
        """Acquire the microphone and start delivering PCM16 mono chunks.

        Args:
            on_chunk: Called on the event loop with each captured chunk

        Returns:
            Handle that must be closed to release the device

        Raises:
            MicrophoneError: Permission denied or device unavailable
        """
        pass


class RecognitionSource(ABC):
    """Continuous, interim-results speech recognition."""

    @abstractmethod
    async def start(self, locale: str, on_event: RecognitionCallback):
        """Start recognition for a fresh recording.

        Raises:
            RecognitionError: The engine could not be started
        """
        pass

    @abstractmethod
    def send_audio(self, chunk: bytes):
        """Feed captured audio (PCM16 mono) to the engine."""
        pass

    @abstractmethod
    def stop(self):
        pass


class Haptics(ABC):
    @abstractmethod
    def vibrate(self, pattern: Sequence[int]):
        """Vibrate for the given on/off pattern in milliseconds."""
        pass


class SpeechSynthesizer(ABC):
    @abstractmethod
    def cancel(self):
        """Cancel any utterance in flight."""
        pass

    @abstractmethod
    def speak(self, text: str, rate: float, locale: str):
        pass


@dataclass
class Capabilities:
    """Whatever the host platform offers; any member may be absent."""

    microphone: Optional[AudioInput] = None
    recognizer: Optional[RecognitionSource] = None
    haptics: Optional[Haptics] = None
    synthesizer: Optional[SpeechSynthesizer] = None

    @property
    def has_microphone(self) -> bool:
        return self.microphone is not None

    @property
    def has_recognition(self) -> bool:
        return self.recognizer is not None

    @property
    def has_haptics(self) -> bool:
        return self.haptics is not None

    @property
    def has_speech_output(self) -> bool:
        return self.synthesizer is not None

    def describe(self) -> dict:
        return {
            "microphone": self.has_microphone,
            "recognition": self.has_recognition,
            "haptics": self.has_haptics,
            "speech_output": self.has_speech_output,
        }


def create_capabilities(config=None) -> Capabilities:
    """Factory for the desktop capabilities available on this host.

    Args:
        config: Config class (defaults to speech_coach.config.Config)

    Returns:
        Capabilities with absent members left as None
    """
    if config is None:
        from speech_coach.config import Config
        config = Config

    caps = Capabilities()

    try:
        from speech_coach.audio_capture import SoundDeviceMicrophone
        caps.microphone = SoundDeviceMicrophone(
            device=config.mic_device(),
            sample_rate=config.SAMPLE_RATE,
            blocksize=config.BLOCKSIZE,
        )
    except (ImportError, OSError) as e:
        # PortAudio missing: recording attempts will report no microphone
        log.warning("[CAPS] microphone capture unavailable: %s", e)

    if config.DEEPGRAM_API_KEY:
        from speech_coach.recognizer import DeepgramRecognizer
        caps.recognizer = DeepgramRecognizer(
            api_key=config.DEEPGRAM_API_KEY,
            model=config.DEEPGRAM_MODEL,
            sample_rate=config.SAMPLE_RATE,
        )
    else:
        log.info("[CAPS] DEEPGRAM_API_KEY not set, recording will be audio-only")

    log.info("[CAPS] %s", caps.describe())
    return caps
