"""Exceptions raised at the device, recognition and transport boundaries."""


class SpeechCoachError(Exception):
    """Base class for errors surfaced by the session controller."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.message = message
        # Raw protocol/device detail, logged but never shown to the user
        self.detail = detail


class MicrophoneError(SpeechCoachError):
    """Microphone permission was denied or the device could not be opened."""


class RecognitionError(SpeechCoachError):
    """The speech recognition source failed to start."""


class CoachTransportError(SpeechCoachError):
    """Network failure or non-2xx response from the coaching service."""

    def __init__(self, message: str, detail: str = "", status_code=None):
        super().__init__(message, detail)
        self.status_code = status_code
