"""Configuration management for the coach service URL, timers and audio settings."""

import os
from typing import Optional
from pathlib import Path

from dotenv import load_dotenv

# config.py is in speech_coach/, .env is in project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path, override=False)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


class Config:
    """Application configuration from environment variables."""

    # Remote coaching / judging service
    COACH_BASE_URL: str = os.getenv("COACH_BASE_URL", "http://localhost:4000")
    COACH_TIMEOUT_SECONDS: float = _float_env("COACH_TIMEOUT_SECONDS", 15.0)

    # Challenge heartbeat period
    HEARTBEAT_INTERVAL_MS: int = _int_env("HEARTBEAT_INTERVAL_MS", 500)

    # Flag recognition as stalled when no result arrives in this window (0 = off)
    RECOGNITION_TIMEOUT_SECONDS: float = _float_env("RECOGNITION_TIMEOUT_SECONDS", 8.0)

    # Deepgram live recognition (optional; audio-only capture without a key)
    DEEPGRAM_API_KEY: Optional[str] = os.getenv("DEEPGRAM_API_KEY")
    DEEPGRAM_MODEL: str = os.getenv("DEEPGRAM_MODEL", "nova-2")

    # Microphone capture
    SAMPLE_RATE: int = _int_env("SAMPLE_RATE", 16000)
    BLOCKSIZE: int = _int_env("BLOCKSIZE", 1024)
    MIC_DEVICE: Optional[str] = os.getenv("MIC_DEVICE") or None

    # Speech playback and UI defaults
    TTS_RATE: float = _float_env("TTS_RATE", 0.9)
    DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "en")
    METRONOME_BPM: int = _int_env("METRONOME_BPM", 60)

    # Local API server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = _int_env("PORT", 8010)

    @classmethod
    def heartbeat_interval_seconds(cls) -> float:
        return cls.HEARTBEAT_INTERVAL_MS / 1000.0

    @classmethod
    def mic_device(cls):
        """Device index when MIC_DEVICE is numeric, name otherwise, None for default."""
        dev = cls.MIC_DEVICE
        if dev is None:
            return None
        return int(dev) if dev.isdigit() else dev

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration and return list of missing or invalid settings."""
        problems = []

        from speech_coach.models import LANGUAGES

        if not cls.COACH_BASE_URL.startswith(("http://", "https://")):
            problems.append("COACH_BASE_URL (must be an http(s) URL)")
        if cls.HEARTBEAT_INTERVAL_MS <= 0:
            problems.append("HEARTBEAT_INTERVAL_MS (must be positive)")
        if cls.DEFAULT_LANGUAGE not in LANGUAGES:
            problems.append(
                f"DEFAULT_LANGUAGE (one of: {', '.join(LANGUAGES.keys())})"
            )
        if not 40 <= cls.METRONOME_BPM <= 120:
            problems.append("METRONOME_BPM (must be between 40 and 120)")

        # Deepgram is optional: without it recording runs audio-only
        return problems
