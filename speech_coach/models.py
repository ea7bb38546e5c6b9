"""Data models for the speech practice session controller."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


READ_TEXT = "I would like to order a cup of chai and a sandwich, please."

SCENARIOS: Dict[str, Dict[str, str]] = {
    "cafe": {"label": "Ordering at a Café", "prompt": "Imagine you are at a café ordering your favorite drink."},
    "intro": {"label": "Self Introduction", "prompt": "Imagine you just met someone new. Introduce yourself."},
    "phone": {"label": "Phone Call", "prompt": "Imagine you are calling a friend to invite them out."},
}

PRACTICE_MODES = ("free_talk", "read_aloud", "scenario")


@dataclass(frozen=True)
class Language:
    label: str
    stt_code: str  # locale handed to the recognizer
    tts_code: str  # locale handed to speech synthesis


LANGUAGES: Dict[str, Language] = {
    "en": Language("English", "en-US", "en-IN"),
    "hi": Language("Hindi", "hi-IN", "hi-IN"),
    "te": Language("Telugu", "te-IN", "te-IN"),
    "kn": Language("Kannada", "kn-IN", "kn-IN"),
}


class SessionState(Enum):
    """Session state machine states."""

    IDLE = "idle"
    RECORDING = "recording"
    ANALYZING = "analyzing"
    CHALLENGE_ACTIVE = "challenge_active"
    CHALLENGE_FAILED = "challenge_failed"


class AvatarState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    HAPPY = "happy"
    NEUTRAL = "neutral"


# --- Recognition events ---

@dataclass(frozen=True)
class Hypothesis:
    """One alternative transcription of a span of speech."""
    text: str
    confidence: float = 0.0


@dataclass(frozen=True)
class RecognitionResult:
    """A span of speech with its alternatives, best first."""
    alternatives: tuple = ()
    is_final: bool = False
    ts: float = field(default_factory=time.time)

    @property
    def top(self) -> Optional[Hypothesis]:
        return self.alternatives[0] if self.alternatives else None


@dataclass(frozen=True)
class RecognitionEvent:
    """All results of the current recording, in order, as of this event."""
    results: tuple = ()


# --- Recording ---

@dataclass(frozen=True)
class AudioArtifact:
    """Buffered capture flushed into one playable WAV file."""
    wav_bytes: bytes
    sample_rate: int
    duration_seconds: float
    media_type: str = "audio/wav"


@dataclass
class RecordingSession:
    is_active: bool = False
    started_at: Optional[float] = None
    duration_seconds: int = 0
    audio_chunks: List[bytes] = field(default_factory=list)


# --- Challenge ---

@dataclass
class ChallengeState:
    active: bool = False
    failed: bool = False
    fail_reason: Optional[str] = None


@dataclass(frozen=True)
class TickVerdict:
    status: Literal["ok", "fail"]
    reason: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "fail"


# --- Coaching service payloads ---

@dataclass(frozen=True)
class CoachSession:
    """A session record returned by the coaching service."""
    id: Any
    user_id: str
    mode: str
    transcript: str
    score: int
    fluent_sentence: str
    tips: str
    coach_tone: str
    created_at: str
    confidence_score: Optional[int] = None
    duration: Optional[int] = None

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "mode": self.mode,
            "transcript": self.transcript,
            "score": self.score,
            "confidenceScore": self.confidence_score,
            "fluentSentence": self.fluent_sentence,
            "tips": self.tips,
            "coachTone": self.coach_tone,
            "createdAt": self.created_at,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class UserStats:
    total_sessions: int = 0
    total_seconds: int = 0
    daily_minutes: int = 0


@dataclass(frozen=True)
class UserProfile:
    username: str
    xp: int = 0
    level: int = 1
    streak: int = 0
    badges: tuple = ()
    stats: UserStats = field(default_factory=UserStats)

    def to_dict(self):
        return {
            "username": self.username,
            "xp": self.xp,
            "level": self.level,
            "streak": self.streak,
            "badges": list(self.badges),
            "stats": {
                "totalSessions": self.stats.total_sessions,
                "totalSeconds": self.stats.total_seconds,
                "dailyMinutes": self.stats.daily_minutes,
            },
        }


@dataclass(frozen=True)
class AnalysisResult:
    session: CoachSession
    user_profile: Optional[UserProfile] = None

    def to_dict(self):
        return {
            "session": self.session.to_dict(),
            "userProfile": self.user_profile.to_dict() if self.user_profile else None,
        }
