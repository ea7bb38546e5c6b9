"""Speech practice session controller: live transcript, local fluency score, challenge mode."""

from speech_coach.capabilities import Capabilities
from speech_coach.client import CoachClient
from speech_coach.session import SessionController, SessionSnapshot
from speech_coach.transcript import TranscriptAggregator, local_fluency_score

__all__ = [
    "Capabilities",
    "CoachClient",
    "SessionController",
    "SessionSnapshot",
    "TranscriptAggregator",
    "local_fluency_score",
]
