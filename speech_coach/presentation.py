"""Avatar presentation, derived from session state and never stored."""

from dataclasses import dataclass

from speech_coach.models import AvatarState, SessionState

HAPPY_SCORE = 80


@dataclass(frozen=True)
class Presentation:
    state: AvatarState
    message: str

    def to_dict(self):
        return {"state": self.state.value, "message": self.message}


def presentation_of(snapshot) -> Presentation:
    """Map a session snapshot to what the avatar shows.

    Challenge mode overrides everything while the attempt is still alive;
    otherwise listening, analyzing and the last analysis score decide.
    """
    challenge = snapshot.challenge
    if challenge.active and not challenge.failed:
        return Presentation(AvatarState.LISTENING, "Don't stop! Keep going!")
    if snapshot.recording_active:
        return Presentation(AvatarState.LISTENING, "Listening...")
    if snapshot.state is SessionState.ANALYZING:
        return Presentation(AvatarState.THINKING, "Analyzing...")
    if snapshot.analysis is not None:
        if snapshot.analysis.session.score >= HAPPY_SCORE:
            return Presentation(AvatarState.HAPPY, "Great flow!")
        return Presentation(AvatarState.NEUTRAL, "Good effort!")
    return Presentation(AvatarState.IDLE, "Hi there!")
