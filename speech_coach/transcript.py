"""Running transcript and local fluency estimate built from recognition events."""

import logging
from typing import Callable, List, Optional

from speech_coach.models import RecognitionEvent

log = logging.getLogger(__name__)

MIN_LOCAL_SCORE = 30
MAX_LOCAL_SCORE = 100
REPEAT_PENALTY = 10

TranscriptListener = Callable[[str, Optional[int]], None]


def count_adjacent_repeats(text: str) -> int:
    """Count adjacent word pairs that match exactly, ignoring case."""
    words = [w.lower() for w in (text or "").split()]
    return sum(1 for prev, cur in zip(words, words[1:]) if prev == cur)


def local_fluency_score(text: str) -> int:
    """Cheap client-side estimate of fluency from disfluent repetition.

    This is a proxy, not a fluency metric: it only penalises immediately
    repeated words ("I I want want"), 10 points each, and never drops below
    30. The authoritative score comes from the remote coaching service.

    Args:
        text: Transcript text

    Returns:
        Integer score in [30, 100]
    """
    score = MAX_LOCAL_SCORE - REPEAT_PENALTY * count_adjacent_repeats(text)
    return max(MIN_LOCAL_SCORE, min(MAX_LOCAL_SCORE, score))


def join_top_hypotheses(event: RecognitionEvent) -> str:
    parts = []
    for result in event.results:
        top = result.top
        if top is None:
            continue
        parts.append(top.text)
    # split/join collapses doubled and trailing whitespace between spans
    return " ".join(" ".join(parts).split())


class TranscriptAggregator:
    """Single writer of the transcript; listeners are notified in the same call."""

    def __init__(self):
        self._transcript = ""
        self._score: Optional[int] = None
        self._listeners: List[TranscriptListener] = []

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def score(self) -> Optional[int]:
        return self._score

    def subscribe(self, listener: TranscriptListener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: TranscriptListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def handle_event(self, event: RecognitionEvent):
        self._transcript = join_top_hypotheses(event)
        self._score = local_fluency_score(self._transcript)
        self._publish()

    def reset(self):
        self._transcript = ""
        self._score = None
        self._publish()

    def _publish(self):
        for listener in list(self._listeners):
            try:
                listener(self._transcript, self._score)
            except Exception:
                log.exception("[TRANSCRIPT] listener failed")
