"""Session state machine composing recording, transcript, heartbeat and analysis."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

from speech_coach.capabilities import Capabilities
from speech_coach.client import CoachClient
from speech_coach.errors import CoachTransportError, MicrophoneError
from speech_coach.heartbeat import ChallengeHeartbeat
from speech_coach.models import (
    LANGUAGES,
    PRACTICE_MODES,
    READ_TEXT,
    SCENARIOS,
    AnalysisResult,
    AudioArtifact,
    ChallengeState,
    SessionState,
    UserProfile,
)
from speech_coach.presentation import Presentation, presentation_of
from speech_coach.recording import RecordingManager
from speech_coach.timers import BlinkTimer, Metronome
from speech_coach.transcript import TranscriptAggregator

log = logging.getLogger(__name__)

VIBRATE_PATTERN = (200, 100, 200)


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of everything the UI renders."""

    state: SessionState
    transcript: str
    local_score: Optional[int]
    duration_seconds: int
    recording_active: bool
    recognition_stalled: bool
    challenge: ChallengeState
    analysis: Optional[AnalysisResult]
    last_alert: Optional[str]
    user_id: Optional[str]
    mode: str
    language: str
    scenario: str
    metronome_active: bool = False
    metronome_bpm: int = 60
    beat: bool = False
    blink: bool = False
    has_audio: bool = False
    capabilities: dict = field(default_factory=dict)

    @property
    def presentation(self) -> Presentation:
        return presentation_of(self)

    @property
    def practice_prompt(self) -> str:
        if self.mode == "read_aloud":
            return READ_TEXT
        if self.mode == "scenario":
            return SCENARIOS[self.scenario]["prompt"]
        return ""

    def to_dict(self):
        return {
            "state": self.state.value,
            "transcript": self.transcript,
            "localScore": self.local_score,
            "durationSeconds": self.duration_seconds,
            "recordingActive": self.recording_active,
            "recognitionStalled": self.recognition_stalled,
            "challenge": {
                "active": self.challenge.active,
                "failed": self.challenge.failed,
                "failReason": self.challenge.fail_reason,
            },
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "lastAlert": self.last_alert,
            "userId": self.user_id,
            "mode": self.mode,
            "language": self.language,
            "scenario": self.scenario,
            "practicePrompt": self.practice_prompt,
            "metronome": {"active": self.metronome_active, "bpm": self.metronome_bpm, "beat": self.beat},
            "blink": self.blink,
            "hasAudio": self.has_audio,
            "capabilities": dict(self.capabilities),
            "presentation": self.presentation.to_dict(),
        }


class SessionContext:
    """Owns the live transcript, every timer handle and the challenge flags.

    Any state exit goes through halt(), so no timer outlives its session.
    """

    def __init__(
        self,
        aggregator: TranscriptAggregator,
        recording: RecordingManager,
        heartbeat: ChallengeHeartbeat,
        metronome: Metronome,
    ):
        self.aggregator = aggregator
        self.recording = recording
        self.heartbeat = heartbeat
        self.metronome = metronome
        self.challenge = ChallengeState()

    @property
    def transcript(self) -> str:
        return self.aggregator.transcript

    def halt(self) -> Optional[AudioArtifact]:
        self.heartbeat.stop()
        self.metronome.stop()
        return self.recording.stop()


class SessionController:
    """Top-level controller for one practice session.

    States::

        IDLE --start--> RECORDING --analyze--> ANALYZING --ok--> IDLE
                                                         --error--> RECORDING
        IDLE --start_challenge--> CHALLENGE_ACTIVE --judge fail--> CHALLENGE_FAILED
        CHALLENGE_FAILED --retry--> CHALLENGE_ACTIVE
        CHALLENGE_* --exit--> IDLE

    Listeners receive a fresh SessionSnapshot synchronously on every change.
    """

    def __init__(
        self,
        client: CoachClient,
        capabilities: Optional[Capabilities] = None,
        *,
        language: Optional[str] = None,
        heartbeat_interval: Optional[float] = None,
        recognition_timeout: Optional[float] = None,
        tts_rate: Optional[float] = None,
        metronome_bpm: Optional[int] = None,
    ):
        from speech_coach.config import Config

        self.client = client
        self.capabilities = capabilities or Capabilities()

        self.state = SessionState.IDLE
        self.user_id: Optional[str] = None
        self.user_profile: Optional[UserProfile] = None
        self.mode = "free_talk"
        self.scenario = "cafe"
        self.language = language or Config.DEFAULT_LANGUAGE
        if self.language not in LANGUAGES:
            raise ValueError(f"Unsupported language: '{self.language}'")
        self.tts_rate = tts_rate if tts_rate is not None else Config.TTS_RATE
        self.analysis: Optional[AnalysisResult] = None
        self.last_alert: Optional[str] = None

        aggregator = TranscriptAggregator()
        recording = RecordingManager(
            aggregator,
            self.capabilities.microphone,
            self.capabilities.recognizer,
            locale=lambda: LANGUAGES[self.language].stt_code,
            recognition_timeout=(
                recognition_timeout if recognition_timeout is not None else Config.RECOGNITION_TIMEOUT_SECONDS
            ),
        )
        heartbeat = ChallengeHeartbeat(
            client,
            get_transcript=lambda: aggregator.transcript,
            on_fail=self._on_judge_fail,
            interval=heartbeat_interval if heartbeat_interval is not None else Config.heartbeat_interval_seconds(),
        )
        metronome = Metronome(
            metronome_bpm if metronome_bpm is not None else Config.METRONOME_BPM,
            on_beat=lambda _beat: self._notify(),
        )
        self.context = SessionContext(aggregator, recording, heartbeat, metronome)
        self.blink = BlinkTimer(on_change=lambda _b: self._notify())

        aggregator.subscribe(lambda _text, _score: self._notify())
        recording.subscribe(self._notify)

        self._listeners: List[Callable[[SessionSnapshot], None]] = []
        self._alert_listeners: List[Callable[[str], None]] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[SessionSnapshot], None]):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[SessionSnapshot], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def on_alert(self, listener: Callable[[str], None]):
        self._alert_listeners.append(listener)

    def snapshot(self) -> SessionSnapshot:
        ctx = self.context
        return SessionSnapshot(
            state=self.state,
            transcript=ctx.aggregator.transcript,
            local_score=ctx.aggregator.score,
            duration_seconds=ctx.recording.duration_seconds,
            recording_active=ctx.recording.is_active,
            recognition_stalled=ctx.recording.recognition_stalled,
            challenge=replace(ctx.challenge),
            analysis=self.analysis,
            last_alert=self.last_alert,
            user_id=self.user_id,
            mode=self.mode,
            language=self.language,
            scenario=self.scenario,
            metronome_active=ctx.metronome.active,
            metronome_bpm=ctx.metronome.bpm,
            beat=ctx.metronome.beat,
            blink=self.blink.blinking,
            has_audio=ctx.recording.artifact is not None,
            capabilities=self.capabilities.describe(),
        )

    def _notify(self):
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                log.exception("[SESSION] listener failed")

    def _alert(self, message: str):
        self.last_alert = message
        log.info("[SESSION] alert: %s", message)
        for listener in list(self._alert_listeners):
            try:
                listener(message)
            except Exception:
                log.exception("[SESSION] alert listener failed")

    def _set_state(self, state: SessionState):
        if state is not self.state:
            log.info("[SESSION] %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    @property
    def transcript(self) -> str:
        return self.context.transcript

    @property
    def audio(self) -> Optional[AudioArtifact]:
        return self.context.recording.artifact

    # ------------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------------

    def set_user(self, user_id: Optional[str], profile: Optional[UserProfile] = None):
        if user_id != self.user_id and self.state in (SessionState.CHALLENGE_ACTIVE, SessionState.CHALLENGE_FAILED):
            self.exit_challenge()
        self.user_id = user_id
        self.user_profile = profile
        self._notify()

    def set_mode(self, mode: str):
        if mode not in PRACTICE_MODES:
            raise ValueError(f"Unsupported mode: '{mode}'. Supported modes are: {', '.join(PRACTICE_MODES)}")
        self.mode = mode
        self._notify()

    def set_scenario(self, scenario: str):
        if scenario not in SCENARIOS:
            raise ValueError(f"Unknown scenario: '{scenario}'")
        self.scenario = scenario
        self._notify()

    def set_language(self, language: str):
        """Takes effect on the next recording; the recognizer locale is read at start."""
        if language not in LANGUAGES:
            raise ValueError(f"Unsupported language: '{language}'")
        self.language = language
        self._notify()

    # ------------------------------------------------------------------
    # Practice recording
    # ------------------------------------------------------------------

    async def start_recording(self) -> bool:
        if self.state not in (SessionState.IDLE, SessionState.RECORDING):
            log.info("[SESSION] start ignored in state %s", self.state.value)
            return False

        self.analysis = None
        self.last_alert = None
        self._set_state(SessionState.RECORDING)
        try:
            await self.context.recording.start()
        except MicrophoneError as e:
            self.context.metronome.stop()
            self._alert(e.message)
            self._set_state(SessionState.IDLE)
            return False

        if self.state is not SessionState.RECORDING:
            # cleared or closed while the microphone was opening
            self.context.recording.stop()
            return False
        return True

    def stop_recording(self) -> Optional[AudioArtifact]:
        """Stop the take; transcript and duration stay available for analysis."""
        if self.state is not SessionState.RECORDING:
            return None
        self.context.metronome.stop()
        return self.context.recording.stop()

    async def toggle_listening(self) -> bool:
        """Returns True when recording afterwards."""
        if self.context.recording.is_active and self.state is SessionState.RECORDING:
            self.stop_recording()
            return False
        return await self.start_recording()

    def clear_transcript(self):
        if self.state in (SessionState.CHALLENGE_ACTIVE, SessionState.CHALLENGE_FAILED):
            return
        self.context.metronome.stop()
        self.context.recording.stop()
        self.context.aggregator.reset()
        self.analysis = None
        self._set_state(SessionState.IDLE)

    async def analyze(self) -> Optional[AnalysisResult]:
        """Stop the take and submit it to the coaching service.

        On a transport failure the session returns to RECORDING with the
        transcript and local score untouched.
        """
        if self.state is not SessionState.RECORDING:
            return None
        transcript = self.context.transcript
        if not transcript.strip() or not self.user_id:
            log.info("[SESSION] nothing to analyze (user=%s, transcript=%d chars)", self.user_id, len(transcript))
            return None

        self.context.metronome.stop()
        self.context.recording.stop()
        duration = self.context.recording.duration_seconds
        self.last_alert = None
        self._set_state(SessionState.ANALYZING)

        try:
            result = await self.client.analyze(
                transcript=transcript,
                mode=self.mode,
                user_id=self.user_id,
                duration=duration,
                language=self.language,
            )
        except CoachTransportError as e:
            log.warning("[SESSION] analysis failed: %s", e.detail or e.message)
            if self.state is SessionState.ANALYZING:
                self._alert(e.message)
                self._set_state(SessionState.RECORDING)
            return None

        if self.state is not SessionState.ANALYZING:
            return None
        self.analysis = result
        if result.user_profile is not None:
            self.user_profile = result.user_profile
        self._set_state(SessionState.IDLE)
        return result

    # ------------------------------------------------------------------
    # Challenge mode
    # ------------------------------------------------------------------

    async def start_challenge(self) -> bool:
        if not self.user_id:
            log.info("[SESSION] challenge needs a logged-in user")
            return False
        if self.state not in (SessionState.IDLE, SessionState.RECORDING):
            log.info("[SESSION] challenge start ignored in state %s", self.state.value)
            return False
        self.analysis = None
        return await self._begin_attempt()

    async def retry_challenge(self) -> bool:
        if self.state is not SessionState.CHALLENGE_FAILED:
            return False
        return await self._begin_attempt()

    async def _begin_attempt(self) -> bool:
        ctx = self.context
        ctx.halt()
        ctx.challenge = ChallengeState(active=True)
        ctx.recording.reset()
        self.last_alert = None
        self._set_state(SessionState.CHALLENGE_ACTIVE)

        try:
            await ctx.heartbeat.begin(self.user_id)
        except CoachTransportError as e:
            log.warning("[SESSION] challenge start failed: %s", e.detail or e.message)
            if self.state is SessionState.CHALLENGE_ACTIVE:
                self._abort_challenge(e.message)
            return False

        if self.state is not SessionState.CHALLENGE_ACTIVE:
            ctx.heartbeat.stop()
            return False

        try:
            await ctx.recording.start()
        except MicrophoneError as e:
            if self.state is SessionState.CHALLENGE_ACTIVE:
                self._abort_challenge(e.message)
            return False

        if self.state is not SessionState.CHALLENGE_ACTIVE:
            # judged or exited while the microphone was opening
            ctx.recording.stop()
            return False
        return True

    def _abort_challenge(self, message: str):
        self.context.halt()
        self.context.challenge = ChallengeState()
        self._alert(message)
        self._set_state(SessionState.IDLE)

    def _on_judge_fail(self, reason: str):
        if self.state is not SessionState.CHALLENGE_ACTIVE:
            return
        ctx = self.context
        ctx.halt()
        ctx.challenge.failed = True
        ctx.challenge.fail_reason = reason

        haptics = self.capabilities.haptics
        if haptics is not None:
            try:
                haptics.vibrate(VIBRATE_PATTERN)
            except Exception:
                log.exception("[SESSION] haptic alert failed")

        self._set_state(SessionState.CHALLENGE_FAILED)

    def exit_challenge(self):
        if self.state not in (SessionState.CHALLENGE_ACTIVE, SessionState.CHALLENGE_FAILED):
            return
        self.context.halt()
        self.context.challenge = ChallengeState()
        self._set_state(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def speak(self, text: Optional[str] = None) -> bool:
        """Read text aloud (the corrected sentence by default)."""
        if text is None and self.analysis is not None:
            text = self.analysis.session.fluent_sentence
        if not text:
            return False
        synth = self.capabilities.synthesizer
        if synth is None:
            log.info("[SESSION] no speech output available")
            return False
        synth.cancel()
        synth.speak(text, rate=self.tts_rate, locale=LANGUAGES[self.language].tts_code)
        return True

    def start_metronome(self, bpm: Optional[int] = None):
        self.context.metronome.start(bpm)
        self._notify()

    def stop_metronome(self):
        self.context.metronome.stop()
        self._notify()

    def open(self):
        """Start timers that run for the lifetime of the controller."""
        self.blink.start()

    def close(self):
        self.context.halt()
        self.context.challenge = ChallengeState()
        self.blink.stop()
        self.state = SessionState.IDLE
