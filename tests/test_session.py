"""
Session controller state machine with fake capabilities and a scripted coaching service.
Run: python -m pytest tests/test_session.py -v   or   python -m unittest tests.test_session
"""

import asyncio
import unittest

from speech_coach.capabilities import Capabilities
from speech_coach.errors import CoachTransportError
from speech_coach.models import AvatarState, SessionState, TickVerdict
from speech_coach.session import VIBRATE_PATTERN, SessionController
from tests.fakes import (
    FakeCoachClient,
    FakeHaptics,
    FakeMicrophone,
    FakeRecognizer,
    FakeSynthesizer,
    make_analysis,
)

TICK = 0.02


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.client = FakeCoachClient()
        self.mic = FakeMicrophone()
        self.rec = FakeRecognizer()
        self.haptics = FakeHaptics()
        self.synth = FakeSynthesizer()
        self.ctrl = self.make_controller(Capabilities(
            microphone=self.mic,
            recognizer=self.rec,
            haptics=self.haptics,
            synthesizer=self.synth,
        ))
        self.snapshots = []
        self.alerts = []
        self.ctrl.subscribe(self.snapshots.append)
        self.ctrl.on_alert(self.alerts.append)

    def make_controller(self, caps):
        return SessionController(
            self.client,
            caps,
            language="en",
            heartbeat_interval=TICK,
            recognition_timeout=0,
            tts_rate=0.9,
            metronome_bpm=120,
        )

    async def asyncTearDown(self):
        self.ctrl.close()


class TestRecording(ControllerTestCase):

    async def test_start_recording(self):
        self.assertTrue(await self.ctrl.start_recording())
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.RECORDING)
        self.assertTrue(snap.recording_active)
        self.assertEqual(snap.transcript, "")
        self.assertEqual(self.rec.locales, ["en-US"])

    async def test_transcript_flows_to_snapshot(self):
        await self.ctrl.start_recording()
        self.rec.emit("I I want", "a sandwich")
        snap = self.ctrl.snapshot()
        self.assertEqual(snap.transcript, "I I want a sandwich")
        self.assertEqual(snap.local_score, 90)
        self.assertEqual(self.snapshots[-1].transcript, "I I want a sandwich")

    async def test_new_take_starts_empty(self):
        await self.ctrl.start_recording()
        self.rec.emit("first take")
        self.ctrl.stop_recording()
        await self.ctrl.start_recording()
        self.assertEqual(self.ctrl.transcript, "")
        self.assertIsNone(self.ctrl.snapshot().local_score)

    async def test_stop_keeps_take_reviewable(self):
        await self.ctrl.start_recording()
        self.rec.emit("keep me")
        self.mic.push(b"\x01\x00" * 1600)
        artifact = self.ctrl.stop_recording()
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.RECORDING)
        self.assertFalse(snap.recording_active)
        self.assertEqual(snap.transcript, "keep me")
        self.assertIsNotNone(artifact)
        self.assertTrue(snap.has_audio)

    async def test_toggle_listening(self):
        self.assertTrue(await self.ctrl.toggle_listening())
        self.assertFalse(await self.ctrl.toggle_listening())
        self.assertFalse(self.ctrl.snapshot().recording_active)

    async def test_microphone_denied_alerts_and_idles(self):
        self.mic.fail = True
        self.assertFalse(await self.ctrl.start_recording())
        self.assertIs(self.ctrl.state, SessionState.IDLE)
        self.assertEqual(len(self.alerts), 1)
        self.assertIn("Microphone", self.alerts[0])
        self.assertEqual(self.ctrl.snapshot().last_alert, self.alerts[0])

    async def test_no_microphone_on_host(self):
        self.ctrl.close()
        self.ctrl = self.make_controller(Capabilities())
        self.assertFalse(await self.ctrl.start_recording())
        self.assertIs(self.ctrl.state, SessionState.IDLE)
        self.assertEqual(self.ctrl.last_alert, "No microphone is available on this device.")

    async def test_recognition_failure_records_audio_only(self):
        self.rec.fail = True
        self.assertTrue(await self.ctrl.start_recording())
        self.assertTrue(self.ctrl.snapshot().recording_active)

    async def test_language_sets_recognizer_locale(self):
        self.ctrl.set_language("te")
        await self.ctrl.start_recording()
        self.assertEqual(self.rec.locales, ["te-IN"])

    async def test_clear_transcript(self):
        await self.ctrl.start_recording()
        self.rec.emit("scrap this")
        self.ctrl.clear_transcript()
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.IDLE)
        self.assertEqual(snap.transcript, "")
        self.assertFalse(snap.recording_active)
        self.assertEqual(self.mic.open_handles, 0)

    async def test_stop_recording_stops_metronome(self):
        await self.ctrl.start_recording()
        self.ctrl.start_metronome()
        self.assertTrue(self.ctrl.snapshot().metronome_active)
        self.ctrl.stop_recording()
        snap = self.ctrl.snapshot()
        self.assertFalse(snap.metronome_active)
        self.assertFalse(snap.beat)


class TestSelections(ControllerTestCase):

    def test_invalid_selections_rejected(self):
        with self.assertRaises(ValueError):
            self.ctrl.set_language("fr")
        with self.assertRaises(ValueError):
            self.ctrl.set_mode("karaoke")
        with self.assertRaises(ValueError):
            self.ctrl.set_scenario("airport")

    def test_practice_prompt_follows_mode(self):
        self.assertEqual(self.ctrl.snapshot().practice_prompt, "")
        self.ctrl.set_mode("read_aloud")
        self.assertIn("chai", self.ctrl.snapshot().practice_prompt)
        self.ctrl.set_mode("scenario")
        self.ctrl.set_scenario("phone")
        self.assertIn("calling a friend", self.ctrl.snapshot().practice_prompt)

    def test_snapshot_dict_is_camel_case(self):
        data = self.ctrl.snapshot().to_dict()
        self.assertEqual(data["state"], "idle")
        self.assertIn("localScore", data)
        self.assertIn("durationSeconds", data)
        self.assertEqual(data["challenge"], {"active": False, "failed": False, "failReason": None})
        self.assertEqual(data["presentation"], {"state": "idle", "message": "Hi there!"})
        self.assertTrue(data["capabilities"]["microphone"])


class TestAnalyze(ControllerTestCase):

    async def _record(self, text="hello there"):
        self.ctrl.set_user("asha")
        await self.ctrl.start_recording()
        self.rec.emit(text)

    async def test_analyze_success(self):
        await self._record()
        result = await self.ctrl.analyze()
        self.assertIsNotNone(result)
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.IDLE)
        self.assertFalse(snap.recording_active)
        self.assertIs(snap.analysis, result)
        call = self.client.analyze_calls[0]
        self.assertEqual(call["transcript"], "hello there")
        self.assertEqual(call["user_id"], "asha")
        self.assertEqual(call["mode"], "free_talk")
        self.assertEqual(call["language"], "en")

    async def test_analyzing_is_observable(self):
        await self._record()
        await self.ctrl.analyze()
        states = [s.state for s in self.snapshots]
        self.assertIn(SessionState.ANALYZING, states)
        thinking = [s for s in self.snapshots if s.state is SessionState.ANALYZING]
        self.assertIs(thinking[0].presentation.state, AvatarState.THINKING)

    async def test_high_score_is_happy(self):
        self.client.analysis = make_analysis(score=80)
        await self._record()
        await self.ctrl.analyze()
        pres = self.ctrl.snapshot().presentation
        self.assertIs(pres.state, AvatarState.HAPPY)
        self.assertEqual(pres.message, "Great flow!")

    async def test_low_score_is_neutral(self):
        self.client.analysis = make_analysis(score=79)
        await self._record()
        await self.ctrl.analyze()
        pres = self.ctrl.snapshot().presentation
        self.assertIs(pres.state, AvatarState.NEUTRAL)
        self.assertEqual(pres.message, "Good effort!")

    async def test_failure_keeps_transcript_and_score(self):
        self.client.analyze_error = CoachTransportError("The coaching service did not respond in time.")
        await self._record("I I want tea")
        before = self.ctrl.snapshot()
        result = await self.ctrl.analyze()
        self.assertIsNone(result)
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.RECORDING)
        self.assertEqual(snap.transcript, before.transcript)
        self.assertEqual(snap.local_score, before.local_score)
        self.assertIsNone(snap.analysis)
        self.assertEqual(self.alerts, ["The coaching service did not respond in time."])

    async def test_retry_after_failure(self):
        self.client.analyze_error = CoachTransportError("down")
        await self._record()
        await self.ctrl.analyze()
        self.client.analyze_error = None
        self.assertIsNotNone(await self.ctrl.analyze())
        self.assertEqual(len(self.client.analyze_calls), 2)

    async def test_requires_user_and_transcript(self):
        await self.ctrl.start_recording()
        self.rec.emit("no user yet")
        self.assertIsNone(await self.ctrl.analyze())
        self.ctrl.set_user("asha")
        self.ctrl.clear_transcript()
        await self.ctrl.start_recording()
        self.assertIsNone(await self.ctrl.analyze())
        self.assertEqual(self.client.analyze_calls, [])

    async def test_ignored_when_idle(self):
        self.ctrl.set_user("asha")
        self.assertIsNone(await self.ctrl.analyze())
        self.assertIs(self.ctrl.state, SessionState.IDLE)

    async def test_speak_defaults_to_fluent_sentence(self):
        await self._record()
        await self.ctrl.analyze()
        self.assertTrue(self.ctrl.speak())
        self.assertEqual(self.synth.calls, [("cancel",), ("speak", "Hello there.", 0.9, "en-IN")])


class TestChallenge(ControllerTestCase):

    def setUp(self):
        super().setUp()
        self.ctrl.set_user("asha")

    async def test_start_challenge(self):
        self.assertTrue(await self.ctrl.start_challenge())
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.CHALLENGE_ACTIVE)
        self.assertTrue(snap.challenge.active)
        self.assertTrue(snap.recording_active)
        self.assertEqual(self.client.starts, ["asha"])
        self.assertEqual(snap.presentation.message, "Don't stop! Keep going!")
        self.assertIs(snap.presentation.state, AvatarState.LISTENING)

    async def test_requires_user(self):
        self.ctrl.set_user(None)
        self.assertFalse(await self.ctrl.start_challenge())
        self.assertIs(self.ctrl.state, SessionState.IDLE)

    async def test_ticks_report_transcript(self):
        await self.ctrl.start_challenge()
        self.rec.emit("keep talking")
        await asyncio.sleep(TICK * 2.5)
        self.assertIn(("asha", "keep talking"), self.client.ticks)

    async def test_judge_fail(self):
        self.client.verdicts = [TickVerdict(status="fail", reason="Too many fillers.")]
        await self.ctrl.start_challenge()
        await asyncio.sleep(TICK * 2.5)
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.CHALLENGE_FAILED)
        self.assertTrue(snap.challenge.failed)
        self.assertEqual(snap.challenge.fail_reason, "Too many fillers.")
        self.assertFalse(snap.recording_active)
        self.assertEqual(self.haptics.patterns, [VIBRATE_PATTERN])
        self.assertEqual(VIBRATE_PATTERN, (200, 100, 200))
        sent = len(self.client.ticks)
        await asyncio.sleep(TICK * 3)
        self.assertEqual(len(self.client.ticks), sent)

    async def test_judge_fail_without_haptics(self):
        self.ctrl.close()
        self.ctrl = self.make_controller(Capabilities(microphone=self.mic, recognizer=self.rec))
        self.ctrl.set_user("asha")
        self.client.verdicts = [TickVerdict(status="fail", reason="Paused.")]
        await self.ctrl.start_challenge()
        await asyncio.sleep(TICK * 2.5)
        self.assertIs(self.ctrl.state, SessionState.CHALLENGE_FAILED)

    async def test_transport_errors_do_not_fail(self):
        self.client.verdicts = [CoachTransportError("blip"), CoachTransportError("blip")]
        await self.ctrl.start_challenge()
        await asyncio.sleep(TICK * 3.5)
        self.assertIs(self.ctrl.state, SessionState.CHALLENGE_ACTIVE)
        self.assertEqual(self.alerts, [])

    async def test_retry_starts_clean(self):
        self.client.verdicts = [TickVerdict(status="fail", reason="Paused.")]
        await self.ctrl.start_challenge()
        self.rec.emit("first attempt words")
        await asyncio.sleep(TICK * 2.5)
        self.assertIs(self.ctrl.state, SessionState.CHALLENGE_FAILED)

        self.assertTrue(await self.ctrl.retry_challenge())
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.CHALLENGE_ACTIVE)
        self.assertEqual(snap.transcript, "")
        self.assertEqual(snap.duration_seconds, 0)
        self.assertFalse(snap.challenge.failed)
        self.assertIsNone(snap.challenge.fail_reason)
        self.assertEqual(self.client.starts, ["asha", "asha"])
        self.assertEqual(self.mic.open_handles, 1)

    async def test_retry_only_from_failed(self):
        self.assertFalse(await self.ctrl.retry_challenge())
        await self.ctrl.start_challenge()
        self.assertFalse(await self.ctrl.retry_challenge())

    async def test_exit_stops_everything(self):
        await self.ctrl.start_challenge()
        await asyncio.sleep(TICK * 1.5)
        self.ctrl.exit_challenge()
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.IDLE)
        self.assertFalse(snap.challenge.active)
        self.assertFalse(snap.recording_active)
        sent = len(self.client.ticks)
        await asyncio.sleep(TICK * 3)
        self.assertEqual(len(self.client.ticks), sent)

    async def test_start_failure_returns_to_idle(self):
        self.client.start_error = CoachTransportError("Could not reach the coaching service.")
        self.assertFalse(await self.ctrl.start_challenge())
        snap = self.ctrl.snapshot()
        self.assertIs(snap.state, SessionState.IDLE)
        self.assertFalse(snap.challenge.active)
        self.assertFalse(snap.recording_active)
        self.assertEqual(self.alerts, ["Could not reach the coaching service."])
        await asyncio.sleep(TICK * 2)
        self.assertEqual(self.client.ticks, [])

    async def test_microphone_failure_aborts_challenge(self):
        self.mic.fail = True
        self.assertFalse(await self.ctrl.start_challenge())
        self.assertIs(self.ctrl.state, SessionState.IDLE)
        await asyncio.sleep(TICK * 2)
        self.assertEqual(self.client.ticks, [])

    async def test_exit_while_starting(self):
        task = asyncio.create_task(self.ctrl.start_challenge())
        await asyncio.sleep(0)
        self.assertIs(self.ctrl.state, SessionState.CHALLENGE_ACTIVE)
        self.ctrl.exit_challenge()
        self.assertFalse(await task)
        self.assertIs(self.ctrl.state, SessionState.IDLE)
        self.assertFalse(self.ctrl.context.heartbeat.running)
        self.assertFalse(self.ctrl.snapshot().recording_active)

    async def test_clear_ignored_during_challenge(self):
        await self.ctrl.start_challenge()
        self.rec.emit("still here")
        self.ctrl.clear_transcript()
        self.assertIs(self.ctrl.state, SessionState.CHALLENGE_ACTIVE)
        self.assertEqual(self.ctrl.transcript, "still here")

    async def test_user_change_exits_challenge(self):
        await self.ctrl.start_challenge()
        self.ctrl.set_user("ravi")
        self.assertIs(self.ctrl.state, SessionState.IDLE)
        self.assertFalse(self.ctrl.context.heartbeat.running)

    async def test_start_from_recording(self):
        await self.ctrl.start_recording()
        self.rec.emit("practice words")
        self.assertTrue(await self.ctrl.start_challenge())
        self.assertEqual(self.ctrl.transcript, "")
        self.assertEqual(self.mic.open_handles, 1)


if __name__ == "__main__":
    unittest.main()
