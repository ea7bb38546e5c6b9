"""
Coaching service client over an in-process httpx transport.
Run: python -m pytest tests/test_client.py -v   or   python -m unittest tests.test_client
"""

import json
import unittest

import httpx

from speech_coach.client import CoachClient
from speech_coach.errors import CoachTransportError

SESSION = {
    "id": 7,
    "userId": "asha",
    "mode": "free_talk",
    "transcript": "I I want a sandwich",
    "score": 82,
    "confidenceScore": 70,
    "fluentSentence": "I want a sandwich.",
    "tips": ["Avoid repeating words.", "Pause instead of saying um."],
    "coachTone": "encouraging",
    "createdAt": "2026-01-01T10:00:00Z",
    "duration": 12,
}


class Recorder:
    """Routes requests to canned responses and remembers what was sent."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(handler, Exception):
            raise handler
        return handler(request) if callable(handler) else handler


def make_client(routes):
    recorder = Recorder(routes)
    client = CoachClient("http://coach.test/", timeout=2, transport=httpx.MockTransport(recorder))
    return client, recorder


class TestAnalyze(unittest.IsolatedAsyncioTestCase):

    async def test_posts_take_and_parses_result(self):
        client, rec = make_client({
            ("POST", "/coach"): httpx.Response(200, json={
                "session": SESSION,
                "userProfile": {"username": "asha", "xp": 120, "level": 2, "streak": 3,
                                "badges": ["First Steps"], "stats": {"totalSessions": 4}},
            }),
        })
        result = await client.analyze(transcript="I I want a sandwich", mode="free_talk",
                                      user_id="asha", duration=12, language="en")
        await client.aclose()

        self.assertEqual(rec.requests[0][2], {
            "transcript": "I I want a sandwich",
            "mode": "free_talk",
            "userId": "asha",
            "duration": 12,
            "language": "en",
        })
        self.assertEqual(result.session.score, 82)
        self.assertEqual(result.session.fluent_sentence, "I want a sandwich.")
        self.assertEqual(result.session.tips, "Avoid repeating words.\nPause instead of saying um.")
        self.assertEqual(result.user_profile.level, 2)
        self.assertEqual(result.user_profile.stats.total_sessions, 4)

    async def test_server_error_is_transport_error(self):
        client, _ = make_client({("POST", "/coach"): httpx.Response(500, text="boom")})
        with self.assertRaises(CoachTransportError) as cm:
            await client.analyze(transcript="x", mode="free_talk", user_id="a", duration=1, language="en")
        await client.aclose()
        self.assertEqual(cm.exception.status_code, 500)
        self.assertIn("HTTP 500", cm.exception.detail)

    async def test_invalid_json(self):
        client, _ = make_client({("POST", "/coach"): httpx.Response(200, text="<html>")})
        with self.assertRaises(CoachTransportError):
            await client.analyze(transcript="x", mode="free_talk", user_id="a", duration=1, language="en")
        await client.aclose()

    async def test_missing_session(self):
        client, _ = make_client({("POST", "/coach"): httpx.Response(200, json={"ok": True})})
        with self.assertRaises(CoachTransportError) as cm:
            await client.analyze(transcript="x", mode="free_talk", user_id="a", duration=1, language="en")
        await client.aclose()
        self.assertEqual(cm.exception.message, "The coaching service sent an unexpected response.")

    async def test_connection_failure(self):
        client, _ = make_client({("POST", "/coach"): httpx.ConnectError("refused")})
        with self.assertRaises(CoachTransportError) as cm:
            await client.analyze(transcript="x", mode="free_talk", user_id="a", duration=1, language="en")
        await client.aclose()
        self.assertIn("Could not reach", cm.exception.message)

    async def test_timeout(self):
        client, _ = make_client({("POST", "/coach"): httpx.ReadTimeout("slow")})
        with self.assertRaises(CoachTransportError) as cm:
            await client.analyze(transcript="x", mode="free_talk", user_id="a", duration=1, language="en")
        await client.aclose()
        self.assertIn("did not respond in time", cm.exception.message)


class TestChallenge(unittest.IsolatedAsyncioTestCase):

    async def test_start_sends_user(self):
        client, rec = make_client({("POST", "/challenge/start"): httpx.Response(200, text="ok")})
        await client.start_challenge("asha")
        await client.aclose()
        self.assertEqual(rec.requests, [("POST", "/challenge/start", {"userId": "asha"})])

    async def test_start_rejected(self):
        client, _ = make_client({("POST", "/challenge/start"): httpx.Response(503)})
        with self.assertRaises(CoachTransportError):
            await client.start_challenge("asha")
        await client.aclose()

    async def test_tick_fail_verdict(self):
        client, rec = make_client({
            ("POST", "/challenge/tick"): httpx.Response(200, json={"status": "fail", "reason": "You stopped."}),
        })
        verdict = await client.challenge_tick("asha", "so so so")
        await client.aclose()
        self.assertTrue(verdict.failed)
        self.assertEqual(verdict.reason, "You stopped.")
        self.assertEqual(rec.requests[0][2], {"userId": "asha", "transcript": "so so so"})

    async def test_tick_ok_verdict(self):
        client, _ = make_client({("POST", "/challenge/tick"): httpx.Response(200, json={"status": "ok"})})
        verdict = await client.challenge_tick("asha", "fine")
        await client.aclose()
        self.assertFalse(verdict.failed)


class TestAccounts(unittest.IsolatedAsyncioTestCase):

    async def test_list_users(self):
        client, _ = make_client({("GET", "/users"): httpx.Response(200, json={"users": ["asha", "ravi"]})})
        self.assertEqual(await client.list_users(), ["asha", "ravi"])
        await client.aclose()

    async def test_get_sessions(self):
        client, rec = make_client({("GET", "/sessions/asha"): httpx.Response(200, json={"sessions": [SESSION]})})
        sessions = await client.get_sessions("asha")
        await client.aclose()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].id, 7)

    async def test_create_user_surfaces_error(self):
        client, _ = make_client({
            ("POST", "/users"): httpx.Response(409, json={"error": "User already exists"}),
        })
        with self.assertRaises(CoachTransportError) as cm:
            await client.create_user("asha", "pw")
        await client.aclose()
        self.assertEqual(cm.exception.message, "User already exists")

    async def test_login(self):
        client, _ = make_client({
            ("POST", "/login"): lambda req: httpx.Response(
                200 if json.loads(req.content)["password"] == "right" else 401
            ),
        })
        self.assertTrue(await client.login("asha", "right"))
        self.assertFalse(await client.login("asha", "wrong"))
        await client.aclose()


if __name__ == "__main__":
    unittest.main()
