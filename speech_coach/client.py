"""Async client for the remote coaching / judging service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from speech_coach.errors import CoachTransportError
from speech_coach.models import AnalysisResult, CoachSession, TickVerdict
from speech_coach.schema import normalize_analysis, normalize_sessions, normalize_verdict

log = logging.getLogger(__name__)


class CoachClient:
    """Thin JSON-over-HTTP wrapper around the coaching service.

    Every network failure and non-2xx response is raised as
    CoachTransportError with a message fit for the user; the raw
    status/body goes into ``detail`` for the logs.

    Usage::

        client = CoachClient("http://localhost:4000")
        result = await client.analyze(transcript="...", mode="free_talk",
                                      user_id="asha", duration=12, language="en")
        await client.aclose()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if base_url is None or timeout is None:
            from speech_coach.config import Config
            base_url = base_url or Config.COACH_BASE_URL
            timeout = timeout if timeout is not None else Config.COACH_TIMEOUT_SECONDS
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, *, json: Optional[dict] = None) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise CoachTransportError(
                "The coaching service did not respond in time. Please try again.",
                detail=f"{method} {path}: {e!r}",
            ) from e
        except httpx.HTTPError as e:
            raise CoachTransportError(
                "Could not reach the coaching service. Check your connection and try again.",
                detail=f"{method} {path}: {e!r}",
            ) from e

    async def _json(self, method: str, path: str, *, json: Optional[dict] = None) -> Any:
        r = await self._request(method, path, json=json)
        if r.status_code >= 400:
            raise CoachTransportError(
                "The coaching service had a problem handling the request. Please try again.",
                detail=f"{method} {path}: HTTP {r.status_code} {r.text[:200]}",
                status_code=r.status_code,
            )
        try:
            return r.json()
        except ValueError as e:
            raise CoachTransportError(
                "The coaching service sent an unexpected response.",
                detail=f"{method} {path}: invalid JSON {r.text[:200]!r}",
                status_code=r.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Coaching and challenge
    # ------------------------------------------------------------------

    async def analyze(
        self,
        *,
        transcript: str,
        mode: str,
        user_id: str,
        duration: int,
        language: str,
    ) -> AnalysisResult:
        """POST /coach with the finished take."""
        data = await self._json("POST", "/coach", json={
            "transcript": transcript,
            "mode": mode,
            "userId": user_id,
            "duration": duration,
            "language": language,
        })
        try:
            return normalize_analysis(data)
        except ValueError as e:
            raise CoachTransportError(
                "The coaching service sent an unexpected response.",
                detail=f"POST /coach: {e}",
            ) from e

    async def start_challenge(self, user_id: str) -> None:
        """POST /challenge/start. The body of the acknowledgement is ignored."""
        r = await self._request("POST", "/challenge/start", json={"userId": user_id})
        if r.status_code >= 400:
            raise CoachTransportError(
                "Could not start the challenge. Please try again.",
                detail=f"POST /challenge/start: HTTP {r.status_code}",
                status_code=r.status_code,
            )

    async def challenge_tick(self, user_id: str, transcript: str) -> TickVerdict:
        data = await self._json("POST", "/challenge/tick", json={
            "userId": user_id,
            "transcript": transcript,
        })
        return normalize_verdict(data)

    # ------------------------------------------------------------------
    # Accounts (owned by the service; passed through for the UI)
    # ------------------------------------------------------------------

    async def list_users(self) -> List[str]:
        data = await self._json("GET", "/users")
        users = data.get("users", []) if isinstance(data, dict) else []
        return [str(u) for u in users]

    async def get_sessions(self, user_id: str) -> List[CoachSession]:
        data = await self._json("GET", f"/sessions/{user_id}")
        return normalize_sessions(data)

    async def create_user(self, username: str, password: str) -> None:
        r = await self._request("POST", "/users", json={"username": username, "password": password})
        if r.status_code >= 400:
            message = "Could not create the user."
            try:
                body: Dict[str, Any] = r.json()
                if isinstance(body, dict) and body.get("error"):
                    message = str(body["error"])
            except ValueError:
                pass
            raise CoachTransportError(message, detail=f"POST /users: HTTP {r.status_code}", status_code=r.status_code)

    async def login(self, username: str, password: str) -> bool:
        """Returns False when the service rejects the credentials."""
        r = await self._request("POST", "/login", json={"username": username, "password": password})
        if r.status_code in (400, 401, 403, 404):
            return False
        if r.status_code >= 400:
            raise CoachTransportError(
                "Could not log in right now. Please try again.",
                detail=f"POST /login: HTTP {r.status_code}",
                status_code=r.status_code,
            )
        return True
