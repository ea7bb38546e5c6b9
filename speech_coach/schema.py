from __future__ import annotations

from typing import Any, Dict, List, Optional

from speech_coach.models import (
    AnalysisResult,
    CoachSession,
    TickVerdict,
    UserProfile,
    UserStats,
)


def _clamp_score(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        n = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, n))


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_session(obj: Dict[str, Any]) -> CoachSession:
    """
    Ensure a stable session shape so callers never depend on the service's formatting.
    """
    if not isinstance(obj, dict):
        raise ValueError("session is not a JSON object")

    tips = obj.get("tips", "")
    if isinstance(tips, list):
        tips = "\n".join(str(t).strip() for t in tips if str(t).strip())

    duration = obj.get("duration")
    return CoachSession(
        id=obj.get("id"),
        user_id=str(obj.get("userId", "")),
        mode=str(obj.get("mode", "")),
        transcript=str(obj.get("transcript", "")),
        score=_clamp_score(obj.get("score")) or 0,
        confidence_score=_clamp_score(obj.get("confidenceScore")),
        fluent_sentence=str(obj.get("fluentSentence", "")).strip(),
        tips=str(tips or "").strip(),
        coach_tone=str(obj.get("coachTone", "")).strip(),
        created_at=str(obj.get("createdAt", "")),
        duration=_int(duration) if duration is not None else None,
    )


def normalize_profile(obj: Any) -> Optional[UserProfile]:
    if not isinstance(obj, dict) or not obj.get("username"):
        return None
    stats = obj.get("stats") or {}
    badges = obj.get("badges") or []
    if isinstance(badges, str):
        badges = [badges]
    return UserProfile(
        username=str(obj["username"]),
        xp=_int(obj.get("xp")),
        level=_int(obj.get("level"), 1),
        streak=_int(obj.get("streak")),
        badges=tuple(str(b) for b in badges),
        stats=UserStats(
            total_sessions=_int(stats.get("totalSessions")),
            total_seconds=_int(stats.get("totalSeconds")),
            daily_minutes=_int(stats.get("dailyMinutes")),
        ),
    )


def normalize_analysis(data: Any) -> AnalysisResult:
    """Parse a /coach response body. Raises ValueError when no session is present."""
    if not isinstance(data, dict) or not isinstance(data.get("session"), dict):
        raise ValueError("response has no session object")
    return AnalysisResult(
        session=normalize_session(data["session"]),
        user_profile=normalize_profile(data.get("userProfile")),
    )


def normalize_sessions(data: Any) -> List[CoachSession]:
    items = data.get("sessions", []) if isinstance(data, dict) else []
    return [normalize_session(s) for s in items if isinstance(s, dict)]


def normalize_verdict(data: Any) -> TickVerdict:
    """
    Anything other than an explicit fail is treated as a continue signal.
    """
    if isinstance(data, dict) and str(data.get("status", "")).strip().lower() == "fail":
        reason = str(data.get("reason") or "").strip() or "Challenge failed"
        return TickVerdict(status="fail", reason=reason)
    return TickVerdict(status="ok")
