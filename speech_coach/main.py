"""FastAPI backend exposing the practice session controller to the UI."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from speech_coach.capabilities import create_capabilities
from speech_coach.client import CoachClient
from speech_coach.config import Config
from speech_coach.errors import CoachTransportError
from speech_coach.session import SessionController, SessionSnapshot

log = logging.getLogger(__name__)

problems = Config.validate()
for problem in problems:
    log.warning("[CONFIG] missing or invalid: %s", problem)

client = CoachClient(Config.COACH_BASE_URL, Config.COACH_TIMEOUT_SECONDS)
controller = SessionController(client, create_capabilities(Config))


@asynccontextmanager
async def lifespan(_app: FastAPI):
    controller.open()
    yield
    controller.close()
    await client.aclose()


app = FastAPI(title="Speech Practice Coach", lifespan=lifespan)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request models
class UserRequest(BaseModel):
    username: str
    password: Optional[str] = None


class SettingsRequest(BaseModel):
    mode: Optional[str] = None
    language: Optional[str] = None
    scenario: Optional[str] = None


class SpeakRequest(BaseModel):
    text: Optional[str] = None


class MetronomeRequest(BaseModel):
    active: bool
    bpm: Optional[int] = None


def _status():
    return controller.snapshot().to_dict()


@app.get("/session/status")
async def session_status():
    return _status()


@app.post("/session/start")
async def session_start():
    await controller.start_recording()
    return _status()


@app.post("/session/stop")
async def session_stop():
    controller.stop_recording()
    return _status()


@app.post("/session/toggle")
async def session_toggle():
    await controller.toggle_listening()
    return _status()


@app.post("/session/analyze")
async def session_analyze():
    await controller.analyze()
    return _status()


@app.post("/session/clear")
async def session_clear():
    controller.clear_transcript()
    return _status()


@app.post("/session/settings")
async def session_settings(request: SettingsRequest):
    try:
        if request.mode is not None:
            controller.set_mode(request.mode)
        if request.language is not None:
            controller.set_language(request.language)
        if request.scenario is not None:
            controller.set_scenario(request.scenario)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _status()


@app.post("/session/speak")
async def session_speak(request: SpeakRequest):
    spoken = controller.speak(request.text)
    return {"spoken": spoken}


@app.post("/session/metronome")
async def session_metronome(request: MetronomeRequest):
    try:
        if request.active:
            controller.start_metronome(request.bpm)
        else:
            controller.stop_metronome()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _status()


@app.get("/session/audio")
async def session_audio():
    """The last recording as a playable WAV file."""
    artifact = controller.audio
    if artifact is None:
        raise HTTPException(status_code=404, detail="No recording available")
    return Response(content=artifact.wav_bytes, media_type=artifact.media_type)


@app.post("/challenge/start")
async def challenge_start():
    await controller.start_challenge()
    return _status()


@app.post("/challenge/retry")
async def challenge_retry():
    await controller.retry_challenge()
    return _status()


@app.post("/challenge/exit")
async def challenge_exit():
    controller.exit_challenge()
    return _status()


@app.post("/session/user")
async def session_user(request: UserRequest):
    """Log in through the coaching service and bind the session to that user."""
    if request.password is not None:
        try:
            ok = await client.login(request.username, request.password)
        except CoachTransportError as e:
            raise HTTPException(status_code=502, detail=e.message)
        if not ok:
            raise HTTPException(status_code=401, detail="Wrong password!")
    controller.set_user(request.username)
    return _status()


@app.post("/users")
async def create_user(request: UserRequest):
    if not request.username.strip() or not (request.password or "").strip():
        raise HTTPException(status_code=400, detail="Enter username and password")
    try:
        await client.create_user(request.username, request.password)
    except CoachTransportError as e:
        raise HTTPException(status_code=e.status_code or 502, detail=e.message)
    controller.set_user(request.username)
    return _status()


@app.get("/users")
async def list_users():
    try:
        return {"users": await client.list_users()}
    except CoachTransportError as e:
        raise HTTPException(status_code=502, detail=e.message)


@app.get("/sessions")
async def list_sessions():
    if not controller.user_id:
        return {"sessions": []}
    try:
        sessions = await client.get_sessions(controller.user_id)
    except CoachTransportError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {"sessions": [s.to_dict() for s in sessions]}


@app.get("/audio/devices")
async def audio_devices():
    try:
        from speech_coach.audio_capture import list_input_devices
    except (ImportError, OSError) as e:
        return {"ok": False, "error": repr(e), "devices": []}
    return list_input_devices()


@app.get("/session/stream")
async def session_stream():
    """Stream session snapshots via Server-Sent Events."""
    queue: asyncio.Queue = asyncio.Queue(maxsize=100)

    def on_change(snap: SessionSnapshot):
        if queue.full():
            # slow consumer: keep only the newest snapshots
            queue.get_nowait()
        queue.put_nowait(snap.to_dict())

    async def event_generator():
        controller.subscribe(on_change)
        try:
            yield f"data: {json.dumps(_status())}\n\n"
            while True:
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=15.0)
                except asyncio.TimeoutError:
                    # Send heartbeat to keep connection alive
                    yield ": heartbeat\n\n"
                    continue
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            controller.unsubscribe(on_change)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable buffering for nginx
        },
    )
