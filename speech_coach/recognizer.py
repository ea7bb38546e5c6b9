"""Deepgram live recognition over an aiohttp websocket."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional
from urllib.parse import urlencode

import aiohttp

from speech_coach.capabilities import RecognitionCallback, RecognitionSource
from speech_coach.errors import RecognitionError
from speech_coach.models import Hypothesis, RecognitionEvent, RecognitionResult

log = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"

MAX_BATCH = 32


def build_deepgram_url(model: str, locale: str, sample_rate: int) -> str:
    params = {
        "model": model,
        "language": locale,
        "punctuate": "true",
        "smart_format": "true",
        "encoding": "linear16",
        "channels": "1",
        "sample_rate": str(int(sample_rate) if sample_rate else 16000),
        "interim_results": "true",
    }
    return f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}"


def parse_result(data: dict) -> Optional[RecognitionResult]:
    """
    Turn one Deepgram "Results" message into a RecognitionResult.
    Returns None for messages that carry no speech.
    """
    chan = data.get("channel")
    if not isinstance(chan, dict):
        return None
    alts = chan.get("alternatives")
    if not isinstance(alts, list):
        return None

    hypotheses = []
    for alt in alts:
        if not isinstance(alt, dict):
            continue
        text = (alt.get("transcript") or "").strip()
        if not text:
            continue
        hypotheses.append(Hypothesis(text=text, confidence=float(alt.get("confidence") or 0.0)))

    if not hypotheses:
        return None
    return RecognitionResult(
        alternatives=tuple(hypotheses),
        is_final=bool(data.get("is_final")),
    )


class ResultLog:
    """
    Deepgram sends one span at a time; interim results for a span are
    replaced until the span is final. Consumers get the full ordered list.
    """

    def __init__(self):
        self.finals: List[RecognitionResult] = []
        self.interim: Optional[RecognitionResult] = None

    def add(self, result: RecognitionResult) -> RecognitionEvent:
        if result.is_final:
            self.finals.append(result)
            self.interim = None
        else:
            self.interim = result
        results = list(self.finals)
        if self.interim is not None:
            results.append(self.interim)
        return RecognitionEvent(results=tuple(results))


class _Stream:
    """State of one start() call: its audio queue, callback and result log."""

    def __init__(self, on_event: RecognitionCallback):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=2000)
        self.on_event = on_event
        self.results = ResultLog()
        self.task: Optional[asyncio.Task] = None
        self.closed = False


class DeepgramRecognizer(RecognitionSource):
    """Streams captured PCM16 to Deepgram and emits RecognitionEvents on the loop.

    Each start() gets its own _Stream. A start that is stopped or superseded
    while the websocket is still connecting closes its own connection and
    leaves the current stream alone.
    """

    def __init__(self, api_key: str, model: str = "nova-2", sample_rate: int = 16000,
                 connect_timeout: float = 10.0):
        self.api_key = api_key
        self.model = model
        self.sample_rate = sample_rate
        self.connect_timeout = connect_timeout

        self._stream: Optional[_Stream] = None

    @property
    def running(self) -> bool:
        stream = self._stream
        return stream is not None and stream.task is not None and not stream.task.done()

    async def start(self, locale: str, on_event: RecognitionCallback):
        self.stop()
        stream = _Stream(on_event)
        self._stream = stream

        url = build_deepgram_url(self.model, locale, self.sample_rate)
        headers = {"Authorization": f"Token {self.api_key}"}
        session = aiohttp.ClientSession(headers=headers)
        try:
            ws = await session.ws_connect(url, heartbeat=20, timeout=self.connect_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            if self._stream is stream:
                self._stream = None
            raise RecognitionError("Speech recognition is unavailable right now.", detail=repr(e)) from e
        except asyncio.CancelledError:
            await session.close()
            raise

        if self._stream is not stream:
            # stopped or restarted while connecting
            log.info("[RECOGNIZER] connect for locale=%s no longer wanted, closing", locale)
            try:
                await ws.close()
            finally:
                await session.close()
            return

        stream.task = asyncio.create_task(self._run(session, ws, stream))
        log.info("[RECOGNIZER] connected locale=%s model=%s", locale, self.model)

    def send_audio(self, chunk: bytes):
        if not self.running:
            return
        q = self._stream.queue
        if q.full():
            # keep audio current: drop oldest when behind
            try:
                q.get_nowait()
            except asyncio.QueueEmpty:
                pass
        q.put_nowait(chunk)

    def stop(self):
        stream, self._stream = self._stream, None
        if stream is None:
            return
        stream.closed = True
        if stream.task is not None and not stream.task.done():
            stream.task.cancel()

    async def _run(self, session: aiohttp.ClientSession, ws, stream: _Stream):
        q = stream.queue

        async def sender():
            while True:
                batch = [await q.get()]
                for _ in range(MAX_BATCH - 1):
                    try:
                        batch.append(q.get_nowait())
                    except asyncio.QueueEmpty:
                        break
                for chunk in batch:
                    await ws.send_bytes(chunk)

        async def receiver():
            while True:
                msg = await ws.receive()

                if msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING):
                    raise RuntimeError("WebSocket closed")
                if msg.type == aiohttp.WSMsgType.ERROR:
                    raise RuntimeError(f"WebSocket error: {ws.exception()}")
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue

                try:
                    data = json.loads(msg.data)
                except ValueError:
                    continue
                if not isinstance(data, dict):
                    continue

                if str(data.get("type") or "").lower() == "error":
                    log.warning("[RECOGNIZER] error message: %s", json.dumps(data)[:400])
                    continue

                result = parse_result(data)
                if result is None:
                    continue
                event = stream.results.add(result)
                if not stream.closed:
                    stream.on_event(event)

        tasks = [asyncio.create_task(sender()), asyncio.create_task(receiver())]
        try:
            done, pending = await asyncio.wait(set(tasks), return_when=asyncio.FIRST_EXCEPTION)
            for t in done:
                exc = t.exception()
                if exc:
                    log.warning("[RECOGNIZER] stream ended: %r", exc)
        finally:
            for t in tasks:
                t.cancel()
            try:
                await ws.close()
            finally:
                await session.close()
