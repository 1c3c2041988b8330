"""Recognizer abstraction for microphone-to-text conversion."""

from abc import ABC, abstractmethod
import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional

import aiohttp

from fitcoach.audio import MicInput
from fitcoach.errors import CaptureFailedError, CaptureUnavailableError
from fitcoach.models import TranscriptEvent

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[TranscriptEvent], None]
EndCallback = Callable[[Optional[Exception]], None]


class Recognizer(ABC):
    """Abstract interface for continuous, interim-results speech recognition."""

    @abstractmethod
    async def start(self, on_transcript: TranscriptCallback, on_end: EndCallback) -> None:
        """Open the microphone and begin recognition.

        Args:
            on_transcript: Called with every interim and final result
            on_end: Called once if recognition ends on its own (silence,
                remote close, failure); never called after stop()

        Raises:
            CaptureUnavailableError: recognition cannot run here
            PermissionDeniedError: the microphone was refused
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop recognition and release the microphone. Safe to call twice."""
        pass


DEEPGRAM_URL_BASE = (
    "wss://api.deepgram.com/v1/listen"
    "?punctuate=true"
    "&smart_format=true"
    "&encoding=linear16"
    "&channels=1"
    "&interim_results=true"
    "&utterance_end_ms=1000"
    "&endpointing=200"
    "&vad_events=true"
)


def build_deepgram_url(model: str, sample_rate: int) -> str:
    sr = int(sample_rate) if sample_rate else 16000
    return f"{DEEPGRAM_URL_BASE}&model={model}&sample_rate={sr}"


def parse_deepgram_message(raw: Any) -> Optional[TranscriptEvent]:
    """Extract a transcript event from one Deepgram websocket message."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    transcript = ""
    chan = data.get("channel")
    if isinstance(chan, dict):
        alts = chan.get("alternatives")
        if isinstance(alts, list) and alts and isinstance(alts[0], dict):
            transcript = (alts[0].get("transcript") or "").strip()

    if not transcript:
        return None

    is_final = bool(data.get("is_final")) or bool(data.get("speech_final"))
    return TranscriptEvent(text=transcript, is_final=is_final)


class DeepgramRecognizer(Recognizer):
    """Deepgram streaming recognition fed from the local microphone."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        sample_rate: Optional[int] = None,
        silence_timeout: Optional[float] = None,
        mic_factory: Callable[..., MicInput] = MicInput,
    ):
        from fitcoach.config import Config
        self.api_key = api_key or Config.DEEPGRAM_API_KEY
        self.model = model or Config.DEEPGRAM_MODEL
        self.sample_rate = sample_rate or Config.CAPTURE_SAMPLE_RATE
        self.silence_timeout = silence_timeout or Config.CAPTURE_SILENCE_TIMEOUT_SECONDS
        self._mic_factory = mic_factory

        self._mic: Optional[MicInput] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._last_speech_ts = 0.0

    async def start(self, on_transcript: TranscriptCallback, on_end: EndCallback) -> None:
        if not self.api_key:
            raise CaptureUnavailableError("Speech recognition is not configured (DEEPGRAM_API_KEY missing)")
        if self._task is not None:
            raise RuntimeError("Recognizer already running")

        self._stopping = False
        mic = self._mic_factory(sample_rate=self.sample_rate)
        mic.open()

        url = build_deepgram_url(self.model, self.sample_rate)
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None),
            headers={"Authorization": f"Token {self.api_key}"},
        )
        ws = None
        try:
            ws = await session.ws_connect(url, heartbeat=20)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise CaptureUnavailableError(f"Could not reach the speech recognition service: {e}") from e
        finally:
            if ws is None:
                mic.close()
                await session.close()

        self._mic, self._session, self._ws = mic, session, ws
        self._last_speech_ts = time.monotonic()
        self._task = asyncio.create_task(self._run(on_transcript, on_end))
        logger.info("[CAPTURE] Deepgram stream started (model=%s sr=%s)", self.model, self.sample_rate)

    async def _run(self, on_transcript: TranscriptCallback, on_end: EndCallback) -> None:
        error: Optional[Exception] = None
        try:
            tasks = [
                asyncio.create_task(self._sender()),
                asyncio.create_task(self._receiver(on_transcript)),
                asyncio.create_task(self._silence_watchdog()),
            ]
            try:
                done, pending = await asyncio.wait(set(tasks), return_when=asyncio.FIRST_COMPLETED)
            finally:
                for t in tasks:
                    t.cancel()
            for t in done:
                if not t.cancelled() and t.exception():
                    raise t.exception()
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            logger.warning("[CAPTURE] recognition failed: %r", e)
            error = CaptureFailedError(f"Speech recognition stopped: {e}")
        finally:
            await self._cleanup()
            self._task = None

        if not self._stopping:
            on_end(error)

    async def _sender(self) -> None:
        while True:
            chunk = await self._mic.read()
            await self._ws.send_bytes(chunk)

    async def _receiver(self, on_transcript: TranscriptCallback) -> None:
        while True:
            msg = await self._ws.receive()

            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.info("[CAPTURE] Deepgram connection closed")
                return
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise RuntimeError(f"WebSocket error: {self._ws.exception()}")
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue

            event = parse_deepgram_message(msg.data)
            if event is None:
                continue
            self._last_speech_ts = time.monotonic()
            on_transcript(event)

    async def _silence_watchdog(self) -> None:
        while True:
            idle = time.monotonic() - self._last_speech_ts
            if idle >= self.silence_timeout:
                logger.info("[CAPTURE] no speech for %.1fs, ending capture", idle)
                return
            await asyncio.sleep(min(0.5, self.silence_timeout - idle))

    async def stop(self) -> None:
        self._stopping = True
        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.send_str(json.dumps({"type": "CloseStream"}))
            except (aiohttp.ClientError, OSError) as e:
                logger.debug("[CAPTURE] CloseStream not delivered: %r", e)

        task = self._task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._cleanup()

    async def _cleanup(self) -> None:
        mic, self._mic = self._mic, None
        ws, self._ws = self._ws, None
        session, self._session = self._session, None
        if mic is not None:
            mic.close()
        if ws is not None:
            await ws.close()
        if session is not None:
            await session.close()
