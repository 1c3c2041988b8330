"""Realtime duplex transport to a conversational voice agent."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from fitcoach.audio import MicInput, SpeakerOutput
from fitcoach.errors import CoachError, VoiceHandshakeFailedError

logger = logging.getLogger(__name__)


def _noop(*args, **kwargs) -> None:
    pass


@dataclass
class TransportEvents:
    """Callbacks a transport fires after it has been opened."""
    on_disconnect: Callable[[Optional[str]], None] = _noop  # remote close, reason
    on_error: Callable[[Exception], None] = _noop
    on_mode_change: Callable[[bool], None] = _noop  # agent speaking
    on_message: Callable[[Dict[str, Any]], None] = _noop  # transcripts / agent text


class RealtimeTransport(ABC):
    """Abstract interface for a realtime voice agent connection."""

    @abstractmethod
    async def open(self, signed_url: str, events: TransportEvents) -> None:
        """Connect and finish the handshake.

        Raises:
            VoiceHandshakeFailedError: the session could not be established
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release audio devices. Safe to call twice."""
        pass

    @abstractmethod
    def set_volume(self, level: float) -> None:
        """Set agent output volume in [0, 1]."""
        pass


def _sample_rate(audio_format: Optional[str], default: int = 16000) -> int:
    # "pcm_16000" -> 16000
    if audio_format and audio_format.startswith("pcm_"):
        try:
            return int(audio_format.split("_", 1)[1])
        except ValueError:
            pass
    return default


class ConvaiTransport(RealtimeTransport):
    """ElevenLabs conversational agent websocket with local mic and speaker."""

    def __init__(
        self,
        handshake_timeout: Optional[float] = None,
        mic_factory: Callable[..., MicInput] = MicInput,
        speaker_factory: Callable[..., SpeakerOutput] = SpeakerOutput,
    ) -> None:
        from fitcoach.config import Config
        self.handshake_timeout = handshake_timeout or Config.VOICE_HANDSHAKE_TIMEOUT_SECONDS
        self._mic_factory = mic_factory
        self._speaker_factory = speaker_factory

        self._events = TransportEvents()
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._mic: Optional[MicInput] = None
        self._speaker: Optional[SpeakerOutput] = None
        self._tasks: List[asyncio.Task] = []
        self._supervisor: Optional[asyncio.Task] = None
        self._volume = 1.0
        self._speaking = False
        self._closing = False
        self.conversation_id: Optional[str] = None

    async def open(self, signed_url: str, events: TransportEvents) -> None:
        self._events = events
        self._closing = False
        self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))

        try:
            self._ws = await self._session.ws_connect(signed_url, heartbeat=20)
            metadata = await asyncio.wait_for(self._await_initiation(), self.handshake_timeout)
        except asyncio.TimeoutError as e:
            await self._cleanup()
            raise VoiceHandshakeFailedError("Voice agent did not answer in time") from e
        except (aiohttp.ClientError, OSError, ValueError) as e:
            await self._cleanup()
            raise VoiceHandshakeFailedError(f"Voice connection failed: {e}") from e

        self.conversation_id = metadata.get("conversation_id")
        out_sr = _sample_rate(metadata.get("agent_output_audio_format"))
        in_sr = _sample_rate(metadata.get("user_input_audio_format"))

        try:
            self._speaker = self._speaker_factory(sample_rate=out_sr, on_drain=lambda: self._set_speaking(False))
            self._speaker.open()
            self._speaker.volume = self._volume
            self._mic = self._mic_factory(sample_rate=in_sr)
            self._mic.open()
        except CoachError:
            await self._cleanup()
            raise
        except (ImportError, OSError) as e:
            await self._cleanup()
            raise VoiceHandshakeFailedError("No audio device is available for voice chat") from e

        self._tasks = [
            asyncio.create_task(self._sender()),
            asyncio.create_task(self._receiver()),
        ]
        self._supervisor = asyncio.create_task(self._supervise())
        logger.info("[LIVE] conversation %s connected", self.conversation_id)

    async def _await_initiation(self) -> Dict[str, Any]:
        while True:
            msg = await self._ws.receive()
            if msg.type != aiohttp.WSMsgType.TEXT:
                if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    raise ValueError("connection closed during handshake")
                continue
            data = json.loads(msg.data)
            if not isinstance(data, dict):
                continue
            if data.get("type") == "conversation_initiation_metadata":
                return data.get("conversation_initiation_metadata_event") or {}
            if data.get("type") == "ping":
                await self._pong(data)

    async def _pong(self, data: Dict[str, Any]) -> None:
        event_id = (data.get("ping_event") or {}).get("event_id")
        await self._ws.send_str(json.dumps({"type": "pong", "event_id": event_id}))

    async def _sender(self) -> None:
        while True:
            chunk = await self._mic.read()
            await self._ws.send_str(json.dumps({"user_audio_chunk": base64.b64encode(chunk).decode("ascii")}))

    async def _receiver(self) -> Optional[str]:
        while True:
            msg = await self._ws.receive()

            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return str(msg.extra or "closed by agent")
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise RuntimeError(f"WebSocket error: {self._ws.exception()}")
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue

            try:
                data = json.loads(msg.data)
            except ValueError:
                continue
            if isinstance(data, dict):
                await self._handle_event(data)

    async def _handle_event(self, data: Dict[str, Any]) -> None:
        kind = data.get("type")
        if kind == "ping":
            await self._pong(data)
        elif kind == "audio":
            audio_b64 = (data.get("audio_event") or {}).get("audio_base_64")
            if audio_b64:
                self._speaker.write(base64.b64decode(audio_b64))
                self._set_speaking(True)
        elif kind == "interruption":
            self._speaker.clear()
            self._set_speaking(False)
        elif kind in ("agent_response", "user_transcript"):
            self._events.on_message(data)

    async def _supervise(self) -> None:
        done, pending = await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
        if self._closing:
            return
        reason: Optional[str] = None
        error: Optional[BaseException] = None
        for t in done:
            if t.cancelled():
                continue
            error = t.exception()
            if error is None:
                reason = t.result()
        await self._cleanup()
        if error is not None:
            logger.warning("[LIVE] connection failed: %r", error)
            self._events.on_error(error if isinstance(error, Exception) else RuntimeError(str(error)))
        logger.info("[LIVE] disconnected (%s)", reason or "error")
        self._events.on_disconnect(reason)

    def _set_speaking(self, speaking: bool) -> None:
        if speaking == self._speaking:
            return
        self._speaking = speaking
        self._events.on_mode_change(speaking)

    def set_volume(self, level: float) -> None:
        self._volume = level
        if self._speaker is not None:
            self._speaker.volume = level

    async def close(self) -> None:
        self._closing = True
        supervisor, self._supervisor = self._supervisor, None
        if supervisor is not None and supervisor is not asyncio.current_task():
            supervisor.cancel()
        await self._cleanup()
        self._set_speaking(False)

    async def _cleanup(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        mic, self._mic = self._mic, None
        speaker, self._speaker = self._speaker, None
        ws, self._ws = self._ws, None
        session, self._session = self._session, None
        if mic is not None:
            mic.close()
        if speaker is not None:
            speaker.close()
        if ws is not None:
            await ws.close()
        if session is not None:
            await session.close()
