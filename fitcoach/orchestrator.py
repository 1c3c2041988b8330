"""Session orchestrator: owns one coach view's state and is the single catch
boundary for every component error."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from fitcoach.context import ContextAggregator
from fitcoach.errors import (
    CaptureUnavailableError,
    CoachError,
    MicrophoneBusyError,
    TransportError,
    VoiceHandshakeFailedError,
)
from fitcoach.gateway.base_gateway import BaseGateway
from fitcoach.models import Message, Notification
from fitcoach.speech.capture import SpeechCaptureController
from fitcoach.speech.playback import SpeechPlaybackController
from fitcoach.state import LiveVoiceStatus, SessionState, TurnState
from fitcoach.transcript import TranscriptStore
from fitcoach.voice.live_session import LiveVoiceController

logger = logging.getLogger(__name__)

VOICE_ERROR_TITLE = "Voice Error"


class SessionOrchestrator:
    """One coach view: text turns, speech capture and playback, live voice.

    Args:
        user_id: current user, injected
        notify: callable receiving a Notification for every user-visible notice
        gateway: text coach backend client
        context: aggregator that builds the context bundle for each turn
        capture / playback / live_voice: optional voice controllers; when
            absent the matching operations report the capability as unavailable
    """

    def __init__(
        self,
        user_id: str,
        notify: Callable[[Notification], None],
        gateway: BaseGateway,
        context: ContextAggregator,
        capture: Optional[SpeechCaptureController] = None,
        playback: Optional[SpeechPlaybackController] = None,
        live_voice: Optional[LiveVoiceController] = None,
        greeting: Optional[str] = None,
        voice_enabled: bool = False,
        agent_id: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self._notify = notify
        self._gateway = gateway
        self._context = context
        self._capture = capture
        self._playback = playback
        self._live_voice = live_voice
        self.agent_id = agent_id

        self.transcript = TranscriptStore(greeting)
        self.state = SessionState(transcript=self.transcript, voice_enabled=voice_enabled)
        self._inflight: Optional[asyncio.Future] = None
        self._connecting: Optional[asyncio.Future] = None
        self._capture_starting: Optional[asyncio.Future] = None
        self._closed = False

        if capture is not None:
            capture.on_change = self._sync
        if playback is not None:
            playback.on_change = self._sync
            playback.on_error = self._report
        if live_voice is not None:
            live_voice.on_change = self._sync
            live_voice.on_error = lambda e: self._report(e, title=VOICE_ERROR_TITLE)

    @property
    def turn_state(self) -> TurnState:
        return self.state.turn_state

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "SessionOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Text turns

    def set_draft(self, text: str) -> None:
        self.state.draft = text
        if text.strip():
            self.state.last_error = None

    async def send(self, text: Optional[str] = None) -> Optional[Message]:
        """Send the draft (or ``text``) as one turn.

        Returns the assistant reply, or None when the send was rejected or
        the turn failed. Failures are reported through ``notify`` and leave
        the transcript as it was before the turn.
        """
        if self._closed:
            return None
        if self.state.pending:
            logger.info("[TURN] send rejected: previous reply still pending")
            return None

        content = (self.state.draft if text is None else text).strip()
        if not content:
            return None

        user_message = self.transcript.append(Message(role="user", content=content))
        if text is None:
            self.state.draft = ""
        self.state.pending = True
        self.state.last_error = None

        self._inflight = asyncio.ensure_future(self._round_trip())
        try:
            reply = await self._inflight
        except asyncio.CancelledError:
            if self._closed:
                return None
            self._rollback(user_message)
            raise
        except CoachError as e:
            self._fail_turn(user_message, e)
            return None
        except Exception as e:
            logger.exception("[TURN] unexpected failure")
            self._fail_turn(user_message, TransportError(str(e)))
            return None
        else:
            if self._closed:
                return None
            assistant_message = self.transcript.append(Message(role="assistant", content=reply))
            if self.state.voice_enabled and self._playback is not None:
                self._playback.speak(reply)
            return assistant_message
        finally:
            self._inflight = None
            self.state.pending = False

    async def _round_trip(self) -> str:
        bundle = await self._context.fetch(self.user_id)
        return await self._gateway.send(self.transcript.snapshot(), bundle)

    def _fail_turn(self, user_message: Message, error: CoachError) -> None:
        self._rollback(user_message)
        self.state.last_error = error.kind
        self._report(error)

    def _rollback(self, user_message: Message) -> None:
        try:
            self.transcript.rollback_last(expected=user_message)
        except ValueError as e:
            logger.warning("[TURN] rollback skipped: %s", e)

    # Speech capture

    async def start_capture(self) -> bool:
        """Start dictation into the draft. Returns True when capturing."""
        if self._closed:
            return False
        if self._capture is None:
            self._report(CaptureUnavailableError())
            return False
        if self._capture.capturing:
            return True
        if self._live_voice is not None and self._live_voice.status != LiveVoiceStatus.DISCONNECTED:
            self._report(MicrophoneBusyError("The microphone is in use by the voice conversation"))
            return False

        starting = asyncio.ensure_future(
            self._capture.start(on_final=self._append_to_draft, on_error=self._report))
        self._capture_starting = starting
        try:
            await starting
        except CoachError as e:
            self._report(e)
            return False
        finally:
            if self._capture_starting is starting:
                self._capture_starting = None
            self._sync()
        # close() stops a capture that finished starting after teardown began
        return not self._closed and self._capture.capturing

    async def stop_capture(self) -> None:
        if self._capture is None:
            return
        try:
            await self._capture.stop()
        except CoachError as e:
            self._report(e)
        finally:
            self._sync()

    def _append_to_draft(self, segment: str) -> None:
        if self._closed:
            return
        draft = self.state.draft
        if draft and not draft[-1].isspace():
            draft += " "
        self.set_draft(draft + segment)

    # Speech playback

    def set_voice_enabled(self, enabled: bool) -> None:
        self.state.voice_enabled = enabled
        if not enabled:
            self.stop_speaking()

    def stop_speaking(self) -> None:
        if self._playback is not None:
            self._playback.stop()
        self._sync()

    # Live voice

    async def connect_live_voice(self, agent_id: Optional[str] = None) -> bool:
        """Open the live voice conversation. Returns True when connected."""
        if self._closed:
            return False
        if self._live_voice is None:
            self._report(VoiceHandshakeFailedError("Voice conversations are not available"),
                         title=VOICE_ERROR_TITLE)
            return False
        if self._capture is not None and self._capture.capturing:
            self._report(MicrophoneBusyError("The microphone is in use by voice input"))
            return False

        connecting = asyncio.ensure_future(self._live_voice.connect(agent_id or self.agent_id or ""))
        self._connecting = connecting
        try:
            await connecting
        except asyncio.CancelledError:
            if self._closed:
                return False
            raise
        except CoachError as e:
            self._report(e, title=VOICE_ERROR_TITLE)
            return False
        finally:
            if self._connecting is connecting:
                self._connecting = None
            self._sync()
        return not self._closed

    async def disconnect_live_voice(self) -> None:
        if self._live_voice is None:
            return
        try:
            await self._live_voice.disconnect()
        except CoachError as e:
            self._report(e, title=VOICE_ERROR_TITLE)
        finally:
            self._sync()

    async def set_live_voice_volume(self, level: float) -> bool:
        """Set agent output volume in [0, 1]; False when not connected.

        Raises:
            ValueError: level outside [0, 1]
        """
        if not 0.0 <= level <= 1.0:
            raise ValueError(f"Volume must be between 0 and 1, got {level}")
        if self._live_voice is None:
            return False
        applied = await self._live_voice.set_output_volume(None, level)
        if applied:
            self.state.live_voice_muted = level == 0.0
        return applied

    async def toggle_live_voice_mute(self) -> bool:
        """Returns the muted flag after the toggle."""
        await self.set_live_voice_volume(1.0 if self.state.live_voice_muted else 0.0)
        return self.state.live_voice_muted

    # Teardown

    async def close(self) -> None:
        """Abandon the in-flight turn and release every audio resource."""
        if self._closed:
            return
        self._closed = True

        inflight = self._inflight
        if inflight is not None and not inflight.done():
            inflight.cancel()
        self.state.pending = False

        if self._playback is not None:
            self._playback.stop()

        # a connect still in its handshake is aborted; a capture still starting
        # is let through so the stop below sees the started recognizer
        connecting = self._connecting
        if connecting is not None and not connecting.done():
            connecting.cancel()
        starts = [f for f in (connecting, self._capture_starting) if f is not None]
        if starts:
            await asyncio.gather(*starts, return_exceptions=True)

        steps = []
        if self._capture is not None:
            steps.append(self._capture.stop())
        if self._live_voice is not None:
            steps.append(self._live_voice.disconnect())
        results = await asyncio.gather(*steps, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("[SESSION] teardown step failed: %r", result)

        self._sync()
        logger.info("[SESSION] closed for user %s", self.user_id)

    # Notifications and flag sync

    def _report(self, error: CoachError, title: Optional[str] = None) -> None:
        logger.warning("[SESSION] %s: %s", error.kind, error.message)
        self._sync()
        if self._closed:
            return
        self._notify(Notification(
            title=title or error.title,
            description=error.message,
            variant="destructive",
            kind=error.kind,
        ))

    def _sync(self) -> None:
        """Mirror controller flags into the session state."""
        state = self.state
        if self._capture is not None:
            state.capturing = self._capture.capturing
        if self._playback is not None:
            state.speaking = self._playback.speaking
        if self._live_voice is None:
            return

        previous = state.live_voice_status
        status = self._live_voice.status
        state.live_voice_status = status
        state.agent_speaking = self._live_voice.agent_speaking
        if status == LiveVoiceStatus.DISCONNECTED:
            state.live_voice_muted = False
        if status == previous or self._closed:
            return
        if status == LiveVoiceStatus.CONNECTED:
            self._notify(Notification(title="Connected", description="Voice AI Coach is ready to talk!"))
        elif status == LiveVoiceStatus.DISCONNECTED and previous == LiveVoiceStatus.CONNECTED:
            self._notify(Notification(title="Disconnected", description="Voice conversation ended"))
