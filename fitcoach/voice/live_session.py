"""Live voice session: one duplex agent conversation per coach view."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Optional

from fitcoach.audio import Microphone, MicrophoneLease
from fitcoach.errors import CoachError, LiveVoiceBusyError, VoiceHandshakeFailedError
from fitcoach.state import LiveVoiceStatus
from fitcoach.voice.broker import VoiceBroker
from fitcoach.voice.transport import ConvaiTransport, RealtimeTransport, TransportEvents

logger = logging.getLogger(__name__)

MIC_OWNER = "live_voice"


class LiveVoiceHandle:
    """An open (or formerly open) live voice connection."""

    def __init__(self, agent_id: str, transport: RealtimeTransport, lease: MicrophoneLease) -> None:
        self.id = uuid.uuid4().hex
        self.agent_id = agent_id
        self.transport = transport
        self.lease = lease


class LiveVoiceController:
    """disconnected -> connecting -> connected -> disconnected.

    Every failed connection step lands back in ``disconnected`` with the
    microphone released.
    """

    def __init__(
        self,
        broker: VoiceBroker,
        microphone: Microphone,
        transport_factory: Callable[[], RealtimeTransport] = ConvaiTransport,
        on_change: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[CoachError], None]] = None,
    ) -> None:
        self._broker = broker
        self._microphone = microphone
        self._transport_factory = transport_factory
        self.on_change = on_change
        self.on_error = on_error
        self._status = LiveVoiceStatus.DISCONNECTED
        self._agent_speaking = False
        self._handle: Optional[LiveVoiceHandle] = None

    @property
    def status(self) -> LiveVoiceStatus:
        return self._status

    @property
    def agent_speaking(self) -> bool:
        return self._agent_speaking

    @property
    def handle(self) -> Optional[LiveVoiceHandle]:
        return self._handle

    async def connect(self, agent_id: str) -> LiveVoiceHandle:
        """Permission, then signed URL, then realtime session.

        Raises:
            LiveVoiceBusyError, MicrophoneBusyError, PermissionDeniedError,
            CaptureUnavailableError, VoiceAuthFailedError, VoiceHandshakeFailedError
        """
        if self._status == LiveVoiceStatus.CONNECTED and self._handle is not None:
            return self._handle
        if self._status == LiveVoiceStatus.CONNECTING:
            raise LiveVoiceBusyError()

        lease = self._microphone.acquire(MIC_OWNER)
        self._set_status(LiveVoiceStatus.CONNECTING)
        transport: Optional[RealtimeTransport] = None
        try:
            await self._microphone.request_permission()
            signed_url = await self._broker.get_signed_url(agent_id)

            transport = self._transport_factory()
            handle = LiveVoiceHandle(agent_id, transport, lease)
            await transport.open(signed_url, TransportEvents(
                on_disconnect=lambda reason: self._on_remote_disconnect(handle, reason),
                on_error=lambda exc: self._on_transport_error(handle, exc),
                on_mode_change=lambda speaking: self._on_mode_change(handle, speaking),
            ))
        except CoachError:
            await self._abort(transport, lease)
            raise
        except asyncio.CancelledError:
            await self._abort(transport, lease)
            raise
        except Exception as e:
            logger.exception("[LIVE] unexpected failure while connecting")
            await self._abort(transport, lease)
            raise VoiceHandshakeFailedError(f"Voice connection failed: {e}") from e

        self._handle = handle
        self._set_status(LiveVoiceStatus.CONNECTED)
        logger.info("[LIVE] connected to agent %s", agent_id)
        return handle

    async def _abort(self, transport: Optional[RealtimeTransport], lease: MicrophoneLease) -> None:
        try:
            if transport is not None:
                await transport.close()
        finally:
            lease.release()
            self._agent_speaking = False
            self._set_status(LiveVoiceStatus.DISCONNECTED)

    async def disconnect(self, handle: Optional[LiveVoiceHandle] = None) -> None:
        current = self._handle
        if current is None or (handle is not None and handle is not current):
            return
        self._handle = None
        try:
            await current.transport.close()
        finally:
            current.lease.release()
            self._agent_speaking = False
            self._set_status(LiveVoiceStatus.DISCONNECTED)
            logger.info("[LIVE] disconnected from agent %s", current.agent_id)

    async def set_output_volume(self, handle: Optional[LiveVoiceHandle], level: float) -> bool:
        """Returns False when the handle is not the open connection."""
        if not 0.0 <= level <= 1.0:
            raise ValueError(f"Volume must be between 0 and 1, got {level}")
        current = self._handle
        if current is None or (handle is not None and handle is not current):
            return False
        current.transport.set_volume(level)
        return True

    def _on_remote_disconnect(self, handle: LiveVoiceHandle, reason: Optional[str]) -> None:
        if handle is not self._handle:
            return
        self._handle = None
        handle.lease.release()
        self._agent_speaking = False
        self._set_status(LiveVoiceStatus.DISCONNECTED)
        logger.info("[LIVE] agent ended the conversation: %s", reason)

    def _on_transport_error(self, handle: LiveVoiceHandle, exc: Exception) -> None:
        if handle is not self._handle:
            return
        if self.on_error:
            self.on_error(exc if isinstance(exc, CoachError) else VoiceHandshakeFailedError(
                "Voice connection failed. Please try again."))

    def _on_mode_change(self, handle: LiveVoiceHandle, speaking: bool) -> None:
        if handle is not self._handle or speaking == self._agent_speaking:
            return
        self._agent_speaking = speaking
        self._changed()

    def _set_status(self, status: LiveVoiceStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._changed()

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()
