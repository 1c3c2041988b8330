"""Speech capture: microphone speech appended to the draft as final segments."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from fitcoach.audio import Microphone, MicrophoneLease
from fitcoach.errors import CaptureFailedError, CaptureUnavailableError, CoachError
from fitcoach.models import TranscriptEvent
from fitcoach.speech.recognizer import Recognizer

logger = logging.getLogger(__name__)

MIC_OWNER = "speech_capture"


class CaptureHandle:
    """One capture session. Awaitable through wait(), cancellable through cancel()."""

    def __init__(self, controller: "SpeechCaptureController") -> None:
        self._controller = controller
        self._done: asyncio.Future = asyncio.get_running_loop().create_future()
        self.segments: List[str] = []

    @property
    def active(self) -> bool:
        return not self._done.done()

    @property
    def text(self) -> str:
        return " ".join(self.segments)

    async def wait(self) -> str:
        """Resolve with the captured text once the capture ends for any reason."""
        return await asyncio.shield(self._done)

    async def cancel(self) -> None:
        await self._controller.stop(self)

    def _finish(self) -> None:
        if not self._done.done():
            self._done.set_result(self.text)


class SpeechCaptureController:
    """Owns the recognizer and the microphone lease while capturing."""

    def __init__(
        self,
        recognizer: Recognizer,
        microphone: Microphone,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._recognizer = recognizer
        self._microphone = microphone
        self.on_change = on_change
        self._handle: Optional[CaptureHandle] = None
        self._active = False
        self._lease: Optional[MicrophoneLease] = None
        self._on_final: Optional[Callable[[str], None]] = None
        self._on_error: Optional[Callable[[CoachError], None]] = None

    @property
    def capturing(self) -> bool:
        return self._active

    @property
    def handle(self) -> Optional[CaptureHandle]:
        return self._handle

    async def start(
        self,
        on_final: Callable[[str], None],
        on_error: Optional[Callable[[CoachError], None]] = None,
    ) -> CaptureHandle:
        """Begin capturing. Returns the active handle if already capturing.

        Raises:
            MicrophoneBusyError: another component holds the microphone
            CaptureUnavailableError / PermissionDeniedError: capture could not start
        """
        if self.capturing:
            return self._handle

        lease = self._microphone.acquire(MIC_OWNER)
        handle = CaptureHandle(self)
        self._handle, self._lease = handle, lease
        self._on_final, self._on_error = on_final, on_error

        try:
            await self._recognizer.start(
                on_transcript=lambda event: self._on_transcript(handle, event),
                on_end=lambda error: self._on_end(handle, error),
            )
        except CoachError:
            self._discard(handle)
            raise
        except Exception as e:
            logger.exception("[CAPTURE] recognizer failed to start")
            self._discard(handle)
            raise CaptureUnavailableError(f"Speech recognition could not start: {e}") from e

        if not handle.active:
            # stopped while the recognizer was still starting
            logger.info("[CAPTURE] stopped during start, shutting recognizer down")
            await self._recognizer.stop()
            return handle

        self._active = True
        logger.info("[CAPTURE] started")
        self._changed()
        return handle

    def _discard(self, handle: CaptureHandle) -> None:
        """Undo a start that never became active; capturing was never reported."""
        handle._finish()
        if self._handle is handle:
            self._handle = None
            self._release_lease()

    def _on_transcript(self, handle: CaptureHandle, event: TranscriptEvent) -> None:
        if handle is not self._handle or not handle.active:
            return
        if not event.is_final:
            return  # interim results are display-only
        text = event.text.strip()
        if not text:
            return
        handle.segments.append(text)
        if self._on_final:
            self._on_final(text)

    def _on_end(self, handle: CaptureHandle, error: Optional[Exception]) -> None:
        """Recognizer ended on its own (silence timeout, remote close, failure)."""
        logger.info("[CAPTURE] ended by recognizer%s", f" ({error})" if error else "")
        finished = self._finish(handle)
        if finished and error is not None and self._on_error:
            if not isinstance(error, CoachError):
                error = CaptureFailedError(str(error))
            self._on_error(error)

    async def stop(self, handle: Optional[CaptureHandle] = None) -> None:
        """Stop capturing. Always leaves capturing False."""
        current = self._handle
        if current is None or (handle is not None and handle is not current):
            if handle is not None:
                handle._finish()
            return
        try:
            await self._recognizer.stop()
        finally:
            self._finish(current)
            logger.info("[CAPTURE] stopped")

    def _finish(self, handle: CaptureHandle) -> bool:
        if handle is not self._handle:
            return False
        self._handle = None
        self._active = False
        self._release_lease()
        handle._finish()
        self._changed()
        return True

    def _release_lease(self) -> None:
        lease, self._lease = self._lease, None
        if lease is not None:
            lease.release()

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()
