"""Speech playback: at most one audible utterance, latest wins."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from fitcoach.errors import CoachError, PlaybackFailedError
from fitcoach.speech.synthesizer import Synthesizer

logger = logging.getLogger(__name__)


class SpeechPlaybackController:
    """Fire-and-forget speech with a queryable ``speaking`` flag.

    ``speaking`` is cleared on natural end, on stop() and on failure. A
    superseded utterance never reports completion.
    """

    def __init__(
        self,
        synthesizer: Synthesizer,
        on_change: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[CoachError], None]] = None,
        on_complete: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._synthesizer = synthesizer
        self.on_change = on_change
        self.on_error = on_error
        self.on_complete = on_complete
        self._task: Optional[asyncio.Task] = None
        self._speaking = False
        self.completed = 0

    @property
    def speaking(self) -> bool:
        return self._speaking

    def speak(self, text: str) -> Optional[asyncio.Task]:
        """Cancel any current utterance and start a new one.

        Returns the playback task; callers do not need to await it.
        """
        self.stop()
        if not text or not text.strip():
            return None

        task = asyncio.create_task(self._synthesizer.speak(text))
        self._task = task
        task.add_done_callback(lambda t: self._on_done(t, text))
        self._set_speaking(True)
        logger.debug("[PLAYBACK] started (%d chars)", len(text))
        return task

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("[PLAYBACK] stopped")
        self._set_speaking(False)

    def _on_done(self, task: asyncio.Task, text: str) -> None:
        if task is not self._task:
            # superseded or stopped: no completion, only collect the outcome
            if not task.cancelled() and task.exception() is not None:
                logger.debug("[PLAYBACK] superseded utterance failed: %r", task.exception())
            return

        self._task = None
        self._set_speaking(False)

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("[PLAYBACK] failed: %r", exc)
            if not isinstance(exc, CoachError):
                exc = PlaybackFailedError(str(exc))
            if self.on_error:
                self.on_error(exc)
            return

        self.completed += 1
        if self.on_complete:
            self.on_complete(text)

    def _set_speaking(self, value: bool) -> None:
        if self._speaking == value:
            return
        self._speaking = value
        if self.on_change:
            self.on_change()
