"""Append-only conversation history for one coach session."""

import threading
from typing import Dict, List, Optional, Tuple

from fitcoach.models import Message, ROLES


class TranscriptStore:
    """Ordered, role-tagged conversation history.

    Starts with one seeded assistant greeting. The only mutation besides
    ``append`` is ``rollback_last``, which undoes a trailing user message whose
    round trip failed. Readers always get an immutable snapshot.
    """

    def __init__(self, greeting: Optional[str] = None):
        if greeting is None:
            from fitcoach.config import Config
            greeting = Config.COACH_GREETING
        self._lock = threading.Lock()
        self._messages: List[Message] = [Message(role="assistant", content=greeting)]

    def append(self, message: Message) -> Message:
        if message.role not in ROLES:
            raise ValueError(f"Unsupported role: {message.role!r}")
        with self._lock:
            self._messages.append(message)
        return message

    def rollback_last(self, expected: Optional[Message] = None) -> Message:
        """Remove the trailing user message and return it.

        Raises:
            ValueError: if the last entry is the seed greeting, is not a user
                message, or is not ``expected``.
        """
        with self._lock:
            if len(self._messages) <= 1:
                raise ValueError("Nothing to roll back")
            last = self._messages[-1]
            if last.role != "user":
                raise ValueError("Only a trailing user message can be rolled back")
            if expected is not None and last is not expected:
                raise ValueError("Trailing message is not the one being rolled back")
            return self._messages.pop()

    def snapshot(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def last(self) -> Message:
        with self._lock:
            return self._messages[-1]

    def to_dicts(self) -> List[Dict]:
        return [msg.to_dict() for msg in self.snapshot()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
