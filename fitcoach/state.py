from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fitcoach.transcript import TranscriptStore


class LiveVoiceStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TurnState(str, Enum):
    IDLE = "idle"
    COMPOSING = "composing"
    SENDING = "sending"
    IDLE_WITH_ERROR = "idle-with-error"


@dataclass
class SessionState:
    transcript: TranscriptStore
    draft: str = ""
    pending: bool = False
    capturing: bool = False
    speaking: bool = False
    voice_enabled: bool = False
    live_voice_status: LiveVoiceStatus = LiveVoiceStatus.DISCONNECTED
    agent_speaking: bool = False
    live_voice_muted: bool = False
    last_error: Optional[str] = None  # kind of the last failed turn

    @property
    def turn_state(self) -> TurnState:
        if self.pending:
            return TurnState.SENDING
        if self.draft.strip():
            return TurnState.COMPOSING
        if self.last_error:
            return TurnState.IDLE_WITH_ERROR
        return TurnState.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_state": self.turn_state.value,
            "draft": self.draft,
            "pending": self.pending,
            "capturing": self.capturing,
            "speaking": self.speaking,
            "voice_enabled": self.voice_enabled,
            "live_voice_status": self.live_voice_status.value,
            "agent_speaking": self.agent_speaking,
            "live_voice_muted": self.live_voice_muted,
            "last_error": self.last_error,
            "transcript": self.transcript.to_dicts(),
        }
