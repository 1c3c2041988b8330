"""Data models for the coach session."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Role = Literal["user", "assistant"]
ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Message:
    """A single transcript entry. Immutable once appended."""
    role: Role
    content: str
    created_at: float = field(default_factory=time.time)  # Unix timestamp

    def to_dict(self):
        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at
        }

    def to_wire(self):
        """Shape sent to the text backend (no timestamps)."""
        return {
            "role": self.role,
            "content": self.content
        }


@dataclass
class ContextBundle:
    """Profile plus recent activity attached to one gateway request."""
    profile: Optional[Dict[str, Any]] = None
    recent_workouts: List[Dict[str, Any]] = field(default_factory=list)  # most recent first
    recent_meals: List[Dict[str, Any]] = field(default_factory=list)  # most recent first

    def to_payload(self) -> Dict[str, Any]:
        return {
            "userProfile": self.profile,
            "recentWorkouts": list(self.recent_workouts),
            "recentMeals": list(self.recent_meals)
        }


@dataclass
class TranscriptEvent:
    """An interim or final speech recognition result."""
    text: str
    is_final: bool  # True for final transcript, False for interim
    ts: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            "ts": self.ts,
            "text": self.text,
            "is_final": self.is_final
        }


@dataclass(frozen=True)
class Notification:
    """A user-visible notice (toast) emitted by the session."""
    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"
    kind: Optional[str] = None  # error kind, None for informational notices
    ts: float = field(default_factory=time.time)

    def to_dict(self):
        return {
            "title": self.title,
            "description": self.description,
            "variant": self.variant,
            "kind": self.kind,
            "ts": self.ts
        }
