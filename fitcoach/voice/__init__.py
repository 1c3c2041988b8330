"""Live duplex voice conversation with a realtime agent."""

from fitcoach.voice.broker import VoiceBroker
from fitcoach.voice.live_session import LiveVoiceController, LiveVoiceHandle
from fitcoach.voice.transport import ConvaiTransport, RealtimeTransport, TransportEvents

__all__ = [
    "VoiceBroker",
    "LiveVoiceController",
    "LiveVoiceHandle",
    "ConvaiTransport",
    "RealtimeTransport",
    "TransportEvents",
]
