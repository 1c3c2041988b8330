"""Error taxonomy shared by every session component.

Each error carries a stable ``kind`` string. Components raise these; the
session orchestrator is the only place that catches them and turns them into
notifications.
"""


class CoachError(Exception):
    """Base class for recoverable, turn-local failures."""

    kind = "coachError"
    title = "Error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# Coach gateway

class RateLimitedError(CoachError):
    kind = "rateLimited"
    default_message = "Rate limits exceeded. Please try again later."


class QuotaExhaustedError(CoachError):
    kind = "quotaExhausted"
    default_message = "AI credits depleted. Please add credits to continue."


class TransportError(CoachError):
    kind = "transport"
    default_message = "Failed to get response from AI Coach"


class MalformedResponseError(CoachError):
    kind = "malformedResponse"
    default_message = "The AI Coach returned an unexpected response"


# Speech capture / playback

class CaptureUnavailableError(CoachError):
    kind = "captureUnavailable"
    title = "Voice Input Unavailable"
    default_message = "Speech recognition is not available on this device"


class CaptureFailedError(CoachError):
    kind = "captureFailed"
    title = "Voice Input Error"
    default_message = "Speech recognition stopped unexpectedly"


class PlaybackFailedError(CoachError):
    kind = "playbackFailed"
    title = "Playback Error"
    default_message = "Could not play the coach's reply"


class PermissionDeniedError(CoachError):
    kind = "permissionDenied"
    title = "Microphone Blocked"
    default_message = "Microphone access was denied"


class MicrophoneBusyError(CoachError):
    kind = "microphoneBusy"
    title = "Microphone Busy"
    default_message = "The microphone is already in use"


# Live voice

class VoiceAuthFailedError(CoachError):
    kind = "voiceAuthFailed"
    title = "Voice Error"
    default_message = "Failed to get signed URL"


class VoiceHandshakeFailedError(CoachError):
    kind = "voiceHandshakeFailed"
    title = "Voice Error"
    default_message = "Voice connection failed. Please try again."


class LiveVoiceBusyError(CoachError):
    kind = "liveVoiceBusy"
    title = "Voice Error"
    default_message = "A voice conversation is already starting"
