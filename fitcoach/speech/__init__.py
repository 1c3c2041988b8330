"""Local speech capture and playback."""

from fitcoach.speech.capture import CaptureHandle, SpeechCaptureController
from fitcoach.speech.playback import SpeechPlaybackController
from fitcoach.speech.recognizer import DeepgramRecognizer, Recognizer
from fitcoach.speech.synthesizer import ElevenLabsSynthesizer, Synthesizer

__all__ = [
    "CaptureHandle",
    "SpeechCaptureController",
    "SpeechPlaybackController",
    "Recognizer",
    "DeepgramRecognizer",
    "Synthesizer",
    "ElevenLabsSynthesizer",
]
