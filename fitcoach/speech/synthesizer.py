"""Synthesizer abstraction for assistant text-to-speech."""

from abc import ABC, abstractmethod
import logging
import re
from typing import Callable, Optional

import httpx

from fitcoach.audio import SpeakerOutput
from fitcoach.errors import PlaybackFailedError

logger = logging.getLogger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"


class Synthesizer(ABC):
    """Abstract interface for text-to-speech output."""

    @abstractmethod
    async def speak(self, text: str) -> None:
        """Play text to completion.

        Cancelling the awaiting task must silence the audio immediately.

        Raises:
            PlaybackFailedError: synthesis or audio output failed
        """
        pass


_MARKDOWN_RE = re.compile(r"[*_`#>]+")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")


def prepare_text_for_speech(text: str) -> str:
    """Strip markdown so the voice does not read punctuation aloud."""
    text = _LINK_RE.sub(r"\1", text or "")
    text = _MARKDOWN_RE.sub("", text)
    text = re.sub(r"^\s*[-•]\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


class ElevenLabsSynthesizer(Synthesizer):
    """ElevenLabs text-to-speech rendered as raw PCM and played locally."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        sample_rate: Optional[int] = None,
        speaker_factory: Callable[..., SpeakerOutput] = SpeakerOutput,
        client: Optional[httpx.AsyncClient] = None,
    ):
        from fitcoach.config import Config
        self.api_key = api_key or Config.ELEVENLABS_API_KEY
        self.voice_id = voice_id or Config.ELEVENLABS_VOICE_ID
        self.model_id = model_id or Config.ELEVENLABS_TTS_MODEL
        self.sample_rate = sample_rate or Config.PLAYBACK_SAMPLE_RATE
        self._speaker_factory = speaker_factory
        self._client = client

    async def synthesize(self, text: str) -> bytes:
        """Return PCM16 mono audio for text."""
        if not self.api_key:
            raise PlaybackFailedError("Speech playback is not configured (ELEVENLABS_API_KEY missing)")

        url = f"{ELEVENLABS_BASE_URL}/text-to-speech/{self.voice_id}"
        params = {"output_format": f"pcm_{self.sample_rate}"}
        headers = {
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }
        body = {
            "text": prepare_text_for_speech(text),
            "model_id": self.model_id,
            "voice_settings": {
                "stability": 0.6,
                "similarity_boost": 0.8,
            },
        }

        try:
            if self._client is not None:
                r = await self._client.post(url, params=params, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=60) as client:
                    r = await client.post(url, params=params, json=body, headers=headers)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PlaybackFailedError(f"Text-to-speech error: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise PlaybackFailedError(f"Text-to-speech request failed: {e}") from e

        if not r.content:
            raise PlaybackFailedError("Text-to-speech returned no audio")
        return r.content

    async def speak(self, text: str) -> None:
        pcm = await self.synthesize(text)

        speaker = self._speaker_factory(sample_rate=self.sample_rate)
        try:
            speaker.open()
        except (ImportError, OSError) as e:
            speaker.close()
            raise PlaybackFailedError("No audio output device is available") from e
        except Exception as e:
            speaker.close()
            raise PlaybackFailedError(f"Could not open audio output: {e}") from e

        try:
            speaker.write(pcm)
            await speaker.drain()
        finally:
            speaker.close()
