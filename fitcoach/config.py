"""Configuration management for API keys and settings."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# config.py is in fitcoach/, .env is in project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)


DEFAULT_GREETING = (
    "Hi! I'm your FitCoach AI Coach. Ask me anything about fitness, workouts, "
    "nutrition, or meal planning!"
)


class Config:
    """Application configuration from environment variables."""

    # Coach gateway: "function" (hosted ai-chat function) or "completions" (direct)
    COACH_GATEWAY_TYPE: str = os.getenv("COACH_GATEWAY_TYPE", "function")

    # Managed data store (profiles, workouts, meals) and hosted functions
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "http://127.0.0.1:54321").rstrip("/")
    SUPABASE_ANON_KEY: Optional[str] = os.getenv("SUPABASE_ANON_KEY")
    COACH_FUNCTION_URL: str = os.getenv("COACH_FUNCTION_URL", f"{SUPABASE_URL}/functions/v1/ai-chat")

    # Direct OpenAI-compatible completions endpoint
    COMPLETIONS_URL: str = os.getenv("COMPLETIONS_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
    COMPLETIONS_API_KEY: Optional[str] = os.getenv("COMPLETIONS_API_KEY")
    COMPLETIONS_MODEL: str = os.getenv("COMPLETIONS_MODEL", "google/gemini-2.5-flash")

    # Transport timeout for gateway calls; there is no other turn timeout
    GATEWAY_TIMEOUT_SECONDS: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "90"))

    # Context bundle
    CONTEXT_LIMIT: int = int(os.getenv("CONTEXT_LIMIT", "10"))
    CONTEXT_WINDOW_DAYS: int = int(os.getenv("CONTEXT_WINDOW_DAYS", "0"))  # 0 = unbounded

    COACH_GREETING: str = os.getenv("COACH_GREETING", DEFAULT_GREETING)

    # Speech capture (Deepgram streaming)
    DEEPGRAM_API_KEY: Optional[str] = os.getenv("DEEPGRAM_API_KEY")
    DEEPGRAM_MODEL: str = os.getenv("DEEPGRAM_MODEL", "nova-2")
    CAPTURE_SAMPLE_RATE: int = int(os.getenv("CAPTURE_SAMPLE_RATE", "16000"))
    CAPTURE_SILENCE_TIMEOUT_SECONDS: float = float(os.getenv("CAPTURE_SILENCE_TIMEOUT_SECONDS", "8"))

    # Speech playback (ElevenLabs text-to-speech)
    ELEVENLABS_API_KEY: Optional[str] = os.getenv("ELEVENLABS_API_KEY")
    ELEVENLABS_VOICE_ID: str = os.getenv("ELEVENLABS_VOICE_ID", "pNInz6obpgDQGcFmaJgB")
    ELEVENLABS_TTS_MODEL: str = os.getenv("ELEVENLABS_TTS_MODEL", "eleven_turbo_v2_5")
    PLAYBACK_SAMPLE_RATE: int = int(os.getenv("PLAYBACK_SAMPLE_RATE", "16000"))

    # Live voice agent
    VOICE_BROKER_URL: str = os.getenv("VOICE_BROKER_URL", f"{SUPABASE_URL}/functions/v1/elevenlabs-signed-url")
    VOICE_AGENT_ID: Optional[str] = os.getenv("VOICE_AGENT_ID")
    VOICE_HANDSHAKE_TIMEOUT_SECONDS: float = float(os.getenv("VOICE_HANDSHAKE_TIMEOUT_SECONDS", "10"))

    # Server
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8010"))

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        if not cls.SUPABASE_ANON_KEY:
            missing.append("SUPABASE_ANON_KEY")

        if cls.COACH_GATEWAY_TYPE == "completions" and not cls.COMPLETIONS_API_KEY:
            missing.append("COMPLETIONS_API_KEY (required when COACH_GATEWAY_TYPE=completions)")

        # Voice features degrade to captureUnavailable / playbackFailed without these
        if not cls.DEEPGRAM_API_KEY:
            missing.append("DEEPGRAM_API_KEY (speech capture disabled)")
        if not cls.ELEVENLABS_API_KEY:
            missing.append("ELEVENLABS_API_KEY (speech playback disabled)")
        if not cls.VOICE_AGENT_ID:
            missing.append("VOICE_AGENT_ID (live voice disabled)")

        return missing


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the server process."""
    logging.basicConfig(
        level=(level or Config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
