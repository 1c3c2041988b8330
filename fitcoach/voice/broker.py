"""Exchange an agent id for a short-lived signed realtime URL."""

import logging
from typing import Optional

import httpx

from fitcoach.errors import VoiceAuthFailedError

logger = logging.getLogger(__name__)


class VoiceBroker:
    """Client of the hosted signed-url function."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        from fitcoach.config import Config
        self.url = url or Config.VOICE_BROKER_URL
        self.api_key = api_key or Config.SUPABASE_ANON_KEY or ""
        self.timeout = timeout
        self._client = client

    async def get_signed_url(self, agent_id: str) -> str:
        if not agent_id:
            raise VoiceAuthFailedError("No voice agent is configured (VOICE_AGENT_ID missing)")

        headers = {
            "Content-Type": "application/json",
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        body = {"agentId": agent_id}

        try:
            if self._client is not None:
                r = await self._client.post(self.url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.post(self.url, json=body, headers=headers)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as e:
            logger.warning("[LIVE] broker returned HTTP %s", e.response.status_code)
            raise VoiceAuthFailedError(f"Voice authorization failed: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("[LIVE] broker request failed: %r", e)
            raise VoiceAuthFailedError(f"Voice authorization failed: {e}") from e
        except ValueError as e:
            raise VoiceAuthFailedError("Voice authorization returned invalid JSON") from e

        if not isinstance(data, dict):
            raise VoiceAuthFailedError()
        if data.get("error"):
            raise VoiceAuthFailedError(str(data["error"]))

        signed_url = data.get("signedUrl")
        if not signed_url:
            raise VoiceAuthFailedError("Failed to get signed URL")
        return signed_url
