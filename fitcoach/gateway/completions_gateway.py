"""Gateway that calls an OpenAI-compatible chat completions endpoint directly."""

from typing import Optional, Sequence

import httpx

from fitcoach.errors import MalformedResponseError, QuotaExhaustedError, RateLimitedError
from fitcoach.gateway.base_gateway import BaseGateway
from fitcoach.models import ContextBundle, Message
from fitcoach.prompt import build_chat_messages


class CompletionsGateway(BaseGateway):
    """Folds context into a system prompt in-process, then asks the model."""

    name = "completions"

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        from fitcoach.config import Config

        self.url = url or Config.COMPLETIONS_URL
        self.api_key = api_key or Config.COMPLETIONS_API_KEY
        self.model = model or Config.COMPLETIONS_MODEL

        if not self.api_key:
            raise ValueError(
                "COMPLETIONS_API_KEY is required for the completions gateway. "
                "Please set it in your .env file or environment variables."
            )

    def _check_status(self, response: httpx.Response) -> None:
        # upstream error bodies are provider-specific; surface the coach texts
        if response.status_code == 429:
            raise RateLimitedError()
        if response.status_code == 402:
            raise QuotaExhaustedError()
        super()._check_status(response)

    async def send(self, transcript: Sequence[Message], context: ContextBundle) -> str:
        payload = {
            "model": self.model,
            "messages": build_chat_messages(transcript, context),
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        response = await self._post(self.url, payload, headers)
        data = self._json(response)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("The AI Coach reply was missing a message") from e

        if not isinstance(content, str) or not content.strip():
            raise MalformedResponseError("The AI Coach reply was empty")
        return content
