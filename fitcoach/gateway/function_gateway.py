"""Gateway backed by the hosted ai-chat function."""

from typing import Optional, Sequence

import httpx

from fitcoach.errors import MalformedResponseError
from fitcoach.gateway.base_gateway import BaseGateway
from fitcoach.models import ContextBundle, Message


class FunctionGateway(BaseGateway):
    """Posts the transcript and raw context; the function builds the prompt."""

    name = "function"

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        from fitcoach.config import Config

        self.url = url or Config.COACH_FUNCTION_URL
        self.api_key = api_key or Config.SUPABASE_ANON_KEY or ""
        self.access_token = access_token or self.api_key

    async def send(self, transcript: Sequence[Message], context: ContextBundle) -> str:
        payload = {"messages": [m.to_wire() for m in transcript]}
        payload.update(context.to_payload())

        headers = {
            "Content-Type": "application/json",
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
        }

        response = await self._post(self.url, payload, headers)
        data = self._json(response)

        if data.get("error"):
            raise MalformedResponseError(str(data["error"]))

        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            raise MalformedResponseError("The AI Coach reply was missing a message")
        return message
