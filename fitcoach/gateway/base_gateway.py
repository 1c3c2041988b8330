"""Abstract base class for coach gateways."""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from fitcoach.errors import (
    MalformedResponseError,
    QuotaExhaustedError,
    RateLimitedError,
    TransportError,
)
from fitcoach.models import ContextBundle, Message

logger = logging.getLogger(__name__)


class BaseGateway(ABC):
    """One non-streaming request per turn; no retries."""

    name = "base"

    def __init__(self, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        """Initialize the gateway.

        Args:
            timeout: Transport timeout in seconds (defaults to Config.GATEWAY_TIMEOUT_SECONDS)
            client: Shared AsyncClient; a short-lived client is used per call when omitted
        """
        from fitcoach.config import Config
        self.timeout = timeout or Config.GATEWAY_TIMEOUT_SECONDS
        self._client = client

    @abstractmethod
    async def send(self, transcript: Sequence[Message], context: ContextBundle) -> str:
        """Send the full transcript plus context and return the assistant reply.

        Args:
            transcript: Snapshot of the conversation, oldest first
            context: Profile and recent activity for this turn

        Returns:
            Assistant message text

        Raises:
            RateLimitedError, QuotaExhaustedError, TransportError, MalformedResponseError
        """
        pass

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("[GATEWAY] %s request failed: %r", self.name, e)
            raise TransportError(f"Network connection failed: {e}") from e

        self._check_status(response)
        return response

    def _check_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        detail = self._error_text(response)
        logger.warning("[GATEWAY] %s returned HTTP %s: %s", self.name, status, detail)

        if status == 429:
            raise RateLimitedError(detail)
        if status == 402:
            raise QuotaExhaustedError(detail)
        raise TransportError(detail or f"AI gateway error: {status}")

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        """Backend error text, surfaced verbatim when it is present."""
        try:
            data = response.json()
        except ValueError:
            return response.text.strip()[:400]
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            if error:
                return str(error)
        return ""

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("The AI Coach response was not valid JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError()
        return data
