"""PostgREST-style HTTP access to the managed data store."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from fitcoach.stores import ActivityStore, ProfileStore


class RestStore(ProfileStore, ActivityStore):
    """Reads ``profiles``, ``workouts`` and ``meals`` tables over REST."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        from fitcoach.config import Config
        self.base_url = (base_url or Config.SUPABASE_URL).rstrip("/")
        self.api_key = api_key or Config.SUPABASE_ANON_KEY or ""
        self.access_token = access_token or self.api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/rest/v1/{table}"
        if self._client is not None:
            r = await self._client.get(url, params=params, headers=self._headers())
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(url, params=params, headers=self._headers())
        r.raise_for_status()
        rows = r.json()
        if not isinstance(rows, list):
            raise ValueError(f"Unexpected {table} payload: {type(rows).__name__}")
        return rows

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._select("profiles", {"id": f"eq.{user_id}", "select": "*", "limit": "1"})
        return rows[0] if rows else None

    def _activity_params(self, user_id: str, since: Optional[date], limit: int) -> Dict[str, str]:
        params = {
            "user_id": f"eq.{user_id}",
            "select": "*",
            "order": "date.desc",
            "limit": str(int(limit)),
        }
        if since is not None:
            params["date"] = f"gte.{since.isoformat()}"
        return params

    async def list_workouts(self, user_id: str, since: Optional[date], limit: int) -> List[Dict[str, Any]]:
        return await self._select("workouts", self._activity_params(user_id, since, limit))

    async def list_meals(self, user_id: str, since: Optional[date], limit: int) -> List[Dict[str, Any]]:
        return await self._select("meals", self._activity_params(user_id, since, limit))
