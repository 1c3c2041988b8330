"""Read-only collaborators for profile and activity data."""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional, Tuple


class ProfileStore(ABC):
    """Source of profile snapshots."""

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the user's profile row, or None when not found."""
        pass


class ActivityStore(ABC):
    """Source of workout and meal records, ordered by date descending."""

    @abstractmethod
    async def list_workouts(self, user_id: str, since: Optional[date], limit: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_meals(self, user_id: str, since: Optional[date], limit: int) -> List[Dict[str, Any]]:
        pass


def create_stores(
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    access_token: Optional[str] = None,
) -> Tuple[ProfileStore, ActivityStore]:
    """Factory for the configured store backend.

    Returns:
        (profile_store, activity_store); the REST backend serves both.
    """
    from fitcoach.stores.rest_store import RestStore
    store = RestStore(base_url=base_url, api_key=api_key, access_token=access_token)
    return store, store


__all__ = ["ProfileStore", "ActivityStore", "create_stores"]
