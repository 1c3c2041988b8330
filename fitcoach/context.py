"""Context aggregation: profile plus recent activity for each coach request."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Optional

from fitcoach.errors import TransportError
from fitcoach.models import ContextBundle
from fitcoach.stores import ActivityStore, ProfileStore

logger = logging.getLogger(__name__)


class ContextAggregator:
    """Builds a fresh ContextBundle per request; never cached."""

    def __init__(
        self,
        profiles: ProfileStore,
        activity: ActivityStore,
        limit: Optional[int] = None,
        window_days: Optional[int] = None,
    ) -> None:
        from fitcoach.config import Config
        self._profiles = profiles
        self._activity = activity
        self.limit = limit if limit is not None else Config.CONTEXT_LIMIT
        self.window_days = window_days if window_days is not None else Config.CONTEXT_WINDOW_DAYS

    def _since(self) -> Optional[date]:
        if self.window_days <= 0:
            return None
        return date.today() - timedelta(days=self.window_days)

    async def fetch(self, user_id: str) -> ContextBundle:
        """Run the three reads concurrently and settle all of them.

        A failed read leaves its field empty. Only when every read fails is the
        turn failed with TransportError.
        """
        since = self._since()
        profile, workouts, meals = await asyncio.gather(
            self._profiles.get_profile(user_id),
            self._activity.list_workouts(user_id, since, self.limit),
            self._activity.list_meals(user_id, since, self.limit),
            return_exceptions=True,
        )

        failures = [
            (name, result)
            for name, result in (("profile", profile), ("workouts", workouts), ("meals", meals))
            if isinstance(result, BaseException)
        ]
        if len(failures) == 3:
            raise TransportError("Could not load your profile or recent activity") from failures[0][1]
        for name, exc in failures:
            logger.warning("[CONTEXT] %s read failed for user %s: %r", name, user_id, exc)

        return ContextBundle(
            profile=None if isinstance(profile, BaseException) else profile,
            recent_workouts=[] if isinstance(workouts, BaseException) else list(workouts or [])[: self.limit],
            recent_meals=[] if isinstance(meals, BaseException) else list(meals or [])[: self.limit],
        )
