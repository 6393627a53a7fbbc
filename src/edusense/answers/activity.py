"""Activity bookkeeping hook (streaks, points).

The answer pipeline reports each answered question here. Gamification
lives outside this service, so the default binding only logs.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ActivityTracker(ABC):
    @abstractmethod
    async def record_question(self, user_id: str) -> None:
        """Record that ``user_id`` asked a question."""


class NoopActivityTracker(ActivityTracker):
    async def record_question(self, user_id: str) -> None:
        logger.debug(f"[Activity] Question recorded for user {user_id}")


_tracker: ActivityTracker | None = None


def get_activity_tracker() -> ActivityTracker:
    global _tracker
    if _tracker is None:
        _tracker = NoopActivityTracker()
    return _tracker
