"""Dashboard data service.

Provides the rank label and today/total task counters for the dashboard.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.models.schemas import DashboardSummaryResponse
from omnicalendar.models.task import TaskItem
from omnicalendar.models.user import User

logger = logging.getLogger(__name__)


# (minimum experience, rank), highest threshold first
RANK_THRESHOLDS: list[tuple[int, str]] = [
    (10000, "Legend"),
    (1000, "Master"),
    (100, "Advanced"),
    (10, "Intermediate"),
    (1, "Beginner"),
]
LOWEST_RANK = "Junior"


def get_rank_for_experience(xp: int) -> str:
    """Map experience points to a rank label (thresholds are inclusive)."""
    for minimum, rank in RANK_THRESHOLDS:
        if xp >= minimum:
            return rank
    return LOWEST_RANK


def utc_today() -> date:
    """Current calendar date in UTC."""
    return datetime.now(timezone.utc).date()


class DashboardService:
    """Service for dashboard data aggregation."""

    def __init__(self, db: AsyncSession, user: User):
        """Initialize dashboard service.

        Args:
            db: Database session.
            user: Resolved current user; every query is scoped to it.
        """
        self.db = db
        self.user = user

    async def get_summary(self, today: Optional[date] = None) -> DashboardSummaryResponse:
        """Get dashboard summary.

        Args:
            today: Reference date (defaults to the current UTC date).

        Returns:
            Rank, experience and done/left counters for today and overall.
        """
        today = today or utc_today()

        today_done, today_left = await self._count_by_completion(TaskItem.due_date == today)
        total_done, total_left = await self._count_by_completion()

        return DashboardSummaryResponse(
            rank=get_rank_for_experience(self.user.experience_points),
            experience_points=self.user.experience_points,
            today_done=today_done,
            today_left=today_left,
            total_done=total_done,
            total_left=total_left,
        )

    async def _count_by_completion(self, *criteria) -> tuple[int, int]:
        """Count the user's tasks matching ``criteria`` as (done, left)."""
        query = (
            select(TaskItem.is_completed, func.count(TaskItem.id))
            .where(TaskItem.user_id == self.user.id, *criteria)
            .group_by(TaskItem.is_completed)
        )
        result = await self.db.execute(query)
        counts = {bool(is_completed): count for is_completed, count in result.all()}
        return counts.get(True, 0), counts.get(False, 0)
