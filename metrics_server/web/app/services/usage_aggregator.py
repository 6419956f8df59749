"""
Usage Aggregator

Counts platform activity for the metrics snapshot. Every count is an
independent query on its own session; a query that keeps failing degrades
its field to zero and reports a PartialDataWarning instead of failing the
snapshot.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import RetryPolicy
from ..models import (
    AIUsage, CommunityPost, Lesson, LessonProgress, Neighborhood, Profile, Property
)
from ..schemas import PartialDataWarning, UsageCounts
from .logging_service import get_logger
from .retry import call_with_retry

logger = get_logger("usage")


def _count(model, *criteria) -> sa.Select:
    stmt = sa.select(sa.func.count()).select_from(model)
    if criteria:
        stmt = stmt.where(*criteria)
    return stmt


class UsageAggregator:
    """Runs the product-usage count queries with bounded parallelism."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        retry: RetryPolicy,
        max_concurrency: int = 4,
    ):
        self.session_factory = session_factory
        self.retry = retry
        self.max_concurrency = max_concurrency

    def _build_queries(self, now: datetime) -> Dict[str, sa.Select]:
        """Field name on UsageCounts -> count statement."""
        seven_days_ago = now - timedelta(days=7)
        thirty_days_ago = now - timedelta(days=30)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "total_users": _count(Profile),
            "weekly_active_users": _count(Profile, Profile.last_sign_in_at >= seven_days_ago),
            "monthly_active_users": _count(Profile, Profile.last_sign_in_at >= thirty_days_ago),
            "total_properties": _count(Property),
            "total_neighborhoods": _count(Neighborhood),
            "total_lessons": _count(Lesson),
            "lessons_completed": _count(LessonProgress, LessonProgress.is_completed.is_(True)),
            "total_posts": _count(CommunityPost),
            "ai_queries_count": _count(AIUsage),
            "free_users": _count(Profile, sa.or_(Profile.membership_tier == "free", Profile.membership_tier.is_(None))),
            "new_signups_today": _count(Profile, Profile.created_at >= start_of_day),
        }

    async def _run_count(
        self,
        field: str,
        stmt: sa.Select,
        semaphore: asyncio.Semaphore,
    ) -> Tuple[str, int, Optional[PartialDataWarning]]:
        async def query() -> int:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar() or 0

        async with semaphore:
            try:
                value = await call_with_retry(
                    query,
                    self.retry,
                    retry_on=(SQLAlchemyError, OSError),
                    description=f"count {field}",
                )
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"Usage count degraded to 0: {field}", extra={"field": field, "error": repr(e)})
                return field, 0, PartialDataWarning(
                    field=_camel(field),
                    source="usage",
                    message=f"{field} unavailable: {type(e).__name__}",
                )
        return field, int(value), None

    async def collect(self, now: datetime) -> Tuple[UsageCounts, List[PartialDataWarning]]:
        """
        Run every count concurrently.

        Returns:
            (counts, warnings for the fields that degraded)
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*(
            self._run_count(field, stmt, semaphore)
            for field, stmt in self._build_queries(now).items()
        ))

        values = {field: value for field, value, _ in results}
        warnings = [warning for _, _, warning in results if warning is not None]
        counts = UsageCounts(**values)
        logger.log_step("Usage counts collected", degraded=len(warnings), total_users=counts.total_users)
        return counts, warnings


def _camel(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)
