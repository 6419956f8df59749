"""
Cohort Builder

Buckets every user by signup month and counts the ones currently on a
paid tier. Conversion reflects the tier at computation time, not at any
point in the cohort's history.
"""

import asyncio
from typing import Dict, Iterable, List

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import RetryPolicy
from ..exceptions import ComputationError
from ..models import Profile
from ..schemas import CohortBucket, UserSignup
from .logging_service import get_logger
from .retry import call_with_retry

logger = get_logger("cohorts")

FREE_TIER = "free"
STREAM_BATCH_SIZE = 1000


def build_cohorts(users: Iterable[UserSignup]) -> Dict[str, CohortBucket]:
    """Group users by YYYY-MM of signup; keys come back sorted."""
    counts: Dict[str, List[int]] = {}
    for user in users:
        month = user.created_at.strftime("%Y-%m")
        bucket = counts.setdefault(month, [0, 0])
        bucket[0] += 1
        if user.current_tier and user.current_tier != FREE_TIER:
            bucket[1] += 1
    return {
        month: CohortBucket(signups=signups, conversions=conversions)
        for month, (signups, conversions) in sorted(counts.items())
    }


class CohortBuilder:

    def __init__(self, session_factory: async_sessionmaker, retry: RetryPolicy):
        self.session_factory = session_factory
        self.retry = retry

    async def _load_population(self) -> List[UserSignup]:
        users: List[UserSignup] = []
        async with self.session_factory() as session:
            stream = await session.stream(
                sa.select(Profile.created_at, Profile.membership_tier)
                .order_by(Profile.created_at.asc())
                .execution_options(yield_per=STREAM_BATCH_SIZE)
            )
            async for row in stream:
                users.append(UserSignup(created_at=row.created_at, current_tier=row.membership_tier))
        return users

    async def build(self) -> Dict[str, CohortBucket]:
        """
        Build cohorts from the full signup history.

        Raises:
            ComputationError: If the population cannot be read
        """
        try:
            users = await call_with_retry(
                self._load_population,
                self.retry,
                retry_on=(SQLAlchemyError, OSError),
                description="cohort population read",
            )
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise ComputationError(f"Cohort population unavailable: {e!r}") from e

        cohorts = build_cohorts(users)
        logger.log_step("Cohorts built", users=len(users), months=len(cohorts))
        return cohorts
