"""
Growth Rate Calculator

Month-over-month deltas between the fresh figures and the most recent
persisted snapshot dated at least a lookback period ago.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..config import RetryPolicy
from ..models import AdminMetricsSnapshot
from ..schemas import GrowthRates, PartialDataWarning
from .logging_service import get_logger
from .retry import call_with_retry
from .snapshot_repository import SnapshotRepository

logger = get_logger("growth")

GROWTH_FIELDS = ("mrrGrowthMoM", "userGrowthMoM", "revenueGrowthMoM")


def percent_change(latest: float, historical: Optional[float]) -> float:
    if not historical:
        return 0.0
    return (latest - historical) / historical * 100


def find_baseline(
    history: Sequence[AdminMetricsSnapshot],
    now: datetime,
    lookback_days: int = 30,
) -> Optional[AdminMetricsSnapshot]:
    """Newest snapshot dated on or before now - lookback; history is newest first."""
    cutoff = (now - timedelta(days=lookback_days)).date()
    for row in history:
        if row.snapshot_date <= cutoff:
            return row
    return None


class GrowthRateCalculator:

    def __init__(
        self,
        repository: SnapshotRepository,
        retry: RetryPolicy,
        lookback_days: int = 30,
        history_limit: int = 60,
    ):
        self.repository = repository
        self.retry = retry
        self.lookback_days = lookback_days
        self.history_limit = history_limit

    async def load_history(self) -> List[AdminMetricsSnapshot]:
        return await call_with_retry(
            lambda: self.repository.recent(self.history_limit),
            self.retry,
            retry_on=(SQLAlchemyError, OSError),
            description="snapshot history read",
        )

    async def calculate(
        self,
        now: datetime,
        mrr: int,
        total_users: int,
        recent_revenue: int,
    ) -> Tuple[GrowthRates, List[PartialDataWarning]]:
        """
        Compare fresh figures against the baseline snapshot.

        No baseline, or a zero baseline value, yields 0 for that field;
        missing history is uninformative, not an error.
        """
        try:
            history = await self.load_history()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Snapshot history unavailable, growth set to 0", extra={"error": repr(e)})
            return GrowthRates(), [
                PartialDataWarning(
                    field=field,
                    source="history",
                    message=f"snapshot history unavailable: {type(e).__name__}",
                )
                for field in GROWTH_FIELDS
            ]

        baseline = find_baseline(history, now, self.lookback_days)
        if baseline is None:
            logger.log_step("No baseline snapshot for growth", history=len(history))
            return GrowthRates(), []

        growth = GrowthRates(
            mrr_growth_mom=percent_change(mrr, baseline.mrr),
            user_growth_mom=percent_change(total_users, baseline.total_users),
            revenue_growth_mom=percent_change(recent_revenue, baseline.recent_revenue),
        )
        logger.log_step("Growth calculated", baseline_date=str(baseline.snapshot_date))
        return growth, []
