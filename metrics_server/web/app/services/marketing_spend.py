"""
Marketing Spend Reader

Sums ad spend and conversions over the trailing window. The conversions
total never drops below one so CAC stays defined; this is a smoothing
policy, not a measured value.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import RetryPolicy
from ..models import MarketingCampaign
from ..schemas import MarketingSpend, PartialDataWarning
from .logging_service import get_logger
from .retry import call_with_retry

logger = get_logger("marketing")

MIN_CONVERSIONS = 1


class MarketingSpendReader:

    def __init__(self, session_factory: async_sessionmaker, retry: RetryPolicy, window_days: int = 30):
        self.session_factory = session_factory
        self.retry = retry
        self.window_days = window_days

    async def _read_rows(self, since) -> List[Tuple[int, int]]:
        async with self.session_factory() as session:
            result = await session.execute(
                sa.select(MarketingCampaign.ad_spend, MarketingCampaign.conversions)
                .where(MarketingCampaign.date >= since)
            )
            return [(row.ad_spend or 0, row.conversions or 0) for row in result]

    async def read(self, now: datetime) -> Tuple[MarketingSpend, List[PartialDataWarning]]:
        since = (now - timedelta(days=self.window_days)).date()
        try:
            rows = await call_with_retry(
                lambda: self._read_rows(since),
                self.retry,
                retry_on=(SQLAlchemyError, OSError),
                description="marketing spend read",
            )
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Marketing spend degraded to zero", extra={"error": repr(e)})
            return (
                MarketingSpend(window_days=self.window_days),
                [PartialDataWarning(
                    field="cac",
                    source="marketing",
                    message=f"marketing spend unavailable: {type(e).__name__}",
                )],
            )

        total_ad_spend = max(sum(spend for spend, _ in rows), 0)
        total_conversions = max(sum(conversions for _, conversions in rows), MIN_CONVERSIONS)
        spend = MarketingSpend(
            total_ad_spend=total_ad_spend,
            total_conversions=total_conversions,
            window_days=self.window_days,
            row_count=len(rows),
        )
        logger.log_step("Marketing spend read", rows=len(rows), total_ad_spend=total_ad_spend)
        return spend, []
