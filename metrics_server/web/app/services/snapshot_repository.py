"""
Append-only store of computed metrics snapshots.
"""

from typing import List

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models import AdminMetricsSnapshot
from ..schemas import MetricsSnapshot
from .logging_service import get_logger

logger = get_logger("snapshots")


class SnapshotRepository:
    """Snapshots are inserted, never updated, so history stays auditable."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def append(self, snapshot: MetricsSnapshot) -> AdminMetricsSnapshot:
        row = AdminMetricsSnapshot(
            snapshot_date=snapshot.generated_at.date(),
            generated_at=snapshot.generated_at,
            mrr=snapshot.mrr,
            arr=snapshot.arr,
            total_users=snapshot.total_users,
            total_subscribers=snapshot.total_subscribers,
            total_revenue=snapshot.total_revenue_all_time,
            recent_revenue=snapshot.recent_revenue,
            churn_count=snapshot.churn_count,
            churn_rate=snapshot.churn_rate,
            tier_mapping_version=snapshot.tier_mapping_version,
            payload=snapshot.model_dump(mode="json", by_alias=True),
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        logger.log_step("Snapshot saved", snapshot_date=str(row.snapshot_date))
        return row

    async def append_in_background(self, snapshot: MetricsSnapshot) -> None:
        """
        Persist after the response has been sent.

        The caller never waits on this, so a failure is logged rather than
        raised.
        """
        try:
            await self.append(snapshot)
        except (SQLAlchemyError, OSError):
            logger.exception(
                "Error saving snapshot",
                extra={"generated_at": snapshot.generated_at.isoformat()},
            )

    async def recent(self, limit: int = 60) -> List[AdminMetricsSnapshot]:
        async with self.session_factory() as session:
            result = await session.execute(
                sa.select(AdminMetricsSnapshot)
                .order_by(AdminMetricsSnapshot.snapshot_date.desc(), AdminMetricsSnapshot.generated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
