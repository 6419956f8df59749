from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from metrics_server.web.app.models import AdminMetricsSnapshot
from metrics_server.web.app.services.growth_calculator import (
    GrowthRateCalculator,
    find_baseline,
    percent_change,
)
from metrics_server.web.app.services.snapshot_repository import SnapshotRepository
from tests.fixtures import NOW


def history_row(days_ago, mrr=10000, total_users=100, recent_revenue=5000):
    generated_at = NOW - timedelta(days=days_ago)
    return AdminMetricsSnapshot(
        snapshot_date=generated_at.date(),
        generated_at=generated_at,
        mrr=mrr,
        arr=mrr * 12,
        total_users=total_users,
        total_subscribers=4,
        total_revenue=recent_revenue,
        recent_revenue=recent_revenue,
        churn_count=0,
        churn_rate=0.0,
        tier_mapping_version="2025-01",
        payload={},
    )


def test_percent_change():
    assert percent_change(110, 100) == pytest.approx(10.0)
    assert percent_change(0, 100) == pytest.approx(-100.0)
    assert percent_change(500, 0) == 0.0
    assert percent_change(500, None) == 0.0


def test_find_baseline_picks_newest_row_past_lookback():
    history = [history_row(1), history_row(29), history_row(31, mrr=1), history_row(40, mrr=2)]

    baseline = find_baseline(history, NOW, lookback_days=30)

    assert baseline.mrr == 1


def test_find_baseline_without_old_enough_rows():
    assert find_baseline([history_row(1), history_row(10)], NOW, lookback_days=30) is None


@pytest.mark.asyncio
async def test_growth_against_persisted_baseline(session_factory, retry_policy):
    async with session_factory() as session:
        session.add_all([
            history_row(31, mrr=10000, total_users=100, recent_revenue=5000),
            history_row(10, mrr=15000, total_users=105, recent_revenue=6000),
        ])
        await session.commit()
    calculator = GrowthRateCalculator(SnapshotRepository(session_factory), retry_policy)

    growth, warnings = await calculator.calculate(NOW, mrr=12000, total_users=110, recent_revenue=4000)

    assert warnings == []
    assert growth.mrr_growth_mom == pytest.approx(20.0)
    assert growth.user_growth_mom == pytest.approx(10.0)
    assert growth.revenue_growth_mom == pytest.approx(-20.0)


@pytest.mark.asyncio
async def test_no_history_means_zero_growth(session_factory, retry_policy):
    calculator = GrowthRateCalculator(SnapshotRepository(session_factory), retry_policy)

    growth, warnings = await calculator.calculate(NOW, mrr=12000, total_users=110, recent_revenue=4000)

    assert warnings == []
    assert (growth.mrr_growth_mom, growth.user_growth_mom, growth.revenue_growth_mom) == (0.0, 0.0, 0.0)


@pytest.mark.asyncio
async def test_zero_baseline_field_gives_zero(retry_policy):
    repository = AsyncMock(spec=SnapshotRepository)
    repository.recent.return_value = [history_row(35, mrr=0, total_users=100, recent_revenue=0)]
    calculator = GrowthRateCalculator(repository, retry_policy)

    growth, _ = await calculator.calculate(NOW, mrr=12000, total_users=150, recent_revenue=4000)

    assert growth.mrr_growth_mom == 0.0
    assert growth.user_growth_mom == pytest.approx(50.0)
    assert growth.revenue_growth_mom == 0.0


@pytest.mark.asyncio
async def test_unreadable_history_degrades_with_warning(empty_session_factory, retry_policy):
    calculator = GrowthRateCalculator(SnapshotRepository(empty_session_factory), retry_policy)

    growth, warnings = await calculator.calculate(NOW, mrr=12000, total_users=110, recent_revenue=4000)

    assert (growth.mrr_growth_mom, growth.user_growth_mom, growth.revenue_growth_mom) == (0.0, 0.0, 0.0)
    assert [(w.field, w.source) for w in warnings] == [
        ("mrrGrowthMoM", "history"),
        ("userGrowthMoM", "history"),
        ("revenueGrowthMoM", "history"),
    ]
