from datetime import timedelta

import pytest

from metrics_server.web.app.models import MarketingCampaign
from metrics_server.web.app.schemas import MarketingSpend
from metrics_server.web.app.services.marketing_spend import MarketingSpendReader
from tests.fixtures import NOW


async def add_campaigns(session_factory, *rows):
    async with session_factory() as session:
        session.add_all([
            MarketingCampaign(date=(NOW - timedelta(days=days_ago)).date(), channel=channel,
                              ad_spend=spend, conversions=conversions)
            for days_ago, channel, spend, conversions in rows
        ])
        await session.commit()


@pytest.mark.asyncio
async def test_sums_spend_inside_window(session_factory, retry_policy):
    await add_campaigns(
        session_factory,
        (5, "meta", 30000, 6),
        (10, "google", 20000, 4),
        (45, "google", 99999, 50),
    )
    reader = MarketingSpendReader(session_factory, retry_policy, window_days=30)

    spend, warnings = await reader.read(NOW)

    assert warnings == []
    assert spend.total_ad_spend == 50000
    assert spend.total_conversions == 10
    assert spend.row_count == 2


@pytest.mark.asyncio
async def test_conversions_never_drop_below_one(session_factory, retry_policy):
    await add_campaigns(
        session_factory,
        (3, "meta", 30000, 0),
        (4, "tiktok", None, None),
    )
    reader = MarketingSpendReader(session_factory, retry_policy)

    spend, _ = await reader.read(NOW)

    assert spend.total_ad_spend == 30000
    assert spend.total_conversions == 1


@pytest.mark.asyncio
async def test_no_rows_gives_zero_spend(session_factory, retry_policy):
    reader = MarketingSpendReader(session_factory, retry_policy)

    spend, warnings = await reader.read(NOW)

    assert spend == MarketingSpend(window_days=30)
    assert warnings == []


@pytest.mark.asyncio
async def test_unreadable_table_degrades_with_warning(empty_session_factory, retry_policy):
    reader = MarketingSpendReader(empty_session_factory, retry_policy)

    spend, warnings = await reader.read(NOW)

    assert spend.total_ad_spend == 0
    assert spend.total_conversions == 1
    assert [(w.field, w.source) for w in warnings] == [("cac", "marketing")]
