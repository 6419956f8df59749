"""
Builders for billing payloads, subscription records and snapshots.
"""
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from metrics_server.web.app.config import TierMapping
from metrics_server.web.app.schemas import (
    BillingSnapshot,
    CohortBucket,
    GrowthRates,
    MarketingSpend,
    SubscriptionRecord,
    SubscriptionStatus,
    UsageCounts,
)
from metrics_server.web.app.services.billing_collector import classify_revenue
from metrics_server.web.app.services.metrics_engine import assemble_snapshot
from metrics_server.web.app.services.unit_economics import compute_churn, compute_unit_economics

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)

INVESTOR_PRICE = "price_1Sbv2KHVQx2jO318h20jYHWa"
ELITE_PRICE = "price_1Sbv2UHVQx2jO318S54njLC4"


def ts(value: datetime) -> int:
    return int(value.timestamp())


def make_subscription(
    sub_id: str,
    price_id: Optional[str] = INVESTOR_PRICE,
    unit_amount: Optional[int] = 2900,
    status: str = "active",
    created: Optional[datetime] = NOW,
    canceled_at: Optional[datetime] = None,
) -> Dict:
    """A Stripe subscription object with one expanded line item."""
    price = {"id": price_id, "unit_amount": unit_amount} if price_id is not None else None
    return {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "created": ts(created) if created is not None else None,
        "canceled_at": ts(canceled_at) if canceled_at is not None else None,
        "items": {"data": [{"id": f"si_{sub_id}", "price": price}]},
    }


def make_record(
    sub_id: str,
    price_id: str = INVESTOR_PRICE,
    unit_amount: int = 2900,
    status: SubscriptionStatus = SubscriptionStatus.active,
    canceled_at: Optional[datetime] = None,
) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=sub_id,
        item_id=f"si_{sub_id}",
        price_identifier=price_id,
        unit_amount=unit_amount,
        status=status,
        created_at=NOW,
        canceled_at=canceled_at,
    )


def build_snapshot(
    active: Sequence[SubscriptionRecord] = (),
    usage: UsageCounts = UsageCounts(),
    cohorts: Optional[Dict[str, CohortBucket]] = None,
    generated_at: datetime = NOW,
):
    """Run the pure part of the pipeline to get a consistent MetricsSnapshot."""
    mapping = TierMapping()
    billing = BillingSnapshot(active=tuple(active))
    revenue = classify_revenue(billing.active, mapping)
    churn = compute_churn(0, revenue.total_subscribers)
    economics = compute_unit_economics(
        mrr=revenue.mrr,
        total_subscribers=revenue.total_subscribers,
        churn_rate=churn.churn_rate,
        total_ad_spend=0,
        total_conversions=1,
    )
    return assemble_snapshot(
        generated_at=generated_at,
        tier_mapping_version=mapping.version,
        billing=billing,
        revenue=revenue,
        churn=churn,
        economics=economics,
        growth=GrowthRates(),
        usage=usage,
        spend=MarketingSpend(),
        cohorts=cohorts or {},
        warnings=[],
    )
