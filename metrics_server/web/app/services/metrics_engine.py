"""
Investor Metrics Engine

Fans out to the billing, usage, marketing and cohort collectors, joins
their results and assembles one MetricsSnapshot:
- Revenue (MRR, ARR, tiers, B2C/B2B split)
- Unit economics (ARPU, LTV, CAC, LTV:CAC, payback)
- Churn and retention
- Month-over-month growth against persisted history
- Product usage counts and signup cohorts
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import EngineConfig, TierName
from ..exceptions import ComputationError, DeadlineExceeded, MetricsEngineError, unwrap_exception_group
from ..schemas import (
    BillingSnapshot,
    ChurnMetrics,
    CohortBucket,
    GrowthRates,
    MarketingSpend,
    MetricsSnapshot,
    PartialDataWarning,
    RevenueBreakdown,
    UnitEconomics,
    UsageCounts,
)
from .billing_collector import TRUNCATED_LISTING_FIELDS, BillingSnapshotCollector, classify_revenue
from .cohort_builder import CohortBuilder
from .growth_calculator import GrowthRateCalculator
from .logging_service import get_logger
from .marketing_spend import MarketingSpendReader
from .snapshot_repository import SnapshotRepository
from .unit_economics import compute_churn, compute_runway, compute_unit_economics
from .usage_aggregator import UsageAggregator

logger = get_logger("engine")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_invariants(
    revenue: RevenueBreakdown,
    churn: ChurnMetrics,
    usage: UsageCounts,
    billing: BillingSnapshot,
    cohorts: Dict[str, CohortBucket],
) -> None:
    """
    Reject internally inconsistent results before anything is assembled.

    Raises:
        ComputationError: With the offending inputs attached as context
    """
    problems: List[str] = []

    tier_revenue = sum(t.monthly_revenue for t in revenue.revenue_by_tier.values())
    if tier_revenue + revenue.unmapped_revenue != revenue.mrr:
        problems.append("mrr does not reconcile with tier revenue")

    tier_count = sum(t.active_count for t in revenue.revenue_by_tier.values())
    if tier_count + revenue.unmapped_active_count != revenue.total_subscribers:
        problems.append("subscriber count does not reconcile with tiers")

    if revenue.b2c_revenue + revenue.b2b_revenue + revenue.unmapped_revenue != revenue.mrr:
        problems.append("segment revenue does not reconcile with mrr")

    amounts = {
        "mrr": revenue.mrr,
        "total_revenue_all_time": billing.total_revenue_all_time,
        "recent_revenue": billing.recent_revenue,
        "churn_count": churn.churn_count,
        **usage.model_dump(),
    }
    negative = sorted(name for name, value in amounts.items() if value < 0)
    if negative:
        problems.append(f"negative values: {', '.join(negative)}")

    if not 0.0 <= churn.churn_rate <= 100.0:
        problems.append("churn rate outside [0, 100]")

    if any(b.signups < 0 or b.conversions < 0 or b.conversions > b.signups for b in cohorts.values()):
        problems.append("cohort counts inconsistent")

    if problems:
        context = {
            "problems": problems,
            "revenue": revenue.model_dump(mode="json"),
            "churn": churn.model_dump(),
            "usage": usage.model_dump(),
            "billing_items": len(billing.active),
        }
        logger.error("Metrics invariant violation", extra={"context": context})
        raise ComputationError("; ".join(problems), context=context)


def assemble_snapshot(
    generated_at: datetime,
    tier_mapping_version: str,
    billing: BillingSnapshot,
    revenue: RevenueBreakdown,
    churn: ChurnMetrics,
    economics: UnitEconomics,
    growth: GrowthRates,
    usage: UsageCounts,
    spend: MarketingSpend,
    cohorts: Dict[str, CohortBucket],
    warnings: List[PartialDataWarning],
) -> MetricsSnapshot:
    validate_invariants(revenue, churn, usage, billing, cohorts)
    monthly_burn, net_mrr = compute_runway(revenue.mrr, spend.total_ad_spend)

    return MetricsSnapshot(
        mrr=revenue.mrr,
        arr=economics.arr,
        total_revenue_all_time=billing.total_revenue_all_time,
        recent_revenue=billing.recent_revenue,
        b2c_revenue=revenue.b2c_revenue,
        b2b_revenue=revenue.b2b_revenue,
        revenue_by_tier=revenue.revenue_by_tier,
        arpu=economics.arpu,
        ltv=economics.ltv,
        cac=economics.cac,
        ltv_cac_ratio=economics.ltv_cac_ratio,
        payback_months=economics.payback_months,
        churn_rate=churn.churn_rate,
        churn_count=churn.churn_count,
        retention_rate=churn.retention_rate,
        mrr_growth_mom=growth.mrr_growth_mom,
        user_growth_mom=growth.user_growth_mom,
        revenue_growth_mom=growth.revenue_growth_mom,
        total_subscribers=revenue.total_subscribers,
        unmapped_subscribers=revenue.unmapped_active_count,
        subscriber_counts={
            tier: breakdown.active_count for tier, breakdown in revenue.revenue_by_tier.items()
        } | {TierName.unmapped.value: revenue.unmapped_active_count},
        cohorts=cohorts,
        monthly_burn=monthly_burn,
        net_mrr=net_mrr,
        tier_mapping_version=tier_mapping_version,
        warnings=sorted(warnings, key=lambda w: (w.field, w.source, w.message)),
        generated_at=generated_at,
        **usage.model_dump(),
    )


class MetricsEngine:
    """Computes one snapshot per call; it never persists anything itself."""

    def __init__(
        self,
        config: EngineConfig,
        billing: BillingSnapshotCollector,
        usage: UsageAggregator,
        marketing: MarketingSpendReader,
        cohorts: CohortBuilder,
        growth: GrowthRateCalculator,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.billing = billing
        self.usage = usage
        self.marketing = marketing
        self.cohorts = cohorts
        self.growth = growth
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        session_factory: async_sessionmaker,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "MetricsEngine":
        return cls(
            config=config,
            billing=BillingSnapshotCollector(
                config.billing,
                config.retry,
                client=http_client,
                window_days=config.churn_window_days,
            ),
            usage=UsageAggregator(session_factory, config.retry, config.max_concurrent_queries),
            marketing=MarketingSpendReader(session_factory, config.retry, config.marketing_window_days),
            cohorts=CohortBuilder(session_factory, config.retry),
            growth=GrowthRateCalculator(
                SnapshotRepository(session_factory),
                config.retry,
                lookback_days=config.growth_lookback_days,
                history_limit=config.growth_history_limit,
            ),
            clock=clock,
        )

    async def run(self) -> MetricsSnapshot:
        """
        Compute a fresh snapshot under the global request deadline.

        Raises:
            UpstreamBillingError: Billing data could not be fetched
            ComputationError: An invariant failed or a load-bearing read failed
            DeadlineExceeded: The request deadline expired
        """
        logger.log_step("Function started - Investor Metrics Aggregation")
        try:
            async with asyncio.timeout(self.config.request_deadline_seconds):
                return await self._compute()
        except TimeoutError as e:
            logger.error(
                "Metrics request deadline exceeded",
                extra={"deadline_seconds": self.config.request_deadline_seconds},
            )
            raise DeadlineExceeded(
                f"Metrics computation exceeded {self.config.request_deadline_seconds}s"
            ) from e

    async def _compute(self) -> MetricsSnapshot:
        now = self.clock()

        try:
            async with asyncio.TaskGroup() as tg:
                billing_task = tg.create_task(self.billing.collect(now))
                usage_task = tg.create_task(self.usage.collect(now))
                spend_task = tg.create_task(self.marketing.read(now))
                cohort_task = tg.create_task(self.cohorts.build())
        except ExceptionGroup as group:
            error = unwrap_exception_group(group)
            if isinstance(error, MetricsEngineError):
                logger.error(f"Collection failed: {error.message}", extra={"context": error.context})
                raise error
            logger.error(f"Unexpected collection failure: {error!r}")
            raise ComputationError(f"Unexpected collection failure: {error!r}") from error

        billing = billing_task.result()
        usage, usage_warnings = usage_task.result()
        spend, spend_warnings = spend_task.result()
        cohorts = cohort_task.result()

        warnings: List[PartialDataWarning] = [*usage_warnings, *spend_warnings]
        if billing.skipped_items:
            warnings.append(PartialDataWarning(
                field="mrr",
                source="billing",
                message=f"{billing.skipped_items} malformed line item(s) skipped",
            ))
        for listing in billing.truncated_listings:
            warnings.extend(
                PartialDataWarning(
                    field=field,
                    source="billing",
                    message=f"{listing} listing stopped at the page cap",
                )
                for field in TRUNCATED_LISTING_FIELDS[listing]
            )

        revenue = classify_revenue(billing.active, self.config.tier_mapping)
        churn = compute_churn(len(billing.canceled), revenue.total_subscribers)
        economics = compute_unit_economics(
            mrr=revenue.mrr,
            total_subscribers=revenue.total_subscribers,
            churn_rate=churn.churn_rate,
            total_ad_spend=spend.total_ad_spend,
            total_conversions=spend.total_conversions,
            no_churn_lifetime_months=self.config.no_churn_lifetime_months,
        )
        growth, growth_warnings = await self.growth.calculate(
            now,
            mrr=revenue.mrr,
            total_users=usage.total_users,
            recent_revenue=billing.recent_revenue,
        )
        warnings.extend(growth_warnings)

        snapshot = assemble_snapshot(
            generated_at=self.clock(),
            tier_mapping_version=self.config.tier_mapping.version,
            billing=billing,
            revenue=revenue,
            churn=churn,
            economics=economics,
            growth=growth,
            usage=usage,
            spend=spend,
            cohorts=cohorts,
            warnings=warnings,
        )
        logger.log_step(
            "Investor metrics compiled successfully",
            mrr=snapshot.mrr,
            total_subscribers=snapshot.total_subscribers,
            warnings=len(snapshot.warnings),
        )
        return snapshot

    async def aclose(self) -> None:
        await self.billing.aclose()
