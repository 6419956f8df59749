"""
Value types passed between the metrics components.

Everything here is frozen: collectors hand immutable values to the join
point and nothing downstream mutates them.
"""
import enum
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import TierName


class SubscriptionStatus(str, enum.Enum):
    active = "active"
    canceled = "canceled"
    other = "other"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# Collector outputs

class SubscriptionRecord(FrozenModel):
    """One line item of a billing-provider subscription at fetch time."""
    id: str
    item_id: str
    price_identifier: str
    unit_amount: int = Field(..., description="Minor currency units")
    status: SubscriptionStatus
    created_at: datetime
    canceled_at: Optional[datetime] = None


class BillingSnapshot(FrozenModel):
    active: Tuple[SubscriptionRecord, ...] = ()
    canceled: Tuple[SubscriptionRecord, ...] = ()
    total_revenue_all_time: int = 0
    recent_revenue: int = 0
    skipped_items: int = 0
    truncated_listings: Tuple[str, ...] = ()


class UsageCounts(FrozenModel):
    total_users: int = 0
    weekly_active_users: int = 0
    monthly_active_users: int = 0
    total_properties: int = 0
    total_neighborhoods: int = 0
    total_lessons: int = 0
    lessons_completed: int = 0
    total_posts: int = 0
    ai_queries_count: int = 0
    free_users: int = 0
    new_signups_today: int = 0


class MarketingSpend(FrozenModel):
    total_ad_spend: int = 0
    total_conversions: int = 1
    window_days: int = 30
    row_count: int = 0


class UserSignup(FrozenModel):
    created_at: datetime
    current_tier: Optional[str] = None


# Derived values

class TierBreakdown(CamelModel):
    tier_name: TierName
    active_count: int = 0
    monthly_revenue: int = 0


class RevenueBreakdown(FrozenModel):
    mrr: int = 0
    b2c_revenue: int = 0
    b2b_revenue: int = 0
    revenue_by_tier: Dict[str, TierBreakdown] = Field(default_factory=dict)
    unmapped_revenue: int = 0
    unmapped_active_count: int = 0
    total_subscribers: int = 0


class ChurnMetrics(FrozenModel):
    churn_count: int = 0
    churn_rate: float = 0.0
    retention_rate: float = 100.0


class UnitEconomics(FrozenModel):
    arpu: float = 0.0
    arr: int = 0
    ltv: float = 0.0
    cac: float = 0.0
    ltv_cac_ratio: float = 0.0
    payback_months: float = 0.0


class GrowthRates(FrozenModel):
    mrr_growth_mom: float = 0.0
    user_growth_mom: float = 0.0
    revenue_growth_mom: float = 0.0


class CohortBucket(CamelModel):
    signups: int = 0
    conversions: int = 0


class PartialDataWarning(CamelModel):
    """A non-critical input that degraded to its zero fallback."""
    field: str
    source: str
    message: str


# Response

class MetricsSnapshot(CamelModel):
    # Revenue
    mrr: int
    arr: int
    total_revenue_all_time: int
    recent_revenue: int
    # to_camel would produce b2CRevenue
    b2c_revenue: int = Field(..., alias="b2cRevenue")
    b2b_revenue: int = Field(..., alias="b2bRevenue")
    revenue_by_tier: Dict[str, TierBreakdown]

    # Unit economics
    arpu: float
    ltv: float
    cac: float
    ltv_cac_ratio: float
    payback_months: float

    # Churn & retention
    churn_rate: float
    churn_count: int
    retention_rate: float

    # Growth
    mrr_growth_mom: float = Field(..., alias="mrrGrowthMoM")
    user_growth_mom: float = Field(..., alias="userGrowthMoM")
    revenue_growth_mom: float = Field(..., alias="revenueGrowthMoM")

    # Subscribers
    total_subscribers: int
    unmapped_subscribers: int
    subscriber_counts: Dict[str, int]

    # Product
    total_users: int
    weekly_active_users: int
    monthly_active_users: int
    total_properties: int
    total_neighborhoods: int
    total_lessons: int
    lessons_completed: int
    total_posts: int
    ai_queries_count: int
    free_users: int
    new_signups_today: int

    # Cohorts
    cohorts: Dict[str, CohortBucket]

    # Runway
    monthly_burn: int
    net_mrr: int = Field(..., alias="netMRR")

    # Metadata
    tier_mapping_version: str
    warnings: List[PartialDataWarning] = Field(default_factory=list)
    generated_at: datetime


class ErrorResponse(BaseModel):
    error: str
