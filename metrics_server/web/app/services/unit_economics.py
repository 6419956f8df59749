"""
Unit economics and churn formulas.

Pure functions; every division has an explicit zero-denominator branch.
"""
from typing import Tuple

from ..schemas import ChurnMetrics, UnitEconomics

DEFAULT_NO_CHURN_LIFETIME_MONTHS = 36


def compute_churn(churn_count: int, total_subscribers: int) -> ChurnMetrics:
    """
    Churn over the trailing window as a percentage of current subscribers.

    Zero subscribers gives a zero rate. The rate is capped at 100 so that
    retention never goes negative when cancellations outnumber survivors.
    """
    if total_subscribers > 0:
        churn_rate = min(churn_count / total_subscribers * 100, 100.0)
    else:
        churn_rate = 0.0
    return ChurnMetrics(
        churn_count=churn_count,
        churn_rate=churn_rate,
        retention_rate=100.0 - churn_rate,
    )


def compute_unit_economics(
    mrr: int,
    total_subscribers: int,
    churn_rate: float,
    total_ad_spend: int,
    total_conversions: int,
    no_churn_lifetime_months: int = DEFAULT_NO_CHURN_LIFETIME_MONTHS,
) -> UnitEconomics:
    arpu = mrr / total_subscribers if total_subscribers > 0 else 0.0
    arr = mrr * 12

    monthly_churn_rate = churn_rate / 100
    if monthly_churn_rate > 0:
        ltv = arpu / monthly_churn_rate
    else:
        # No churn observed: assume a fixed customer lifetime.
        ltv = arpu * no_churn_lifetime_months

    cac = total_ad_spend / total_conversions if total_conversions > 0 else 0.0
    ltv_cac_ratio = ltv / cac if cac > 0 else 0.0
    payback_months = cac / arpu if arpu > 0 else 0.0

    return UnitEconomics(
        arpu=arpu,
        arr=arr,
        ltv=ltv,
        cac=cac,
        ltv_cac_ratio=ltv_cac_ratio,
        payback_months=payback_months,
    )


def compute_runway(mrr: int, total_ad_spend: int) -> Tuple[int, int]:
    """(monthly_burn, net_mrr); ad spend is the only tracked cost."""
    monthly_burn = total_ad_spend
    return monthly_burn, mrr - monthly_burn
