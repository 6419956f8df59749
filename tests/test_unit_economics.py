import pytest

from metrics_server.web.app.services.unit_economics import (
    compute_churn,
    compute_runway,
    compute_unit_economics,
)


def test_churn_with_no_subscribers_is_zero():
    churn = compute_churn(churn_count=3, total_subscribers=0)

    assert churn.churn_rate == 0.0
    assert churn.retention_rate == 100.0
    assert churn.churn_count == 3


def test_churn_rate_is_percentage_of_current_subscribers():
    churn = compute_churn(churn_count=1, total_subscribers=10)

    assert churn.churn_rate == pytest.approx(10.0)
    assert churn.retention_rate == pytest.approx(90.0)


def test_churn_rate_is_capped_at_one_hundred():
    churn = compute_churn(churn_count=15, total_subscribers=10)

    assert churn.churn_rate == 100.0
    assert churn.retention_rate == 0.0


def test_no_churn_uses_fixed_lifetime_for_ltv():
    economics = compute_unit_economics(
        mrr=18400,
        total_subscribers=4,
        churn_rate=0.0,
        total_ad_spend=0,
        total_conversions=1,
    )

    assert economics.arpu == 4600
    assert economics.arr == 220800
    assert economics.ltv == economics.arpu * 36
    assert economics.cac == 0.0
    assert economics.ltv_cac_ratio == 0.0
    assert economics.payback_months == 0.0


def test_ltv_divides_arpu_by_monthly_churn():
    economics = compute_unit_economics(
        mrr=46000,
        total_subscribers=10,
        churn_rate=10.0,
        total_ad_spend=50000,
        total_conversions=10,
    )

    assert economics.arpu == pytest.approx(4600)
    assert economics.ltv == pytest.approx(46000)
    assert economics.cac == pytest.approx(5000)
    assert economics.ltv_cac_ratio == pytest.approx(9.2)
    assert economics.payback_months == pytest.approx(5000 / 4600)


def test_zero_subscribers_gives_zero_arpu_and_payback():
    economics = compute_unit_economics(
        mrr=0,
        total_subscribers=0,
        churn_rate=0.0,
        total_ad_spend=10000,
        total_conversions=2,
    )

    assert economics.arpu == 0.0
    assert economics.ltv == 0.0
    assert economics.cac == pytest.approx(5000)
    assert economics.ltv_cac_ratio == 0.0
    assert economics.payback_months == 0.0


def test_lifetime_months_is_configurable():
    economics = compute_unit_economics(
        mrr=1000,
        total_subscribers=1,
        churn_rate=0.0,
        total_ad_spend=0,
        total_conversions=1,
        no_churn_lifetime_months=24,
    )

    assert economics.ltv == 24000


def test_runway_treats_ad_spend_as_burn():
    assert compute_runway(18400, 5000) == (5000, 13400)
    assert compute_runway(1000, 3000) == (3000, -2000)
