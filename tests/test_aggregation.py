"""Tests for multi-period aggregation."""

import math

import pytest

from app.core.exceptions import InsufficientDataError
from app.valuation.aggregation import (
    AggregationEngine,
    annual_pe_series,
    average_margin,
    average_roic,
    cagr,
    invested_capital,
    period_roic,
)

from conftest import make_period


@pytest.fixture
def engine():
    return AggregationEngine(window=5)


class TestAggregate:
    def test_requires_two_periods(self, engine):
        with pytest.raises(InsufficientDataError):
            engine.aggregate([make_period(2023)])
        with pytest.raises(InsufficientDataError):
            engine.aggregate([])

    def test_window_and_ordering(self, engine):
        periods = [make_period(y) for y in range(2016, 2024)]
        snapshot = engine.aggregate(periods)

        assert snapshot.periods_analyzed == 5
        assert snapshot.current.fiscal_year == 2023
        assert snapshot.prior.fiscal_year == 2019
        assert snapshot.years_span == 4

    def test_missing_values_are_skipped_not_zeroed(self, engine):
        periods = [
            make_period(2023, free_cash_flow=300.0),
            make_period(2022, free_cash_flow=None),
            make_period(2021, free_cash_flow=100.0),
        ]
        snapshot = engine.aggregate(periods)

        assert snapshot.averages["free_cash_flow"] == 200.0
        assert snapshot.totals["free_cash_flow"] == 400.0

    def test_short_history_uses_what_exists(self, engine):
        snapshot = engine.aggregate([make_period(2023), make_period(2022)])
        assert snapshot.periods_analyzed == 2
        assert snapshot.years_span == 1


class TestCagr:
    def test_uses_actual_year_gap(self):
        periods = [make_period(2023, revenue=2000.0), make_period(2021, revenue=1000.0)]
        assert cagr(periods, "revenue", 5) == pytest.approx(math.sqrt(2) - 1)

    def test_non_positive_endpoints(self):
        periods = [make_period(2023, revenue=2000.0), make_period(2022, revenue=-5.0)]
        assert cagr(periods, "revenue", 1) is None


class TestRoic:
    def test_nopat_over_invested_capital(self):
        # NOPAT = 150 x 0.79, IC = 800 + 200 - 100
        assert period_roic(make_period(2023)) == pytest.approx(150 * 0.79 / 900)

    def test_negative_operating_income_counts(self):
        assert period_roic(make_period(2023, operating_income=-90.0)) < 0

    def test_near_zero_invested_capital_excluded(self):
        period = make_period(2023, total_equity=0.0, total_debt=0.0, cash=0.0)
        assert period_roic(period) is None

    def test_debt_estimated_from_debt_to_equity(self):
        period = make_period(2023, total_debt=None)
        assert invested_capital(period) == 700.0
        assert invested_capital(period, debt_to_equity=0.5) == 1100.0

    def test_average_skips_unusable_years(self):
        periods = [
            make_period(2023),
            make_period(2022, operating_income=None),
            make_period(2021),
        ]
        assert average_roic(periods, 5) == pytest.approx(150 * 0.79 / 900)


class TestMultiples:
    def test_annual_pe_keeps_negative_values(self):
        periods = [
            make_period(2023, net_income=200.0),
            make_period(2022, net_income=-100.0),
            make_period(2021, net_income=0.0),
        ]
        series = dict(annual_pe_series(periods, {2023: 40.0, 2022: 30.0, 2021: 20.0}))

        assert series[2023] == pytest.approx(20.0)
        assert series[2022] == pytest.approx(-30.0)
        assert 2021 not in series

    def test_margin_ignores_zero_revenue(self):
        periods = [make_period(2023, revenue=1000.0, net_income=100.0), make_period(2022, revenue=0.0)]
        assert average_margin(periods, "net_income", "revenue", 5) == pytest.approx(0.1)

    def test_trailing_metrics(self, engine):
        periods = [make_period(y, revenue=1000.0 * 1.1 ** (y - 2014)) for y in range(2014, 2024)]
        metrics = engine.trailing_metrics(periods, current_price=30.0, shares_outstanding=100.0)

        assert metrics["years_available"] == 10
        assert metrics["latest_year"] == 2023
        assert metrics["oldest_year"] == 2014
        assert metrics["revenue_growth_5yr"] == pytest.approx(0.1)
        assert metrics["market_cap"] == 3000.0
        assert metrics["pe_ratio"] == pytest.approx(30.0)
        assert metrics["price_to_fcf"] == pytest.approx(25.0)
        assert metrics["current_fcf"] == 120.0
