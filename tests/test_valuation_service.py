"""Tests for the valuation service (metrics, DCF, saved snapshots)."""

import pytest

from app.core.exceptions import InsufficientDataError, MarketDataError, ValuationNotFoundError
from app.services.valuation_service import ValuationService

from conftest import standardized_payload, standardized_year


@pytest.fixture
def service(db, gateway):
    gateway.profiles["AAPL"] = {"name": "Apple Inc", "finnhubIndustry": "Technology", "shareOutstanding": 50.0}
    gateway.quotes["AAPL"] = 40.0
    gateway.metrics["AAPL"] = {"metric": {"beta": 1.2}}
    gateway.statements["AAPL"] = standardized_payload([
        standardized_year(y, revenue=1e9 * 1.05 ** (y - 2014)) for y in range(2014, 2024)
    ])
    return ValuationService(db, gateway)


class TestHistoricalMetrics:
    def test_metrics_and_capm_rate(self, service):
        metrics = service.get_historical_metrics("aapl")

        assert metrics["symbol"] == "AAPL"
        assert metrics["years_available"] == 10
        assert metrics["shares_outstanding"] == 50_000_000
        assert metrics["beta"] == 1.2
        assert metrics["calculated_discount_rate"] == pytest.approx(0.04 + 1.2 * 0.06)
        assert metrics["revenue_growth_5yr"] == pytest.approx(0.05)

    def test_missing_beta_uses_market(self, service, gateway):
        gateway.metrics["AAPL"] = MarketDataError("down")
        metrics = service.get_historical_metrics("AAPL")

        assert metrics["beta"] is None
        assert metrics["calculated_discount_rate"] == pytest.approx(0.10)

    def test_insufficient_history(self, service, gateway):
        gateway.statements["AAPL"] = standardized_payload([standardized_year(2023)])
        with pytest.raises(InsufficientDataError):
            service.get_historical_metrics("AAPL")


class TestCalculateValuation:
    def test_scenarios_use_history_as_base(self, service):
        result = service.calculate_valuation("AAPL", {
            "revenue_growth_low": 0.02,
            "revenue_growth_medium": 0.05,
            "revenue_growth_high": 0.08,
        })

        assert result["symbol"] == "AAPL"
        assert result["current_price"] == 40.0
        assert result["fair_value_low"] <= result["fair_value_medium"] <= result["fair_value_high"]
        assert result["inputs"]["shares_outstanding"] == 50_000_000

    def test_reversed_inputs_flagged(self, service):
        result = service.calculate_valuation("AAPL", {"pe_low": 30.0, "pe_high": 20.0})

        assert result["inputs_were_corrected"]
        assert result["inputs"]["pe_low"] == 20.0
        assert result["inputs"]["pe_high"] == 30.0


class TestSavedValuations:
    def snapshot(self, symbol="AAPL"):
        return {
            "symbol": symbol,
            "name": "base case",
            "inputs": {"pe_low": 15},
            "current_price": 40.0,
            "fair_value_low": 30.0,
            "fair_value_medium": 45.0,
            "fair_value_high": 60.0,
        }

    def test_save_and_get(self, service):
        saved = service.save_valuation("u1", self.snapshot())
        loaded = service.get_valuation("u1", saved["id"])

        assert loaded["symbol"] == "AAPL"
        assert loaded["inputs"] == {"pe_low": 15}
        assert loaded["fair_value_medium"] == 45.0

    def test_list_scoped_to_owner_and_symbol(self, service):
        service.save_valuation("u1", self.snapshot("AAPL"))
        service.save_valuation("u1", self.snapshot("MSFT"))
        service.save_valuation("u2", self.snapshot("AAPL"))

        assert len(service.get_valuations("u1")) == 2
        assert [v["symbol"] for v in service.get_valuations("u1", "msft")] == ["MSFT"]
        assert len(service.get_valuations("u2")) == 1

    def test_other_users_cannot_read_or_delete(self, service):
        saved = service.save_valuation("u1", self.snapshot())

        with pytest.raises(ValuationNotFoundError):
            service.get_valuation("u2", saved["id"])
        with pytest.raises(ValuationNotFoundError):
            service.delete_valuation("u2", saved["id"])

        assert service.get_valuation("u1", saved["id"])["id"] == saved["id"]

    def test_delete(self, service):
        saved = service.save_valuation("u1", self.snapshot())
        service.delete_valuation("u1", saved["id"])

        with pytest.raises(ValuationNotFoundError):
            service.get_valuation("u1", saved["id"])
