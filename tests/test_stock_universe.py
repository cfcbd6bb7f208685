"""Tests for scan universe resolution."""

from datetime import timedelta

import pytest

from app.core.exceptions import MarketDataError
from app.services.stock_universe_service import (
    CURATED_STOCKS,
    StockUniverseService,
    UniverseOptions,
    dedupe,
    is_common_ticker,
)


@pytest.fixture
def universe(db, gateway, clock, tmp_path):
    return StockUniverseService(db, gateway, csv_path=str(tmp_path / "missing.csv"), clock=clock)


def test_ticker_filter():
    assert is_common_ticker("AAPL")
    assert not is_common_ticker("BRK.B")
    assert not is_common_ticker("ABC-W")
    assert not is_common_ticker("TOOLONG")


def test_dedupe_keeps_order():
    assert dedupe(["aapl", "MSFT", "AAPL ", ""]) == ["AAPL", "MSFT"]


class TestResolve:
    def test_curated_with_limit(self, universe):
        assert universe.resolve(UniverseOptions(limit=5)) == CURATED_STOCKS[:5]

    def test_unknown_universe(self, universe):
        with pytest.raises(ValueError):
            universe.resolve(UniverseOptions(universe="mars"))

    def test_empty_universe_falls_back_to_curated(self, universe, gateway):
        gateway.constituents["^RUT"] = MarketDataError("down")
        symbols = universe.resolve(UniverseOptions(russell2000_only=True))
        assert symbols == CURATED_STOCKS

    def test_russell_from_csv(self, db, gateway, clock, tmp_path):
        path = tmp_path / "r2000.csv"
        path.write_text("Ticker,Name\nAAA,Alpha\nBBB.A,Beta\nCCC,Gamma\nAAA,Alpha\n", encoding="utf-8")
        service = StockUniverseService(db, gateway, csv_path=str(path), clock=clock)

        assert service.resolve(UniverseOptions(universe="russell2000")) == ["AAA", "CCC"]
        assert gateway.calls["get_index_constituents"] == 0

    def test_csv_symbol_column_is_normalized(self, db, gateway, clock, tmp_path):
        path = tmp_path / "r2000.csv"
        path.write_text("symbol,name\n na ,Nano\nabc,Abc\nNA,Nano\n", encoding="utf-8")
        service = StockUniverseService(db, gateway, csv_path=str(path), clock=clock)

        assert service.get_russell2000() == ["NA", "ABC"]

    def test_csv_without_ticker_column_uses_index_source(self, db, gateway, clock, tmp_path):
        path = tmp_path / "r2000.csv"
        path.write_text("Company,Weight\nAlpha,0.1\n", encoding="utf-8")
        gateway.constituents["^RUT"] = ["SMOL"]
        service = StockUniverseService(db, gateway, csv_path=str(path), clock=clock)

        assert service.get_russell2000() == ["SMOL"]
        assert gateway.calls["get_index_constituents"] == 1

    def test_us_all_filters_common_stock(self, universe, gateway):
        gateway.us_symbols = [
            {"symbol": "ZZZ", "type": "Common Stock"},
            {"symbol": "AAA", "type": "Common Stock"},
            {"symbol": "SPY", "type": "ETP"},
            {"symbol": "BRK.A", "type": "Common Stock"},
        ]
        assert universe.resolve(UniverseOptions(universe="us_all")) == ["AAA", "ZZZ"]


class TestIndexConstituentCache:
    def test_cached_for_a_week(self, universe, gateway, clock):
        gateway.constituents["^GSPC"] = ["MSFT", "AAPL"]

        assert universe.get_index_constituents("^GSPC") == ["MSFT", "AAPL"]
        assert universe.get_index_constituents("^GSPC") == ["AAPL", "MSFT"]
        assert gateway.calls["get_index_constituents"] == 1

        clock.now += timedelta(days=8)
        universe.get_index_constituents("^GSPC")
        assert gateway.calls["get_index_constituents"] == 2

    def test_combined_dedupes_across_sources(self, universe, gateway):
        gateway.constituents["^GSPC"] = ["AAPL", "MSFT"]
        gateway.constituents["^NDX"] = ["MSFT", "NVDA"]
        gateway.constituents["^RUT"] = ["SMOL"]

        symbols = universe.get_combined()

        assert symbols[:4] == ["AAPL", "MSFT", "NVDA", "SMOL"]
        assert len(symbols) == len(set(symbols))
