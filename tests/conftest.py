"""Pytest configuration and fixtures."""

import os

# 설정 객체가 캐싱되기 전에 테스트용 DB/키를 지정
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FINNHUB_API_KEY", "test-key")

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.exceptions import MarketDataError
from app.valuation.financial_period import ANNUAL, FinancialPeriod

import app.models  # noqa: F401  (테이블 등록)


# ============================================================
# Database
# ============================================================

@pytest.fixture
def engine():
    """In-memory SQLite shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================
# Market data gateway
# ============================================================

class FakeGateway:
    """
    Scripted market data gateway.

    Responses are set per symbol; any response that is an Exception
    instance is raised instead of returned. Every call is counted.
    """

    def __init__(self):
        self.calls = defaultdict(int)
        self.statements: Dict[str, Any] = {}
        self.reported: Dict[str, Any] = {}
        self.profiles: Dict[str, Any] = {}
        self.quotes: Dict[str, float] = {}
        self.metrics: Dict[str, Any] = {}
        self.candles: Dict[str, List[Dict[str, Any]]] = {}
        self.constituents: Dict[str, Any] = {}
        self.us_symbols: Any = []

    def _answer(self, name: str, table: Dict[str, Any], key: str, default=None):
        self.calls[name] += 1
        value = table.get(key, default)
        if isinstance(value, Exception):
            raise value
        return value

    def get_financial_statements(self, symbol: str, freq: str = "annual"):
        return self._answer("get_financial_statements", self.statements, symbol, {})

    def get_financials_reported(self, symbol: str, freq: str = "annual"):
        return self._answer("get_financials_reported", self.reported, symbol, {})

    def get_basic_financials(self, symbol: str):
        return self._answer("get_basic_financials", self.metrics, symbol, {})

    def get_company_profile(self, symbol: str):
        return self._answer("get_company_profile", self.profiles, symbol, {})

    def get_quote(self, symbol: str):
        self.calls["get_quote"] += 1
        price = self.quotes.get(symbol)
        if isinstance(price, Exception):
            raise price
        if not price:
            raise MarketDataError(f"No quote data for {symbol}", endpoint="/quote")
        return {"price": price}

    def get_stock_candles(self, symbol: str, resolution: str, from_ts: int, to_ts: int):
        return self._answer("get_stock_candles", self.candles, symbol, [])

    def get_index_constituents(self, index_symbol: str):
        return self._answer("get_index_constituents", self.constituents, index_symbol, [])

    def get_us_symbols(self):
        self.calls["get_us_symbols"] += 1
        if isinstance(self.us_symbols, Exception):
            raise self.us_symbols
        return self.us_symbols


@pytest.fixture
def gateway():
    return FakeGateway()


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2024, 6, 3, 12, 0, 0))


# ============================================================
# Period builders
# ============================================================

def make_period(
        year: int,
        symbol: str = "TEST",
        revenue: Optional[float] = 1_000.0,
        net_income: Optional[float] = 100.0,
        free_cash_flow: Optional[float] = 120.0,
        **overrides
) -> FinancialPeriod:
    """Annual period with sensible defaults."""
    values = dict(
        symbol=symbol,
        fiscal_year=year,
        period_kind=ANNUAL,
        revenue=revenue,
        net_income=net_income,
        free_cash_flow=free_cash_flow,
        operating_income=150.0,
        total_equity=800.0,
        total_debt=200.0,
        long_term_debt=200.0,
        cash=100.0,
        shares_outstanding=100.0,
        eps=None,
    )
    values.update(overrides)
    return FinancialPeriod(**values)


def standardized_payload(periods: List[Dict[str, Any]]) -> Dict[str, Any]:
    """{financials: [...]} response."""
    return {"financials": periods, "symbol": "TEST"}


def standardized_year(year: int, revenue: float = 1e9, net_income: float = 1e8, **extra) -> Dict[str, Any]:
    row = {
        "year": year,
        "revenue": revenue,
        "netIncome": net_income,
        "operatingIncome": net_income * 1.3,
        "totalEquity": 8e8,
        "longTermDebt": 2e8,
        "cash": 1e8,
        "operatingCashFlow": net_income * 1.5,
        "capitalExpenditures": -net_income * 0.3,
        "sharesOutstanding": 5e7,
    }
    row.update(extra)
    return row
