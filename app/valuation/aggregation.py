"""
재무 기간 집계 엔진

최근 N개 연간 기간으로부터 합계/평균/CAGR/ROIC/연도별 P/E 계산
- 값이 없는 기간은 0으로 채우지 않고 건너뜀
- "5년" 지표도 기간이 부족하면 있는 만큼만 사용 (periods_analyzed, years_span 기록)
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.core.exceptions import InsufficientDataError
from app.valuation.financial_period import FinancialPeriod, sort_most_recent_first

logger = logging.getLogger(__name__)

TAX_RATE = 0.21

# 투하자본이 이 값 이하(절댓값)면 ROIC 계산에서 제외
MIN_INVESTED_CAPITAL = 0.01

TOTAL_FIELDS = ("net_income", "free_cash_flow", "revenue")
AVERAGE_FIELDS = (
    "total_equity", "total_debt", "free_cash_flow",
    "net_income", "operating_income", "revenue"
)


def _present(values) -> List[float]:
    return [v for v in values if v is not None]


def mean(values) -> Optional[float]:
    """None을 제외한 산술평균 (값이 없으면 None)"""
    present = _present(values)
    if not present:
        return None
    return sum(present) / len(present)


@dataclass
class AggregateSnapshot:
    """
    집계 스냅샷 (저장하지 않고 매번 계산)

    periods: 최신 우선, 최대 window개
    current: periods[0], prior: 윈도우 내 가장 오래된 기간
    """
    symbol: str
    periods: List[FinancialPeriod]
    totals: Dict[str, Optional[float]] = field(default_factory=dict)
    averages: Dict[str, Optional[float]] = field(default_factory=dict)

    @property
    def current(self) -> FinancialPeriod:
        return self.periods[0]

    @property
    def prior(self) -> FinancialPeriod:
        return self.periods[-1]

    @property
    def periods_analyzed(self) -> int:
        return len(self.periods)

    @property
    def years_span(self) -> int:
        return self.current.fiscal_year - self.prior.fiscal_year

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "current_year": self.current.fiscal_year,
            "prior_year": self.prior.fiscal_year,
            "periods_analyzed": self.periods_analyzed,
            "years_span": self.years_span,
            "totals": dict(self.totals),
            "averages": dict(self.averages),
        }


# ============================================================
# 기간 단위 계산
# ============================================================

def period_eps(period: FinancialPeriod) -> Optional[float]:
    """EPS (보고값 우선, 없으면 순이익 / 주식수)"""
    if period.eps is not None:
        return period.eps
    if period.net_income is not None and period.shares_outstanding:
        return period.net_income / period.shares_outstanding
    return None


def invested_capital(
        period: FinancialPeriod,
        debt_to_equity: Optional[float] = None
) -> Optional[float]:
    """
    투하자본 = 자본 + 차입금 - 현금

    차입금이 없고 부채비율(D/E)이 주어지면 자본 x D/E로 추정
    """
    if period.total_equity is None:
        return None

    debt = period.total_debt
    if debt is None and debt_to_equity is not None:
        debt = period.total_equity * debt_to_equity

    return period.total_equity + (debt or 0.0) - (period.cash or 0.0)


def period_roic(
        period: FinancialPeriod,
        debt_to_equity: Optional[float] = None
) -> Optional[float]:
    """
    ROIC = NOPAT / 투하자본 (소수)

    영업손실도 그대로 반영 (음수 ROIC)
    |투하자본| <= 0.01 이면 None
    """
    if period.operating_income is None:
        return None

    capital = invested_capital(period, debt_to_equity)
    if capital is None or abs(capital) <= MIN_INVESTED_CAPITAL:
        return None

    nopat = period.operating_income * (1 - TAX_RATE)
    return nopat / capital


# ============================================================
# 다기간 계산
# ============================================================

def cagr(periods: Sequence[FinancialPeriod], field_name: str, years: int) -> Optional[float]:
    """
    연평균 성장률

    시작 인덱스 = min(years, n-1), 실제 연도 차이로 계산
    양 끝 값이 없거나 0 이하이면 None
    """
    ordered = sort_most_recent_first(periods)
    if len(ordered) < 2:
        return None

    end = ordered[0]
    start = ordered[min(years, len(ordered) - 1)]

    end_value = getattr(end, field_name)
    start_value = getattr(start, field_name)
    if end_value is None or start_value is None or end_value <= 0 or start_value <= 0:
        return None

    span = end.fiscal_year - start.fiscal_year
    if span <= 0:
        return None

    return (end_value / start_value) ** (1 / span) - 1


def average_margin(
        periods: Sequence[FinancialPeriod],
        numerator: str,
        denominator: str,
        years: int
) -> Optional[float]:
    """최근 years개 기간의 평균 마진 (분모 > 0 인 기간만)"""
    margins = []
    for period in sort_most_recent_first(periods)[:years]:
        num = getattr(period, numerator)
        den = getattr(period, denominator)
        if num is not None and den is not None and den > 0:
            margins.append(num / den)

    return mean(margins)


def roic_series(
        periods: Sequence[FinancialPeriod],
        debt_to_equity: Optional[float] = None
) -> List[Tuple[int, float]]:
    """연도별 ROIC (계산 가능한 기간만, 최신 우선)"""
    series = []
    for period in sort_most_recent_first(periods):
        roic = period_roic(period, debt_to_equity)
        if roic is not None:
            series.append((period.fiscal_year, roic))
    return series


def average_roic(
        periods: Sequence[FinancialPeriod],
        years: int,
        debt_to_equity: Optional[float] = None
) -> Optional[float]:
    """최근 years개 기간 평균 ROIC (소수)"""
    window = sort_most_recent_first(periods)[:years]
    return mean(roic for _, roic in roic_series(window, debt_to_equity))


def annual_pe_series(
        periods: Sequence[FinancialPeriod],
        year_end_prices: Dict[int, float]
) -> List[Tuple[int, float]]:
    """
    연도별 P/E = 연말 종가 / 해당 연도 EPS

    음수 EPS면 음수 P/E 그대로 포함 (EPS가 0이면 제외)
    """
    series = []
    for period in sort_most_recent_first(periods):
        price = year_end_prices.get(period.fiscal_year)
        eps = period_eps(period)
        if price is None or not eps:
            continue
        series.append((period.fiscal_year, price / eps))
    return series


def average_positive_eps_pe(
        periods: Sequence[FinancialPeriod],
        current_price: Optional[float],
        years: int
) -> Optional[float]:
    """현재가 / 최근 years개 기간 양수 EPS 평균"""
    if not current_price:
        return None

    eps_values = [
        eps for eps in (period_eps(p) for p in sort_most_recent_first(periods)[:years])
        if eps is not None and eps > 0
    ]
    avg_eps = mean(eps_values)
    if not avg_eps:
        return None
    return current_price / avg_eps


def average_positive_fcf_multiple(
        periods: Sequence[FinancialPeriod],
        market_cap: Optional[float],
        years: int
) -> Optional[float]:
    """시가총액 / 최근 years개 기간 양수 FCF 평균"""
    if not market_cap:
        return None

    fcf_values = [
        p.free_cash_flow for p in sort_most_recent_first(periods)[:years]
        if p.free_cash_flow is not None and p.free_cash_flow > 0
    ]
    avg_fcf = mean(fcf_values)
    if not avg_fcf:
        return None
    return market_cap / avg_fcf


# ============================================================
# 집계 엔진
# ============================================================

class AggregationEngine:
    """집계 스냅샷 / 트레일링 지표 계산기"""

    def __init__(self, window: int = 5):
        self.window = window

    def aggregate(self, periods: Sequence[FinancialPeriod]) -> AggregateSnapshot:
        """
        최근 window개 기간 집계

        Raises:
            InsufficientDataError: 기간이 2개 미만
        """
        ordered = sort_most_recent_first(periods)[:self.window]
        if len(ordered) < 2:
            symbol = ordered[0].symbol if ordered else None
            raise InsufficientDataError(
                f"Need at least 2 financial periods, got {len(ordered)}",
                symbol=symbol
            )

        totals = {}
        for name in TOTAL_FIELDS:
            present = _present(getattr(p, name) for p in ordered)
            totals[name] = sum(present) if present else None

        averages = {name: mean(getattr(p, name) for p in ordered) for name in AVERAGE_FIELDS}

        return AggregateSnapshot(
            symbol=ordered[0].symbol,
            periods=ordered,
            totals=totals,
            averages=averages
        )

    def trailing_metrics(
            self,
            periods: Sequence[FinancialPeriod],
            current_price: Optional[float] = None,
            shares_outstanding: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        1/5/10년 트레일링 지표 (DCF 입력 기본값)

        Returns:
            roic_Nyr, revenue_growth_Nyr, profit_margin_Nyr, fcf_margin_Nyr,
            pe_ratio, pe_Nyr, price_to_fcf, pfcf_Nyr, current_* 등
        """
        ordered = sort_most_recent_first(periods)
        if len(ordered) < 2:
            raise InsufficientDataError(
                f"Need at least 2 financial periods, got {len(ordered)}",
                symbol=ordered[0].symbol if ordered else None
            )

        latest = ordered[0]
        market_cap = current_price * shares_outstanding if current_price and shares_outstanding else None

        metrics: Dict[str, Any] = {}
        for years in (1, 5, 10):
            metrics[f"roic_{years}yr"] = average_roic(ordered, years)
            metrics[f"revenue_growth_{years}yr"] = cagr(ordered, "revenue", years)
            metrics[f"profit_margin_{years}yr"] = average_margin(ordered, "net_income", "revenue", years)
            metrics[f"fcf_margin_{years}yr"] = average_margin(ordered, "free_cash_flow", "revenue", years)
            metrics[f"pe_{years}yr"] = average_positive_eps_pe(ordered, current_price, years)
            metrics[f"pfcf_{years}yr"] = average_positive_fcf_multiple(ordered, market_cap, years)

        latest_eps = period_eps(latest)
        metrics["pe_ratio"] = (
            current_price / latest_eps if current_price and latest_eps and latest_eps > 0 else None
        )
        metrics["price_to_fcf"] = (
            market_cap / latest.free_cash_flow
            if market_cap and latest.free_cash_flow and latest.free_cash_flow > 0 else None
        )

        metrics.update({
            "current_fcf": latest.free_cash_flow,
            "current_revenue": latest.revenue,
            "current_net_income": latest.net_income,
            "market_cap": market_cap,
            "years_available": len(ordered),
            "latest_year": latest.fiscal_year,
            "oldest_year": ordered[-1].fiscal_year,
        })
        return metrics
