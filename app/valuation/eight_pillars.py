"""
Eight Pillars 스코어링

8개 재무 건전성 지표를 각각 독립적으로 통과/미통과 판정
- 데이터가 없어 계산할 수 없는 필라는 status="unavailable" + reason, 항상 미통과
- 입력이 같으면 결과도 항상 같음 (순수 계산)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.valuation.aggregation import (
    AggregateSnapshot,
    annual_pe_series,
    average_roic,
    mean,
    period_eps
)

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_UNAVAILABLE = "unavailable"

# 필라 기준값
PE_THRESHOLD = 22.5
ROIC_THRESHOLD = 10.0
LT_DEBT_FCF_THRESHOLD = 5.0
PRICE_FCF_THRESHOLD = 22.5

# 비율 필라의 "계산 불가" 값 (저장된 결과와의 호환용)
RATIO_SENTINEL = 999.99

# 성장률 극단값 처리
ZERO_BASE_GROWTH = 100.0
SIGN_FLIP_GROWTH_CAP = 1000.0

PILLAR_NAMES = {
    1: "5-Year P/E Ratio",
    2: "5-Year ROIC",
    3: "Shares Outstanding",
    4: "Cash Flow Growth",
    5: "Net Income Growth",
    6: "Revenue Growth",
    7: "LT Debt / FCF",
    8: "5-Year Price/FCF",
}


@dataclass(frozen=True)
class PillarResult:
    """필라 하나의 결과"""
    number: int
    name: str
    status: str
    value: Optional[float]
    threshold: Optional[float]
    passed: bool
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    unit: str = ""

    @property
    def is_available(self) -> bool:
        return self.status == STATUS_OK

    @property
    def display_value(self) -> str:
        """표시용 문자열 (계산 불가면 N/A)"""
        if not self.is_available:
            return "N/A"
        if self.data.get("no_debt"):
            return "0x (No debt)"
        if self.unit == "x":
            return f"{self.value:.1f}x"
        if self.unit == "%+":
            return f"{self.value:+.1f}%"
        if self.unit == "%":
            return f"{self.value:.1f}%"
        return f"{self.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "status": self.status,
            "value": self.value,
            "threshold": self.threshold,
            "passed": self.passed,
            "display_value": self.display_value,
            "reason": self.reason,
            "unit": self.unit,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PillarResult":
        return cls(
            number=data["number"],
            name=data["name"],
            status=data["status"],
            value=data.get("value"),
            threshold=data.get("threshold"),
            passed=bool(data.get("passed")),
            reason=data.get("reason"),
            data=data.get("data") or {},
            unit=data.get("unit", ""),
        )


def _ok(number, value, threshold, passed, unit, data=None) -> PillarResult:
    return PillarResult(
        number=number,
        name=PILLAR_NAMES[number],
        status=STATUS_OK,
        value=value,
        threshold=threshold,
        passed=bool(passed),
        data=data or {},
        unit=unit,
    )


def _unavailable(number, reason, threshold, value=None, unit="", data=None) -> PillarResult:
    return PillarResult(
        number=number,
        name=PILLAR_NAMES[number],
        status=STATUS_UNAVAILABLE,
        value=value,
        threshold=threshold,
        passed=False,
        reason=reason,
        data=data or {},
        unit=unit,
    )


@dataclass
class EightPillarsAnalysis:
    """종목 하나의 Eight Pillars 분석 결과"""
    symbol: str
    analysis_date: datetime
    pillars: List[PillarResult]
    market_cap: Optional[float] = None
    current_price: Optional[float] = None
    shares_outstanding: Optional[float] = None
    company_name: Optional[str] = None
    industry: Optional[str] = None
    periods_analyzed: Optional[int] = None
    years_span: Optional[int] = None

    @property
    def pillars_passed(self) -> int:
        return sum(1 for p in self.pillars if p.passed)

    def pillar(self, number: int) -> PillarResult:
        return self.pillars[number - 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "analysis_date": self.analysis_date.isoformat(),
            "company_name": self.company_name,
            "industry": self.industry,
            "current_price": self.current_price,
            "market_cap": self.market_cap,
            "shares_outstanding": self.shares_outstanding,
            "pillars_passed": self.pillars_passed,
            "periods_analyzed": self.periods_analyzed,
            "years_span": self.years_span,
            "pillars": [p.to_dict() for p in self.pillars],
        }


def growth_percent(current: float, prior: float) -> float:
    """
    부호를 고려한 성장률 (%)

    - 기준값 0: 증가 +100, 감소 -100, 동일 0
    - 부호 전환(적자<->흑자): ±1000으로 제한
    - 그 외: (현재 - 과거) / |과거| x 100
    """
    if prior == 0:
        if current > 0:
            return ZERO_BASE_GROWTH
        if current < 0:
            return -ZERO_BASE_GROWTH
        return 0.0

    growth = (current - prior) / abs(prior) * 100
    if (prior < 0 < current) or (current < 0 < prior):
        growth = max(-SIGN_FLIP_GROWTH_CAP, min(SIGN_FLIP_GROWTH_CAP, growth))
    return growth


class EightPillarsScorer:
    """Eight Pillars 판정기 (상태 없음)"""

    def score(
            self,
            symbol: str,
            aggregate: AggregateSnapshot,
            market_cap: Optional[float],
            current_price: Optional[float],
            shares_outstanding: Optional[float],
            year_end_prices: Optional[Dict[int, float]] = None,
            debt_to_equity: Optional[float] = None,
            company_name: Optional[str] = None,
            industry: Optional[str] = None,
            analysis_date: Optional[datetime] = None
    ) -> EightPillarsAnalysis:
        """
        8개 필라 계산

        Args:
            symbol: 종목 심볼
            aggregate: 최근 5개 연간 기간 집계
            market_cap: 시가총액
            current_price: 현재가
            shares_outstanding: 발행주식수 (프로필 또는 최신 기간)
            year_end_prices: 연도별 연말 종가 (연도별 P/E용)
            debt_to_equity: 차입금이 없는 기간의 ROIC 보정용 D/E
            analysis_date: 분석 시각 (기본: 현재)

        Returns:
            EightPillarsAnalysis
        """
        pillars = [
            self._pe_ratio(aggregate, current_price, year_end_prices or {}),
            self._roic(aggregate, debt_to_equity),
            self._shares_outstanding(aggregate, shares_outstanding),
            self._growth(4, aggregate, "free_cash_flow"),
            self._growth(5, aggregate, "net_income"),
            self._growth(6, aggregate, "revenue"),
            self._lt_debt_to_fcf(aggregate),
            self._price_to_fcf(aggregate, market_cap),
        ]

        return EightPillarsAnalysis(
            symbol=symbol.upper(),
            analysis_date=analysis_date or datetime.now(),
            pillars=pillars,
            market_cap=market_cap,
            current_price=current_price,
            shares_outstanding=shares_outstanding,
            company_name=company_name,
            industry=industry,
            periods_analyzed=aggregate.periods_analyzed,
            years_span=aggregate.years_span,
        )

    # ============================================================
    # 1. 5년 P/E
    # ============================================================

    def _pe_ratio(
            self,
            aggregate: AggregateSnapshot,
            current_price: Optional[float],
            year_end_prices: Dict[int, float]
    ) -> PillarResult:
        series = annual_pe_series(aggregate.periods, year_end_prices)

        if series:
            value = mean(pe for _, pe in series)
            data = {"source": "annual", "annual_pe": {str(year): pe for year, pe in series}}
        else:
            eps = period_eps(aggregate.current)
            if not current_price or not eps:
                return _unavailable(
                    1, "Insufficient price or earnings data for P/E",
                    PE_THRESHOLD, value=RATIO_SENTINEL, unit="x"
                )
            value = current_price / eps
            data = {"source": "current", "eps": eps, "current_price": current_price}

        return _ok(1, value, PE_THRESHOLD, 0 < value < PE_THRESHOLD, "x", data)

    # ============================================================
    # 2. 5년 ROIC
    # ============================================================

    def _roic(self, aggregate: AggregateSnapshot, debt_to_equity: Optional[float]) -> PillarResult:
        avg = average_roic(aggregate.periods, len(aggregate.periods), debt_to_equity)

        if avg is None:
            return _unavailable(
                2, "No period with operating income and meaningful invested capital",
                ROIC_THRESHOLD, value=0.0, unit="%"
            )

        value = avg * 100
        return _ok(2, value, ROIC_THRESHOLD, value > ROIC_THRESHOLD, "%", {"tax_rate": 0.21})

    # ============================================================
    # 3. 발행주식수 변화
    # ============================================================

    def _shares_outstanding(
            self,
            aggregate: AggregateSnapshot,
            shares_outstanding: Optional[float]
    ) -> PillarResult:
        current = aggregate.current.shares_outstanding or shares_outstanding
        prior = aggregate.prior.shares_outstanding

        if not current or not prior:
            return _unavailable(3, "Missing shares outstanding history", 0.0, unit="%+")

        change = (current - prior) / prior * 100
        data = {
            "current": current,
            "prior": prior,
            "current_year": aggregate.current.fiscal_year,
            "prior_year": aggregate.prior.fiscal_year,
        }
        return _ok(3, change, 0.0, change <= 0, "%+", data)

    # ============================================================
    # 4~6. 성장 필라
    # ============================================================

    def _growth(self, number: int, aggregate: AggregateSnapshot, field_name: str) -> PillarResult:
        current = getattr(aggregate.current, field_name)
        prior = getattr(aggregate.prior, field_name)

        if current is None or prior is None:
            return _unavailable(
                number, f"Missing {field_name.replace('_', ' ')} data", None, unit="%+"
            )

        data = {
            "current": current,
            "prior": prior,
            "current_year": aggregate.current.fiscal_year,
            "prior_year": aggregate.prior.fiscal_year,
        }
        return _ok(number, growth_percent(current, prior), None, current > prior, "%+", data)

    # ============================================================
    # 7. 장기부채 / 평균 FCF
    # ============================================================

    def _lt_debt_to_fcf(self, aggregate: AggregateSnapshot) -> PillarResult:
        # 단기 차입금은 제외
        debt = aggregate.current.long_term_debt

        if debt is None:
            return _unavailable(
                7, "Long-term debt not reported", LT_DEBT_FCF_THRESHOLD,
                value=RATIO_SENTINEL, unit="x"
            )

        if debt == 0:
            return _ok(7, 0.0, LT_DEBT_FCF_THRESHOLD, True, "x", {"long_term_debt": 0.0, "no_debt": True})

        avg_fcf = aggregate.averages.get("free_cash_flow")
        if avg_fcf is None or avg_fcf <= 0:
            return _unavailable(
                7, "Average free cash flow is zero or negative", LT_DEBT_FCF_THRESHOLD,
                value=RATIO_SENTINEL, unit="x",
                data={"long_term_debt": debt, "avg_fcf": avg_fcf}
            )

        ratio = debt / avg_fcf
        data = {"long_term_debt": debt, "avg_fcf": avg_fcf}
        return _ok(7, ratio, LT_DEBT_FCF_THRESHOLD, 0 <= ratio < LT_DEBT_FCF_THRESHOLD, "x", data)

    # ============================================================
    # 8. 시가총액 / 평균 FCF
    # ============================================================

    def _price_to_fcf(self, aggregate: AggregateSnapshot, market_cap: Optional[float]) -> PillarResult:
        avg_fcf = aggregate.averages.get("free_cash_flow")
        data = {
            "market_cap": market_cap,
            "avg_fcf": avg_fcf,
            "five_year_fcf": aggregate.totals.get("free_cash_flow"),
        }

        if not market_cap:
            return _unavailable(
                8, "Market cap unavailable", PRICE_FCF_THRESHOLD,
                value=RATIO_SENTINEL, unit="x", data=data
            )

        if avg_fcf is None or avg_fcf == 0:
            return _unavailable(
                8, "Five-year free cash flow is zero or missing", PRICE_FCF_THRESHOLD,
                value=RATIO_SENTINEL, unit="x", data=data
            )

        if avg_fcf < 0:
            return _unavailable(
                8, "Five-year free cash flow is negative", PRICE_FCF_THRESHOLD,
                value=RATIO_SENTINEL, unit="x", data=data
            )

        ratio = market_cap / avg_fcf
        return _ok(8, ratio, PRICE_FCF_THRESHOLD, 0 <= ratio < PRICE_FCF_THRESHOLD, "x", data)
