"""
정규화된 재무 기간 레코드
"""
from dataclasses import dataclass, asdict, replace
from datetime import datetime
from typing import Any, Dict, Optional

ANNUAL = "annual"
QUARTERLY = "quarterly"


@dataclass(frozen=True)
class FinancialPeriod:
    """
    한 종목의 한 회계 기간 (연간/분기)

    자연키: (symbol, fiscal_year, period_kind, fiscal_quarter or 0)
    수치 필드는 모두 Optional - 값이 없으면 0으로 채우지 않고 None 유지
    """
    symbol: str
    fiscal_year: int
    period_kind: str                              # "annual" | "quarterly"
    fiscal_quarter: Optional[int] = None          # 연간이면 None

    # 손익계산서
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    operating_income: Optional[float] = None
    gross_profit: Optional[float] = None
    eps: Optional[float] = None

    # 재무상태표
    total_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    total_equity: Optional[float] = None
    long_term_debt: Optional[float] = None
    short_term_debt: Optional[float] = None
    total_debt: Optional[float] = None
    cash: Optional[float] = None

    # 현금흐름표
    operating_cash_flow: Optional[float] = None
    capital_expenditures: Optional[float] = None   # 절댓값
    free_cash_flow: Optional[float] = None
    dividends_paid: Optional[float] = None

    # 주식수
    shares_outstanding: Optional[float] = None
    shares_basic: Optional[float] = None
    shares_diluted: Optional[float] = None

    # 메타
    filing_date: Optional[str] = None
    fetched_at: Optional[datetime] = None

    @property
    def natural_key(self):
        return (self.symbol, self.fiscal_year, self.period_kind, self.fiscal_quarter or 0)

    @property
    def period_label(self) -> str:
        """표시용 기간 라벨 (2023 / 2023 Q2)"""
        if self.period_kind == QUARTERLY and self.fiscal_quarter:
            return f"{self.fiscal_year} Q{self.fiscal_quarter}"
        return str(self.fiscal_year)

    def with_fetched_at(self, fetched_at: datetime) -> "FinancialPeriod":
        return replace(self, fetched_at=fetched_at)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리 변환"""
        data = asdict(self)
        data["fetched_at"] = self.fetched_at.isoformat() if self.fetched_at else None
        data["period"] = self.period_label
        return data


def sort_most_recent_first(periods):
    """최신 기간 우선 정렬 (연도, 분기 내림차순)"""
    return sorted(
        periods,
        key=lambda p: (p.fiscal_year, p.fiscal_quarter or 0),
        reverse=True
    )
