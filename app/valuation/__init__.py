"""
Valuation 패키지
재무 기간 집계, Eight Pillars 판정, DCF 밸류에이션

Models:
- FinancialPeriod: 정규화된 재무 기간
- AggregationEngine: 다기간 합계/평균/CAGR/ROIC
- EightPillarsScorer: Eight Pillars 판정
- DCFValuation: Discounted Cash Flow (3개 시나리오)
"""
from .financial_period import FinancialPeriod
from .aggregation import AggregationEngine, AggregateSnapshot
from .eight_pillars import EightPillarsScorer, EightPillarsAnalysis, PillarResult
from .dcf_valuation import DCFValuation, DCFInputs, ValuationResult

__all__ = [
    "FinancialPeriod",
    "AggregationEngine",
    "AggregateSnapshot",
    "EightPillarsScorer",
    "EightPillarsAnalysis",
    "PillarResult",
    "DCFValuation",
    "DCFInputs",
    "ValuationResult"
]
