"""
재무제표 정규화 서비스

두 가지 원본 형태를 하나의 FinancialPeriod로 변환
- (a) 표준화 형태: {financials: [{year, revenue, netIncome, ...}]}
- (b) SEC 보고 형태: {data: [{year, form, filedDate, report: {bs, ic, cf}}]}

(b)는 제공자마다 concept 이름이 달라서, 필드별 별칭 목록(구체적인 것 우선)을
순서대로 대조해 첫 번째로 매칭되는 concept 값을 사용한다.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from app.config.config import load_concept_aliases
from app.valuation.financial_period import (
    ANNUAL,
    QUARTERLY,
    FinancialPeriod,
    sort_most_recent_first
)

logger = logging.getLogger(__name__)

# 파생 주식수 허용 범위
MIN_DERIVED_SHARES = 1_000_000
MAX_DERIVED_SHARES = 50_000_000_000


def to_number(value: Any) -> Optional[float]:
    """숫자 변환 (변환 불가/NaN이면 None)"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _concept_name(concept: str) -> str:
    """'us-gaap_NetIncomeLoss' -> 'netincomeloss'"""
    name = concept.lower()
    for sep in ("_", ":"):
        if sep in name:
            name = name.rsplit(sep, 1)[-1]
    return name


def find_concept_value(items: List[Dict[str, Any]], aliases: List[str]) -> Optional[float]:
    """
    concept 배열에서 별칭 목록과 매칭되는 첫 값 검색

    별칭 순서대로 (1) concept 이름이 정확히 같은 항목, (2) 별칭을 포함하는 항목을 찾는다.

    Args:
        items: [{concept, value}, ...] (순서 없음)
        aliases: 소문자 별칭 목록 (구체적인 것 우선)

    Returns:
        매칭된 값 또는 None
    """
    if not items:
        return None

    entries = [
        (_concept_name(str(item.get("concept", ""))), str(item.get("concept", "")).lower(), item.get("value"))
        for item in items
        if isinstance(item, dict)
    ]

    for alias in aliases:
        for name, _, value in entries:
            if name == alias and to_number(value) is not None:
                return to_number(value)
        for _, full, value in entries:
            if alias in full and to_number(value) is not None:
                return to_number(value)

    return None


def infer_fiscal_quarter(filed_date: Optional[str]) -> Optional[int]:
    """
    분기 보고서의 회계 분기 추정 (제출 월 기준)

    4~6월 제출 -> Q1, 7~9월 -> Q2, 10~12월 -> Q3, 1~3월 -> Q4
    """
    if not filed_date:
        return None
    try:
        month = datetime.fromisoformat(str(filed_date)[:10]).month
    except ValueError:
        return None

    if 4 <= month <= 6:
        return 1
    if 7 <= month <= 9:
        return 2
    if 10 <= month <= 12:
        return 3
    return 4


def _in_share_range(value: Optional[float]) -> bool:
    return value is not None and MIN_DERIVED_SHARES <= value <= MAX_DERIVED_SHARES


def derive_free_cash_flow(
        operating_cash_flow: Optional[float],
        capital_expenditures: Optional[float]
) -> Optional[float]:
    """FCF = 영업현금흐름 - |CapEx| (CapEx 없으면 영업현금흐름, 둘 다 없으면 None)"""
    if operating_cash_flow is None:
        return None
    if capital_expenditures is None:
        return operating_cash_flow
    return operating_cash_flow - abs(capital_expenditures)


def derive_total_debt(
        long_term_debt: Optional[float],
        short_term_debt: Optional[float]
) -> Optional[float]:
    """총부채 = 장기 + 단기 (둘 다 없으면 None)"""
    if long_term_debt is None and short_term_debt is None:
        return None
    return (long_term_debt or 0.0) + (short_term_debt or 0.0)


class FinancialStatementNormalizer:
    """원본 재무제표 -> FinancialPeriod 변환기 (순수 함수)"""

    def __init__(self, aliases: Optional[Dict[str, Any]] = None):
        self.aliases = aliases or load_concept_aliases()
        self.reported_aliases = self.aliases["reported"]
        self.standardized_aliases = self.aliases["standardized"]

    # ============================================================
    # 공개 인터페이스
    # ============================================================

    def normalize(
            self,
            symbol: str,
            raw_period: Dict[str, Any],
            profile_shares_fallback: Optional[float] = None,
            frequency: str = ANNUAL
    ) -> FinancialPeriod:
        """
        단일 기간 정규화

        Args:
            symbol: 종목 심볼
            raw_period: 원본 기간 (report 키가 있으면 SEC 보고 형태)
            profile_shares_fallback: 주식수를 찾지 못했을 때 쓸 프로필 값
            frequency: 표준화 형태의 기간 구분 ("annual" | "quarterly")

        Returns:
            FinancialPeriod
        """
        if "report" in raw_period:
            return self._normalize_reported(symbol, raw_period, profile_shares_fallback)
        return self._normalize_standardized(symbol, raw_period, profile_shares_fallback, frequency)

    def normalize_payload(
            self,
            symbol: str,
            payload: Dict[str, Any],
            profile_shares_fallback: Optional[float] = None,
            frequency: str = ANNUAL
    ) -> List[FinancialPeriod]:
        """
        엔드포인트 응답 전체 정규화 ({financials: [...]} 또는 {data: [...]})

        같은 자연키가 여러 번 나오면 첫 번째(최신 제출)만 유지
        """
        raw_periods = payload.get("financials") or payload.get("data") or []

        periods = []
        seen = set()
        for raw in raw_periods:
            if not isinstance(raw, dict):
                continue
            try:
                period = self.normalize(symbol, raw, profile_shares_fallback, frequency)
            except ValueError as e:
                logger.warning(f"Skipping unparseable period for {symbol}: {e}")
                continue

            if period.natural_key in seen:
                continue
            seen.add(period.natural_key)
            periods.append(period)

        return sort_most_recent_first(periods)

    # ============================================================
    # (b) SEC 보고 형태
    # ============================================================

    def _find(self, report: Dict[str, Any], field: str) -> Optional[float]:
        entry = self.reported_aliases[field]
        return find_concept_value(report.get(entry["statement"]) or [], entry["aliases"])

    def _normalize_reported(
            self,
            symbol: str,
            raw_period: Dict[str, Any],
            profile_shares_fallback: Optional[float]
    ) -> FinancialPeriod:
        report = raw_period.get("report") or {}

        year = raw_period.get("year")
        if year is None:
            raise ValueError("reported period without year")

        form = str(raw_period.get("form") or "")
        period_kind = ANNUAL if form.upper().startswith("10-K") else QUARTERLY
        filed_date = raw_period.get("filedDate")
        fiscal_quarter = infer_fiscal_quarter(filed_date) if period_kind == QUARTERLY else None

        values = {field: self._find(report, field) for field in self.reported_aliases}

        operating_cash_flow = values["operatingCashFlow"]
        capex = values["capitalExpenditures"]
        if capex is not None:
            capex = abs(capex)

        dividends_paid = values["dividendsPaid"]
        if dividends_paid is not None:
            dividends_paid = abs(dividends_paid)

        shares = self._resolve_shares(values, profile_shares_fallback)

        eps = values["epsBasic"]
        if eps is None and values["netIncome"] is not None and shares:
            eps = values["netIncome"] / shares

        return FinancialPeriod(
            symbol=symbol.upper(),
            fiscal_year=int(year),
            period_kind=period_kind,
            fiscal_quarter=fiscal_quarter,
            revenue=values["revenue"],
            net_income=values["netIncome"],
            operating_income=values["operatingIncome"],
            gross_profit=values["grossProfit"],
            eps=eps,
            total_assets=values["totalAssets"],
            total_liabilities=values["totalLiabilities"],
            total_equity=values["totalEquity"],
            long_term_debt=values["longTermDebt"],
            short_term_debt=values["shortTermDebt"],
            total_debt=derive_total_debt(values["longTermDebt"], values["shortTermDebt"]),
            cash=values["cash"],
            operating_cash_flow=operating_cash_flow,
            capital_expenditures=capex,
            free_cash_flow=derive_free_cash_flow(operating_cash_flow, capex),
            dividends_paid=dividends_paid,
            shares_outstanding=shares,
            shares_basic=values["sharesWeightedBasic"],
            shares_diluted=values["sharesDiluted"],
            filing_date=str(filed_date)[:10] if filed_date else None
        )

    def _resolve_shares(
            self,
            values: Dict[str, Optional[float]],
            profile_shares_fallback: Optional[float]
    ) -> Optional[float]:
        """
        주식수 결정 순서

        1. 직접 보고된 발행주식수
        2. 가중평균 기본 주식수
        3. 보통주 귀속 순이익 / 기본 EPS
        4. 순이익 / 기본 EPS
        (3, 4는 [1e6, 5e10] 범위일 때만 채택)
        5. 프로필 발행주식수
        """
        if values["sharesOutstanding"]:
            return values["sharesOutstanding"]

        if values["sharesWeightedBasic"]:
            return values["sharesWeightedBasic"]

        eps = values["epsBasic"]
        if eps:
            for income_field in ("netIncomeAvailableToCommon", "netIncome"):
                income = values[income_field]
                if income is None:
                    continue
                derived = income / eps
                if _in_share_range(derived):
                    return derived

        return profile_shares_fallback

    # ============================================================
    # (a) 표준화 형태
    # ============================================================

    def _extract(self, raw_period: Dict[str, Any], field: str) -> Optional[float]:
        for key in self.standardized_aliases.get(field, []):
            value = to_number(raw_period.get(key))
            if value is not None:
                return value
        return None

    def _normalize_standardized(
            self,
            symbol: str,
            raw_period: Dict[str, Any],
            profile_shares_fallback: Optional[float],
            frequency: str
    ) -> FinancialPeriod:
        year = raw_period.get("year")
        if year is None and raw_period.get("period"):
            year = str(raw_period["period"])[:4]
        if year is None:
            raise ValueError("standardized period without year")

        period_kind = QUARTERLY if frequency == QUARTERLY else ANNUAL
        fiscal_quarter = None
        if period_kind == QUARTERLY:
            fiscal_quarter = raw_period.get("quarter") or infer_fiscal_quarter(
                raw_period.get("filingDate") or raw_period.get("period")
            )

        fields = {field: self._extract(raw_period, field) for field in self.standardized_aliases}

        capex = fields["capitalExpenditures"]
        if capex is not None:
            capex = abs(capex)

        free_cash_flow = fields["freeCashFlow"]
        if free_cash_flow is None:
            free_cash_flow = derive_free_cash_flow(fields["operatingCashFlow"], capex)

        total_debt = fields["totalDebt"]
        if total_debt is None:
            total_debt = derive_total_debt(fields["longTermDebt"], fields["shortTermDebt"])

        shares = fields["sharesOutstanding"] or fields["sharesBasic"] or profile_shares_fallback

        eps = fields["eps"]
        if eps is None and fields["netIncome"] is not None and shares:
            eps = fields["netIncome"] / shares

        dividends_paid = fields["dividendsPaid"]
        if dividends_paid is not None:
            dividends_paid = abs(dividends_paid)

        filing_date = raw_period.get("filingDate")
        if isinstance(filing_date, (date, datetime)):
            filing_date = filing_date.isoformat()

        return FinancialPeriod(
            symbol=symbol.upper(),
            fiscal_year=int(year),
            period_kind=period_kind,
            fiscal_quarter=int(fiscal_quarter) if fiscal_quarter else None,
            revenue=fields["revenue"],
            net_income=fields["netIncome"],
            operating_income=fields["operatingIncome"],
            gross_profit=fields["grossProfit"],
            eps=eps,
            total_assets=fields["totalAssets"],
            total_liabilities=fields["totalLiabilities"],
            total_equity=fields["totalEquity"],
            long_term_debt=fields["longTermDebt"],
            short_term_debt=fields["shortTermDebt"],
            total_debt=total_debt,
            cash=fields["cash"],
            operating_cash_flow=fields["operatingCashFlow"],
            capital_expenditures=capex,
            free_cash_flow=free_cash_flow,
            dividends_paid=dividends_paid,
            shares_outstanding=shares,
            shares_basic=fields["sharesBasic"],
            shares_diluted=fields["sharesDiluted"],
            filing_date=str(filing_date)[:10] if filing_date else None
        )


_normalizer = None


def get_statement_normalizer() -> FinancialStatementNormalizer:
    """정규화기 싱글톤"""
    global _normalizer

    if _normalizer is None:
        _normalizer = FinancialStatementNormalizer()

    return _normalizer
