"""
재무 기간 캐시 모델
"""
from sqlalchemy import Column, Integer, String, Float, TIMESTAMP, UniqueConstraint, Index

from app.core.database import Base
from app.valuation.financial_period import FinancialPeriod

# 캐시 행과 FinancialPeriod가 공유하는 수치 컬럼
NUMERIC_FIELDS = (
    "revenue", "net_income", "operating_income", "gross_profit", "eps",
    "total_assets", "total_liabilities", "total_equity",
    "long_term_debt", "short_term_debt", "total_debt", "cash",
    "operating_cash_flow", "capital_expenditures", "free_cash_flow", "dividends_paid",
    "shares_outstanding", "shares_basic", "shares_diluted",
)


class StockFinancialsCache(Base):
    """
    정규화된 재무 기간 캐시 테이블

    - 자연키 (symbol, fiscal_year, period_kind, fiscal_quarter) upsert
    - 갱신 시 행 전체를 교체 (필드 단위 부분 갱신 없음)
    - fetched_at 기준 24시간이 지나면 재조회 대상
    """

    __tablename__ = "stock_financials_cache"
    __table_args__ = (
        UniqueConstraint(
            "symbol", "fiscal_year", "period_kind", "fiscal_quarter",
            name="uq_financials_period"
        ),
        Index("idx_financials_symbol_kind", "symbol", "period_kind"),
    )

    # ========================================
    # 키
    # ========================================
    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False, comment="종목 심볼")
    fiscal_year = Column(Integer, nullable=False, comment="회계연도")
    period_kind = Column(String(10), nullable=False, comment="annual / quarterly")
    fiscal_quarter = Column(Integer, nullable=False, default=0, comment="회계분기 (연간=0)")

    # ========================================
    # 손익
    # ========================================
    revenue = Column(Float, nullable=True, comment="매출")
    net_income = Column(Float, nullable=True, comment="순이익")
    operating_income = Column(Float, nullable=True, comment="영업이익")
    gross_profit = Column(Float, nullable=True, comment="매출총이익")
    eps = Column(Float, nullable=True, comment="주당순이익")

    # ========================================
    # 재무상태
    # ========================================
    total_assets = Column(Float, nullable=True, comment="총자산")
    total_liabilities = Column(Float, nullable=True, comment="총부채")
    total_equity = Column(Float, nullable=True, comment="자본총계")
    long_term_debt = Column(Float, nullable=True, comment="장기차입금")
    short_term_debt = Column(Float, nullable=True, comment="단기차입금")
    total_debt = Column(Float, nullable=True, comment="총차입금")
    cash = Column(Float, nullable=True, comment="현금및현금성자산")

    # ========================================
    # 현금흐름
    # ========================================
    operating_cash_flow = Column(Float, nullable=True, comment="영업현금흐름")
    capital_expenditures = Column(Float, nullable=True, comment="자본적지출 (절댓값)")
    free_cash_flow = Column(Float, nullable=True, comment="잉여현금흐름")
    dividends_paid = Column(Float, nullable=True, comment="배당금 지급")

    # ========================================
    # 주식수
    # ========================================
    shares_outstanding = Column(Float, nullable=True, comment="발행주식수")
    shares_basic = Column(Float, nullable=True, comment="가중평균 기본 주식수")
    shares_diluted = Column(Float, nullable=True, comment="가중평균 희석 주식수")

    # ========================================
    # 메타 정보
    # ========================================
    filing_date = Column(String(10), nullable=True, comment="제출일")
    fetched_at = Column(TIMESTAMP, nullable=False, comment="조회 시각")

    def __repr__(self):
        return (
            f"<StockFinancialsCache(symbol={self.symbol}, year={self.fiscal_year}, "
            f"kind={self.period_kind}, q={self.fiscal_quarter})>"
        )

    @staticmethod
    def row_from_period(period: FinancialPeriod) -> dict:
        """upsert용 행 딕셔너리"""
        row = {
            "symbol": period.symbol,
            "fiscal_year": period.fiscal_year,
            "period_kind": period.period_kind,
            "fiscal_quarter": period.fiscal_quarter or 0,
            "filing_date": period.filing_date,
            "fetched_at": period.fetched_at,
        }
        for field in NUMERIC_FIELDS:
            row[field] = getattr(period, field)
        return row

    def to_period(self) -> FinancialPeriod:
        """FinancialPeriod 변환"""
        return FinancialPeriod(
            symbol=self.symbol,
            fiscal_year=self.fiscal_year,
            period_kind=self.period_kind,
            fiscal_quarter=self.fiscal_quarter or None,
            filing_date=self.filing_date,
            fetched_at=self.fetched_at,
            **{field: getattr(self, field) for field in NUMERIC_FIELDS}
        )
