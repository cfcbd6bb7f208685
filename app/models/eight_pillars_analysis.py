"""
Eight Pillars 분석 캐시 모델
"""
from sqlalchemy import Column, Integer, String, Float, Date, TIMESTAMP, JSON, UniqueConstraint

from app.core.database import Base


class EightPillarsAnalysisCache(Base):
    """
    종목별 Eight Pillars 분석 결과 캐시

    - (symbol, analysis_day) 기준 upsert (하루 1건)
    - 24시간 이내 결과는 재계산 없이 반환
    - 8개 필라 상세는 JSON으로 저장
    """

    __tablename__ = "eight_pillars_analysis"
    __table_args__ = (
        UniqueConstraint("symbol", "analysis_day", name="uq_pillars_symbol_day"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False, index=True, comment="종목 심볼")
    analysis_day = Column(Date, nullable=False, comment="분석 기준일")
    analyzed_at = Column(TIMESTAMP, nullable=False, comment="분석 시각")

    # ========================================
    # 기업 / 시장 정보
    # ========================================
    company_name = Column(String(200), nullable=True, comment="회사명")
    industry = Column(String(100), nullable=True, comment="산업")
    current_price = Column(Float, nullable=True, comment="현재가")
    market_cap = Column(Float, nullable=True, comment="시가총액")
    shares_outstanding = Column(Float, nullable=True, comment="발행주식수")

    # ========================================
    # 결과
    # ========================================
    pillars_passed = Column(Integer, nullable=False, default=0, comment="통과 필라 수 (0-8)")
    periods_analyzed = Column(Integer, nullable=True, comment="분석 기간 수")
    years_span = Column(Integer, nullable=True, comment="분석 기간 (년)")
    pillars = Column(JSON, nullable=False, comment="필라별 결과")

    def __repr__(self):
        return f"<EightPillarsAnalysisCache(symbol={self.symbol}, day={self.analysis_day}, passed={self.pillars_passed})>"
