"""
스캔별 종목 필라 결과 모델
"""
from sqlalchemy import Column, Integer, String, Float, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint, Index

from app.core.database import Base


class PillarScanResult(Base):
    """
    스캔 작업 x 종목 단위 결과

    - (scan_id, symbol) 기준 upsert
    - 필라별 통과 여부 + 점수 (5: 통과, 2: 미통과, 1: 데이터 없음)
    """

    __tablename__ = "stock_pillar_results"
    __table_args__ = (
        UniqueConstraint("scan_id", "symbol", name="uq_pillar_results_scan_symbol"),
        Index("idx_pillar_results_passed", "scan_id", "pillars_passed"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(Integer, ForeignKey("stock_scans.id", ondelete="CASCADE"), nullable=False, comment="스캔 ID")
    symbol = Column(String(20), nullable=False, comment="종목 심볼")

    # ========================================
    # 기업 정보
    # ========================================
    company_name = Column(String(200), nullable=True, comment="회사명")
    sector = Column(String(100), nullable=True, comment="섹터")
    current_price = Column(Float, nullable=True, comment="현재가")
    market_cap = Column(Float, nullable=True, comment="시가총액")

    # ========================================
    # 필라 통과 여부
    # ========================================
    pillar_1_pass = Column(Boolean, nullable=False, default=False, comment="5년 P/E")
    pillar_2_pass = Column(Boolean, nullable=False, default=False, comment="5년 ROIC")
    pillar_3_pass = Column(Boolean, nullable=False, default=False, comment="발행주식수")
    pillar_4_pass = Column(Boolean, nullable=False, default=False, comment="현금흐름 성장")
    pillar_5_pass = Column(Boolean, nullable=False, default=False, comment="순이익 성장")
    pillar_6_pass = Column(Boolean, nullable=False, default=False, comment="매출 성장")
    pillar_7_pass = Column(Boolean, nullable=False, default=False, comment="장기부채/FCF")
    pillar_8_pass = Column(Boolean, nullable=False, default=False, comment="5년 P/FCF")

    # ========================================
    # 필라 점수 (1-5)
    # ========================================
    pillar_1_score = Column(Integer, nullable=True)
    pillar_2_score = Column(Integer, nullable=True)
    pillar_3_score = Column(Integer, nullable=True)
    pillar_4_score = Column(Integer, nullable=True)
    pillar_5_score = Column(Integer, nullable=True)
    pillar_6_score = Column(Integer, nullable=True)
    pillar_7_score = Column(Integer, nullable=True)
    pillar_8_score = Column(Integer, nullable=True)

    # ========================================
    # 합계
    # ========================================
    pillars_passed = Column(Integer, nullable=False, default=0, comment="통과 필라 수")
    total_score = Column(Integer, nullable=False, default=0, comment="총점 (통과 수 x 5)")
    analyzed_at = Column(TIMESTAMP, nullable=True, comment="분석 시각")

    def __repr__(self):
        return f"<PillarScanResult(scan_id={self.scan_id}, symbol={self.symbol}, passed={self.pillars_passed})>"

    def to_dict(self):
        """딕셔너리 변환"""
        return {
            "symbol": self.symbol,
            "company_name": self.company_name,
            "sector": self.sector,
            "current_price": self.current_price,
            "market_cap": self.market_cap,
            "pillars": {
                str(n): {
                    "passed": getattr(self, f"pillar_{n}_pass"),
                    "score": getattr(self, f"pillar_{n}_score")
                }
                for n in range(1, 9)
            },
            "pillars_passed": self.pillars_passed,
            "total_score": self.total_score,
            "analyzed_at": self.analyzed_at.isoformat() if self.analyzed_at else None
        }
