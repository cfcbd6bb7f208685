"""
지수 구성 종목 캐시 모델
"""
from sqlalchemy import Column, Integer, String, TIMESTAMP, UniqueConstraint

from app.core.database import Base


class IndexConstituent(Base):
    """지수별 구성 종목 캐시 (Russell 2000 등)"""

    __tablename__ = "index_constituents"
    __table_args__ = (
        UniqueConstraint("index_symbol", "symbol", name="uq_index_constituent"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    index_symbol = Column(String(20), nullable=False, index=True, comment="지수 심볼")
    symbol = Column(String(20), nullable=False, comment="종목 심볼")
    fetched_at = Column(TIMESTAMP, nullable=False, comment="조회 시각")

    def __repr__(self):
        return f"<IndexConstituent(index={self.index_symbol}, symbol={self.symbol})>"
