"""
저장된 DCF 밸류에이션 모델
"""
from sqlalchemy import Column, Integer, String, Float, Boolean, Text, TIMESTAMP, JSON, Index

from app.core.database import Base


class StockValuation(Base):
    """
    사용자별 저장 밸류에이션 스냅샷

    - 소유자(user_id)만 조회/삭제 가능
    """

    __tablename__ = "stock_valuations"
    __table_args__ = (
        Index("idx_stock_valuations_user_symbol", "user_id", "symbol"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, comment="소유자")
    symbol = Column(String(20), nullable=False, comment="종목 심볼")
    name = Column(String(200), nullable=True, comment="스냅샷 이름")

    # ========================================
    # 입력 / 결과
    # ========================================
    inputs = Column(JSON, nullable=False, comment="시나리오 입력")
    current_price = Column(Float, nullable=True, comment="계산 시점 현재가")
    fair_value_low = Column(Float, nullable=True, comment="적정가 (bear)")
    fair_value_medium = Column(Float, nullable=True, comment="적정가 (base)")
    fair_value_high = Column(Float, nullable=True, comment="적정가 (bull)")
    margin_of_safety_low = Column(Float, nullable=True)
    margin_of_safety_medium = Column(Float, nullable=True)
    margin_of_safety_high = Column(Float, nullable=True)
    inputs_were_corrected = Column(Boolean, nullable=False, default=False, comment="입력 자동 교정 여부")
    notes = Column(Text, nullable=True, comment="메모")

    created_at = Column(TIMESTAMP, nullable=False, comment="생성 시각")
    updated_at = Column(TIMESTAMP, nullable=True, comment="수정 시각")

    def __repr__(self):
        return f"<StockValuation(id={self.id}, user={self.user_id}, symbol={self.symbol})>"

    def to_dict(self):
        """딕셔너리 변환"""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "inputs": self.inputs,
            "current_price": self.current_price,
            "fair_value_low": self.fair_value_low,
            "fair_value_medium": self.fair_value_medium,
            "fair_value_high": self.fair_value_high,
            "margin_of_safety_low": self.margin_of_safety_low,
            "margin_of_safety_medium": self.margin_of_safety_medium,
            "margin_of_safety_high": self.margin_of_safety_high,
            "inputs_were_corrected": self.inputs_were_corrected,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }
