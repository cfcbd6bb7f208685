"""
배치 스캔 작업 모델
"""
from sqlalchemy import Column, Integer, String, Float, Date, Text, TIMESTAMP, JSON, Index, text

from app.core.database import Base

SCAN_RUNNING = "running"
SCAN_COMPLETED = "completed"
SCAN_FAILED = "failed"


class ScanJob(Base):
    """
    스캔 작업 테이블

    - status='running' 행은 최대 1개 (부분 유니크 인덱스)
    - 프로세스가 재시작되어도 이 테이블에서 진행 상태를 복원
    """

    __tablename__ = "stock_scans"
    __table_args__ = (
        Index(
            "uq_stock_scans_single_running",
            "status",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'")
        ).ddl_if(dialect=("sqlite", "postgresql")),
        Index("idx_stock_scans_created", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_date = Column(Date, nullable=False, comment="스캔 기준일")
    status = Column(String(20), nullable=False, default=SCAN_RUNNING, comment="running / completed / failed")
    universe = Column(String(30), nullable=True, comment="유니버스 종류")

    # ========================================
    # 진행 상황
    # ========================================
    total_stocks = Column(Integer, nullable=False, default=0, comment="대상 종목 수")
    stocks_analyzed = Column(Integer, nullable=False, default=0, comment="분석 완료 종목 수")
    stocks_failed = Column(Integer, nullable=False, default=0, comment="최종 실패 종목 수")
    failed_symbols = Column(JSON, nullable=True, comment="최종 실패 심볼 목록")
    error_message = Column(Text, nullable=True, comment="실패 사유")

    # ========================================
    # 시각
    # ========================================
    created_at = Column(TIMESTAMP, nullable=False, comment="생성 시각")
    completed_at = Column(TIMESTAMP, nullable=True, comment="완료 시각")
    duration_seconds = Column(Float, nullable=True, comment="소요 시간 (초)")

    def __repr__(self):
        return f"<ScanJob(id={self.id}, status={self.status}, {self.stocks_analyzed}/{self.total_stocks})>"

    @property
    def progress(self) -> float:
        """진행률 (%)"""
        if not self.total_stocks:
            return 0.0
        return round(self.stocks_analyzed / self.total_stocks * 100, 1)

    def to_dict(self):
        """딕셔너리 변환"""
        return {
            "scan_id": self.id,
            "scan_date": self.scan_date.isoformat() if self.scan_date else None,
            "status": self.status,
            "universe": self.universe,
            "total_stocks": self.total_stocks,
            "stocks_analyzed": self.stocks_analyzed,
            "stocks_failed": self.stocks_failed,
            "failed_symbols": self.failed_symbols or [],
            "progress": self.progress,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds
        }
