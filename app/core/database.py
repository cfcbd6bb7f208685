"""
데이터베이스 연결 및 세션 관리
재무 데이터 캐시 / 필라 분석 캐시 / 스캔 작업 저장소
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional, Sequence
import logging

from app.config.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# SQLAlchemy 엔진 생성
if settings.is_sqlite:
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
        echo=settings.DB_ECHO
    )
else:
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=settings.DB_ECHO  # SQL 로그 출력 (개발 시 True)
    )

# 세션 팩토리
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base 클래스 (모델 상속용)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    데이터베이스 세션 의존성

    Usage:
        @router.get("/pillars/{symbol}")
        def analyze(symbol: str, db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """모든 테이블 생성 (없을 때만)"""
    # 모델 모듈을 import 해야 metadata에 테이블이 등록된다
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def check_db_connection() -> bool:
    """데이터베이스 연결 확인"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("Database connection successful")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


def get_db_stats() -> dict:
    """
    데이터베이스 통계 조회

    Returns:
        dict: 캐시된 재무 기간 수, 필라 분석 수, 스캔 수 등
    """
    try:
        db = SessionLocal()

        stats = {
            "financial_periods": db.execute(text(
                "SELECT COUNT(*) FROM stock_financials_cache"
            )).scalar(),

            "pillar_analyses": db.execute(text(
                "SELECT COUNT(*) FROM eight_pillars_analysis"
            )).scalar(),

            "scans": db.execute(text(
                "SELECT COUNT(*) FROM stock_scans"
            )).scalar(),

            "saved_valuations": db.execute(text(
                "SELECT COUNT(*) FROM stock_valuations"
            )).scalar()
        }

        db.close()
        return stats

    except Exception as e:
        logger.error(f"Failed to get DB stats: {e}")
        return {}


def upsert(
        db: Session,
        model,
        rows: Sequence[Dict[str, Any]],
        index_elements: List[str],
        update_columns: Optional[List[str]] = None
) -> None:
    """
    자연키 기준 upsert (INSERT ... ON CONFLICT DO UPDATE)

    동시에 같은 키를 쓰는 작성자가 있어도 DB의 원자적 upsert로 수렴한다.

    Args:
        db: 세션
        model: ORM 모델 클래스
        rows: 삽입할 행 목록
        index_elements: 충돌 판단 컬럼 (유니크 제약)
        update_columns: 충돌 시 덮어쓸 컬럼 (기본: 키 외 전체)
    """
    if not rows:
        return

    dialect = db.get_bind().dialect.name

    if update_columns is None:
        update_columns = [k for k in rows[0].keys() if k not in index_elements]

    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif dialect in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert

        stmt = insert(model.__table__).values(list(rows))
        stmt = stmt.on_duplicate_key_update(
            {col: stmt.inserted[col] for col in update_columns}
        )
        db.execute(stmt)
        return
    else:
        raise NotImplementedError(f"upsert not supported for dialect {dialect}")

    stmt = insert(model.__table__).values(list(rows))
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={col: stmt.excluded[col] for col in update_columns}
    )
    db.execute(stmt)


def utcnow() -> datetime:
    """DB 저장용 현재 시각 (naive UTC)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
