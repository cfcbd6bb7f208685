"""
Highgarden FastAPI 메인 애플리케이션
재무 데이터 캐시 + Eight Pillars 스캐너 + DCF 밸류에이션
"""
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from app.config.config import get_settings
from app.core.database import check_db_connection, get_db_stats, init_db
from app.core.market_data_client import get_market_data_client
from app.services.scan_job_repository import ScanJobRepository

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """애플리케이션 시작/종료 시 실행"""
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
    logger.info("="*60)

    # 1. DB 연결 확인 + 테이블 생성
    if check_db_connection():
        init_db()
        logger.info("✓ Database ready")

        # 2. 멈춘 스캔 정리
        swept = ScanJobRepository().sweep_stuck_jobs()
        if swept:
            logger.warning(f"  - Reclassified {swept} stuck scan(s) as failed")

        stats = get_db_stats()
        logger.info(f"  - Financial periods: {stats.get('financial_periods', 0):,}")
        logger.info(f"  - Pillar analyses: {stats.get('pillar_analyses', 0):,}")
        logger.info(f"  - Scans: {stats.get('scans', 0):,}")
        logger.info(f"  - Saved valuations: {stats.get('saved_valuations', 0):,}")
    else:
        logger.error("✗ Database connection failed")

    # 3. 시장 데이터 제공자
    if settings.FINNHUB_API_KEY:
        logger.info(f"✓ Market data provider: {settings.FINNHUB_BASE_URL}")
    else:
        logger.warning("✗ FINNHUB_API_KEY not set, market data calls will fail")

    logger.info("="*60)
    logger.info(f"{settings.PROJECT_NAME} is ready!")
    logger.info(f"API running on http://{settings.API_HOST}:{settings.API_PORT}")
    logger.info("="*60)

    yield

    get_market_data_client().close()
    logger.info(f"Shutting down {settings.PROJECT_NAME}")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.DESCRIPTION,
    version=settings.VERSION,
    lifespan=lifespan
)


@app.get("/")
async def root():
    """루트 엔드포인트"""
    return {
        "project": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "description": settings.DESCRIPTION,
        "status": "running",
        "features": [
            "재무 데이터 캐시 (24시간)",
            "Eight Pillars 분석",
            "배치 스캐너",
            "3개 시나리오 DCF"
        ]
    }


@app.get("/health")
async def health_check():
    """헬스 체크 엔드포인트"""
    db_status = "healthy" if check_db_connection() else "unhealthy"

    return {
        "status": "ok",
        "services": {
            "database": db_status,
            "market_data": "configured" if settings.FINNHUB_API_KEY else "unconfigured"
        },
        "data": get_db_stats(),
        "version": settings.VERSION
    }


# ============================================================
# 라우터 등록
# ============================================================
from app.routers import fundamentals, pillars, scanner, valuation

app.include_router(fundamentals.router)
app.include_router(pillars.router)
app.include_router(scanner.router)
app.include_router(valuation.router)

logger.info("All routers registered successfully")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD
    )
