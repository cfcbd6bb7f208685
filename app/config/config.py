"""
Highgarden 프로젝트 환경 설정
재무 데이터 캐싱 + Eight Pillars 스코어링 엔진
"""
import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic_settings import BaseSettings
from functools import lru_cache

CONCEPT_ALIASES_PATH = Path(__file__).parent / "concept_aliases.json"


class Settings(BaseSettings):
    """애플리케이션 설정"""

    # ============================================================
    # 프로젝트 기본 정보
    # ============================================================
    PROJECT_NAME: str = "Highgarden"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Fundamental Data Cache & Eight Pillars Valuation Engine"

    # ============================================================
    # 데이터베이스 설정
    # ============================================================
    DATABASE_URL: str = "sqlite:///./highgarden.db"
    DB_ECHO: bool = False

    # ============================================================
    # 시장 데이터 제공자 (Finnhub)
    # ============================================================
    FINNHUB_API_KEY: str = ""
    FINNHUB_BASE_URL: str = "https://finnhub.io/api/v1"
    FINNHUB_TIMEOUT_SECONDS: float = 10.0
    FINNHUB_MAX_CALLS_PER_SECOND: int = 30

    # ============================================================
    # 캐시 설정
    # ============================================================
    FUNDAMENTALS_CACHE_TTL_HOURS: int = 24
    PILLARS_CACHE_TTL_HOURS: int = 24
    INDEX_CONSTITUENTS_CACHE_TTL_DAYS: int = 7

    # ============================================================
    # 배치 스캐너 설정
    # ============================================================
    SCANNER_BATCH_SIZE: int = 10
    SCANNER_BATCH_DELAY_SECONDS: float = 2.0
    SCANNER_RETRY_DELAY_SECONDS: float = 5.0
    SCANNER_PROGRESS_EVERY: int = 10

    # 멈춘 작업 판정 기준
    SCAN_STUCK_MAX_HOURS: int = 6
    SCAN_STUCK_NO_PROGRESS_HOURS: int = 1

    # 유니버스
    RUSSELL2000_CSV_PATH: str = "data/russell2000.csv"
    RUSSELL2000_INDEX_SYMBOL: str = "^RUT"
    COMBINED_INDEX_SYMBOLS: List[str] = ["^GSPC", "^NDX"]

    # ============================================================
    # DCF 밸류에이션 설정
    # ============================================================
    DCF_RISK_FREE_RATE: float = 0.04
    DCF_MARKET_RISK_PREMIUM: float = 0.06
    DCF_DEFAULT_DISCOUNT_RATE: float = 0.10
    DCF_TERMINAL_GROWTH: float = 0.03
    DCF_PROJECTION_YEARS: int = 10

    # 역전된 bear/bull 입력 자동 교정 (False면 요청 거부)
    DCF_AUTO_CORRECT_REVERSED_INPUTS: bool = True

    # ============================================================
    # 로깅 설정
    # ============================================================
    LOG_LEVEL: str = "INFO"

    # ============================================================
    # API 설정
    # ============================================================
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8300
    API_RELOAD: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ============================================================
    # 유틸리티 프로퍼티
    # ============================================================

    @property
    def database_url(self) -> str:
        """DB 연결 URL"""
        return self.DATABASE_URL

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """설정 객체 반환 (캐싱)"""
    return Settings()


@lru_cache()
def load_concept_aliases() -> Dict[str, Any]:
    """
    재무제표 concept 별칭 테이블 로드 (캐싱)

    제공자 포맷이 바뀌면 코드가 아니라 JSON 데이터만 수정한다.

    Returns:
        {"version": ..., "reported": {...}, "standardized": {...}}
    """
    with open(CONCEPT_ALIASES_PATH, encoding="utf-8") as f:
        return json.load(f)
