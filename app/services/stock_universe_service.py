"""
스캔 대상 종목 유니버스 서비스

- curated: 대형/중형주 큐레이션 목록
- russell2000: CSV -> DB 캐시 -> API 순서로 조회
- combined: 주요 지수 구성 종목 + Russell 2000 + 큐레이션 (중복 제거)
- us_all: 미국 상장 보통주 전체
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

import pandas as pd
from sqlalchemy.orm import Session
from sqlalchemy import and_

from app.config.config import get_settings
from app.core.database import upsert, utcnow
from app.core.exceptions import MarketDataError
from app.core.market_data_client import get_market_data_client
from app.models.index_constituent import IndexConstituent

logger = logging.getLogger(__name__)
settings = get_settings()

UNIVERSE_CURATED = "curated"
UNIVERSE_RUSSELL2000 = "russell2000"
UNIVERSE_COMBINED = "combined"
UNIVERSE_US_ALL = "us_all"
UNIVERSES = (UNIVERSE_CURATED, UNIVERSE_RUSSELL2000, UNIVERSE_COMBINED, UNIVERSE_US_ALL)

CSV_SYMBOL_COLUMNS = ("Ticker", "Symbol", "ticker", "symbol")

# 가치투자 분석에 자주 쓰이는 대형/중형주
CURATED_STOCKS = [
    # Tech
    "AAPL", "MSFT", "GOOGL", "META", "AMZN", "NVDA", "AMD", "INTC", "CRM", "ORCL",
    "ADBE", "CSCO", "IBM", "TXN", "QCOM", "AVGO", "MU", "AMAT", "LRCX", "KLAC",
    # Finance
    "JPM", "BAC", "WFC", "GS", "MS", "C", "USB", "PNC", "TFC", "SCHW",
    "BLK", "SPGI", "CME", "ICE", "AON", "MMC", "AXP", "V", "MA", "PYPL",
    # Healthcare
    "JNJ", "UNH", "PFE", "MRK", "ABBV", "LLY", "TMO", "ABT", "DHR", "BMY",
    "AMGN", "GILD", "ISRG", "MDT", "SYK", "BDX", "ZTS", "REGN", "VRTX", "BIIB",
    # Consumer
    "WMT", "PG", "KO", "PEP", "COST", "HD", "MCD", "NKE", "SBUX", "TGT",
    "LOW", "TJX", "ROST", "DG", "DLTR", "YUM", "CMG", "DPZ", "EL", "CL",
    # Industrial
    "CAT", "DE", "BA", "HON", "UPS", "UNP", "RTX", "LMT", "GD", "NOC",
    "GE", "MMM", "EMR", "ETN", "PH", "ROK", "CMI", "PCAR", "ITW", "SWK",
    # Energy
    "XOM", "CVX", "COP", "SLB", "EOG", "PXD", "MPC", "VLO", "PSX", "OXY",
    # Utilities
    "NEE", "DUK", "SO", "D", "AEP", "EXC", "SRE", "PEG", "ED", "XEL",
    # Communications
    "DIS", "CMCSA", "NFLX", "T", "VZ", "TMUS", "CHTR", "WBD", "PARA", "FOX",
    # Materials
    "LIN", "APD", "SHW", "ECL", "DD", "NEM", "FCX", "NUE", "STLD", "CF",
]


@dataclass
class UniverseOptions:
    """스캔 유니버스 옵션"""
    universe: str = UNIVERSE_CURATED
    russell2000_only: bool = False
    limit: int = 0

    @property
    def resolved_universe(self) -> str:
        return UNIVERSE_RUSSELL2000 if self.russell2000_only else self.universe


def is_common_ticker(symbol: str) -> bool:
    """보통주 티커 형식 (클래스주/우선주 제외, 5자 이하)"""
    return bool(symbol) and "." not in symbol and "-" not in symbol and len(symbol) <= 5


def dedupe(symbols: Iterable[str]) -> List[str]:
    """순서를 유지한 중복 제거"""
    seen = set()
    result = []
    for symbol in symbols:
        symbol = symbol.strip().upper()
        if symbol and symbol not in seen:
            seen.add(symbol)
            result.append(symbol)
    return result


class StockUniverseService:
    """유니버스 해석기"""

    def __init__(
            self,
            db: Session,
            gateway=None,
            csv_path: Optional[str] = None,
            clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.gateway = gateway or get_market_data_client()
        self.csv_path = csv_path if csv_path is not None else settings.RUSSELL2000_CSV_PATH
        self.clock = clock
        self.cache_ttl = timedelta(days=settings.INDEX_CONSTITUENTS_CACHE_TTL_DAYS)

    def resolve(self, options: UniverseOptions) -> List[str]:
        """
        옵션에 맞는 종목 목록

        결과가 비면 큐레이션 목록으로 대체
        """
        universe = options.resolved_universe
        if universe not in UNIVERSES:
            raise ValueError(f"Unknown universe: {universe}")

        if universe == UNIVERSE_RUSSELL2000:
            symbols = self.get_russell2000()
        elif universe == UNIVERSE_COMBINED:
            symbols = self.get_combined()
        elif universe == UNIVERSE_US_ALL:
            symbols = self.get_us_stocks()
        else:
            symbols = self.get_curated_list()

        if not symbols:
            logger.warning(f"Universe '{universe}' resolved to no symbols, using curated list")
            symbols = self.get_curated_list()

        if options.limit and options.limit > 0:
            symbols = symbols[:options.limit]

        logger.info(f"Resolved universe '{universe}': {len(symbols)} symbols")
        return symbols

    def get_curated_list(self) -> List[str]:
        return list(CURATED_STOCKS)

    # ============================================================
    # Russell 2000
    # ============================================================

    def get_russell2000(self) -> List[str]:
        """CSV -> DB 캐시 -> API 순서"""
        symbols = self._load_csv(self.csv_path)
        if symbols:
            logger.info(f"Loaded {len(symbols)} Russell 2000 symbols from CSV")
            return symbols

        return self.get_index_constituents(settings.RUSSELL2000_INDEX_SYMBOL)

    def _load_csv(self, path: Optional[str]) -> List[str]:
        if not path or not os.path.exists(path):
            return []

        try:
            df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read {path}: {e}")
            return []

        column = next((c for c in CSV_SYMBOL_COLUMNS if c in df.columns), None)
        if column is None:
            logger.warning(f"No ticker column in {path}")
            return []

        tickers = df[column].str.strip().str.upper()
        return dedupe(t for t in tickers if t and is_common_ticker(t))

    # ============================================================
    # 지수 구성 종목 (DB 캐시 + API)
    # ============================================================

    def get_index_constituents(self, index_symbol: str) -> List[str]:
        """캐시가 유효하면 캐시, 아니면 API 조회 후 캐시 갱신 (실패 시 [])"""
        cached = self._get_cached_constituents(index_symbol)
        if cached:
            logger.info(f"Using {len(cached)} cached constituents for {index_symbol}")
            return cached

        try:
            symbols = dedupe(
                s for s in self.gateway.get_index_constituents(index_symbol) if is_common_ticker(s)
            )
        except MarketDataError as e:
            logger.warning(f"Index constituents unavailable for {index_symbol}: {e}")
            return []

        if symbols:
            self._cache_constituents(index_symbol, symbols)
        return symbols

    def _get_cached_constituents(self, index_symbol: str) -> List[str]:
        cutoff = self.clock() - self.cache_ttl
        rows = (
            self.db.query(IndexConstituent.symbol)
            .filter(
                and_(
                    IndexConstituent.index_symbol == index_symbol,
                    IndexConstituent.fetched_at > cutoff
                )
            )
            .order_by(IndexConstituent.symbol)
            .all()
        )
        return [row[0] for row in rows]

    def _cache_constituents(self, index_symbol: str, symbols: List[str]) -> None:
        fetched_at = self.clock()
        upsert(
            self.db,
            IndexConstituent,
            [{"index_symbol": index_symbol, "symbol": s, "fetched_at": fetched_at} for s in symbols],
            index_elements=["index_symbol", "symbol"]
        )
        self.db.commit()

    # ============================================================
    # 복합 / 전체
    # ============================================================

    def get_combined(self) -> List[str]:
        """주요 지수 + Russell 2000 + 큐레이션"""
        symbols: List[str] = []
        for index_symbol in settings.COMBINED_INDEX_SYMBOLS:
            symbols.extend(self.get_index_constituents(index_symbol))
        symbols.extend(self.get_russell2000())
        symbols.extend(self.get_curated_list())
        return dedupe(symbols)

    def get_us_stocks(self) -> List[str]:
        """미국 상장 보통주 (ETF/ADR/클래스주 제외)"""
        try:
            data = self.gateway.get_us_symbols()
        except MarketDataError as e:
            logger.warning(f"US symbol list unavailable: {e}")
            return []

        return sorted(dedupe(
            item["symbol"] for item in data
            if item.get("type") == "Common Stock" and is_common_ticker(item.get("symbol") or "")
        ))
