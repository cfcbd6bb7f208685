"""
재무 데이터 캐시 서비스

- 24시간 이내 캐시가 있으면 그대로 반환
- 없으면 표준화 엔드포인트 -> SEC 보고 엔드포인트 순으로 조회 후 upsert
- 두 엔드포인트 모두 실패하면 빈 리스트 (데이터 부족 판단은 호출자 몫)
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy import and_, desc

from app.config.config import get_settings
from app.core.database import upsert, utcnow
from app.core.exceptions import MarketDataError
from app.core.market_data_client import get_market_data_client
from app.models.financial_period_cache import StockFinancialsCache
from app.services.statement_normalizer import (
    FinancialStatementNormalizer,
    get_statement_normalizer
)
from app.valuation.financial_period import ANNUAL, FinancialPeriod, sort_most_recent_first

logger = logging.getLogger(__name__)
settings = get_settings()

# 연말 종가 탐색 허용 범위 (일)
YEAR_END_WINDOW_DAYS = 14

# 재무제표 화면별 필드
STATEMENT_FIELDS = {
    "balance-sheet": [
        "total_assets", "total_liabilities", "total_equity",
        "long_term_debt", "short_term_debt", "total_debt", "cash", "shares_outstanding"
    ],
    "income-statement": [
        "revenue", "gross_profit", "operating_income", "net_income",
        "eps", "shares_basic", "shares_diluted"
    ],
    "cash-flow": [
        "operating_cash_flow", "capital_expenditures", "free_cash_flow", "dividends_paid"
    ],
}


class FundamentalDataService:
    """재무 데이터 조회 + 캐시"""

    def __init__(
            self,
            db: Session,
            gateway=None,
            normalizer: Optional[FinancialStatementNormalizer] = None,
            clock: Callable[[], datetime] = utcnow,
            ttl_hours: Optional[int] = None
    ):
        self.db = db
        self.gateway = gateway or get_market_data_client()
        self.normalizer = normalizer or get_statement_normalizer()
        self.clock = clock
        self.ttl = timedelta(hours=ttl_hours or settings.FUNDAMENTALS_CACHE_TTL_HOURS)

    # ============================================================
    # 재무 기간 조회
    # ============================================================

    def get_financials(
            self,
            symbol: str,
            periods_wanted: int = 5,
            frequency: str = ANNUAL,
            force_refresh: bool = False,
            profile_shares_fallback: Optional[float] = None
    ) -> List[FinancialPeriod]:
        """
        재무 기간 조회 (캐시 우선)

        Args:
            symbol: 종목 심볼
            periods_wanted: 반환할 최대 기간 수
            frequency: "annual" | "quarterly"
            force_refresh: True면 캐시 무시
            profile_shares_fallback: 정규화 시 주식수 대체값

        Returns:
            최신 우선 FinancialPeriod 리스트 (실패 시 [])
        """
        symbol = symbol.upper()

        if not force_refresh:
            cached = self.get_cached_financials(symbol, periods_wanted, frequency)
            if cached:
                logger.info(f"Using cached financials for {symbol} ({len(cached)} periods)")
                return cached

        periods = self._fetch_financials(symbol, frequency, profile_shares_fallback)
        if not periods:
            logger.warning(f"No financial data available for {symbol}")
            return []

        self._cache_financials(periods)
        return periods[:periods_wanted]

    def get_cached_financials(
            self,
            symbol: str,
            periods_wanted: int = 5,
            frequency: str = ANNUAL
    ) -> List[FinancialPeriod]:
        """TTL 이내 캐시 조회 (최신 우선)"""
        cutoff = self.clock() - self.ttl

        rows = (
            self.db.query(StockFinancialsCache)
            .filter(
                and_(
                    StockFinancialsCache.symbol == symbol.upper(),
                    StockFinancialsCache.period_kind == frequency,
                    StockFinancialsCache.fetched_at > cutoff
                )
            )
            .order_by(
                desc(StockFinancialsCache.fiscal_year),
                desc(StockFinancialsCache.fiscal_quarter)
            )
            .limit(periods_wanted)
            .all()
        )

        return [row.to_period() for row in rows]

    def needs_refresh(self, symbol: str, frequency: str = ANNUAL) -> bool:
        """캐시가 없거나 TTL이 지났는지 확인"""
        latest = (
            self.db.query(StockFinancialsCache.fetched_at)
            .filter(
                and_(
                    StockFinancialsCache.symbol == symbol.upper(),
                    StockFinancialsCache.period_kind == frequency
                )
            )
            .order_by(desc(StockFinancialsCache.fetched_at))
            .first()
        )

        if not latest:
            return True
        return self.clock() - latest[0] > self.ttl

    def _fetch_financials(
            self,
            symbol: str,
            frequency: str,
            profile_shares_fallback: Optional[float]
    ) -> List[FinancialPeriod]:
        """표준화 -> SEC 보고 순서로 조회 (먼저 성공한 쪽 사용)"""
        sources = [
            ("/stock/financials", self.gateway.get_financial_statements),
            ("/stock/financials-reported", self.gateway.get_financials_reported),
        ]

        for endpoint, fetch in sources:
            try:
                payload = fetch(symbol, frequency)
            except MarketDataError as e:
                logger.warning(f"{endpoint} not available for {symbol}: {e}")
                continue

            if not payload or not (payload.get("financials") or payload.get("data")):
                logger.info(f"{endpoint} returned no periods for {symbol}")
                continue

            periods = [
                p for p in self.normalizer.normalize_payload(
                    symbol, payload, profile_shares_fallback, frequency
                )
                if p.period_kind == frequency
            ]
            if periods:
                logger.info(f"Got {len(periods)} periods from {endpoint} for {symbol}")
                return periods

        return []

    def _cache_financials(self, periods: List[FinancialPeriod]) -> None:
        """자연키 기준 upsert (행 전체 교체)"""
        fetched_at = self.clock()
        rows = [
            StockFinancialsCache.row_from_period(p.with_fetched_at(fetched_at))
            for p in periods
        ]

        upsert(
            self.db,
            StockFinancialsCache,
            rows,
            index_elements=["symbol", "fiscal_year", "period_kind", "fiscal_quarter"]
        )
        self.db.commit()

    # ============================================================
    # 재무제표 화면
    # ============================================================

    def get_statement(
            self,
            symbol: str,
            statement_type: str,
            frequency: str = ANNUAL,
            periods_wanted: int = 5,
            force_refresh: bool = False
    ) -> Dict[str, Any]:
        """
        재무상태표 / 손익계산서 / 현금흐름표 형태로 변환

        Args:
            statement_type: "balance-sheet" | "income-statement" | "cash-flow"
        """
        if statement_type not in STATEMENT_FIELDS:
            raise ValueError(f"Unknown statement type: {statement_type}")

        periods = self.get_financials(symbol, periods_wanted, frequency, force_refresh)
        fields = STATEMENT_FIELDS[statement_type]

        return {
            "symbol": symbol.upper(),
            "statement": statement_type,
            "frequency": frequency,
            "periods": [
                {
                    "period": p.period_label,
                    "fiscal_year": p.fiscal_year,
                    "fiscal_quarter": p.fiscal_quarter,
                    "filing_date": p.filing_date,
                    **{field: getattr(p, field) for field in fields}
                }
                for p in sort_most_recent_first(periods)
            ]
        }

    # ============================================================
    # 연말 종가
    # ============================================================

    def get_year_end_prices(self, symbol: str, years: int = 6) -> Dict[int, float]:
        """
        연도별 연말 종가 (주봉 기준)

        각 연도 12/31에 가장 가까운 주봉 종가 (±14일 이내만)
        조회 실패 시 빈 딕셔너리
        """
        now = datetime.now(timezone.utc)
        start = now - timedelta(days=365 * years + 30)

        try:
            candles = self.gateway.get_stock_candles(
                symbol.upper(), "W", int(start.timestamp()), int(now.timestamp())
            )
        except MarketDataError as e:
            logger.warning(f"Year-end prices unavailable for {symbol}: {e}")
            return {}

        return pick_year_end_closes(candles)


def pick_year_end_closes(candles: List[Dict[str, Any]]) -> Dict[int, float]:
    """캔들 목록에서 연도별 12/31 최근접 종가 선택"""
    best: Dict[int, tuple] = {}

    for candle in candles:
        close = candle.get("close")
        if close is None:
            continue
        when = datetime.fromtimestamp(candle["time"], tz=timezone.utc)

        # 1월 초 캔들은 전년도 연말에 해당할 수 있음
        for year in (when.year, when.year - 1):
            year_end = datetime(year, 12, 31, tzinfo=timezone.utc)
            distance = abs((when - year_end).days)
            if distance > YEAR_END_WINDOW_DAYS:
                continue
            if year not in best or distance < best[year][0]:
                best[year] = (distance, float(close))

    return {year: close for year, (_, close) in sorted(best.items())}


def get_fundamental_data_service(db: Session) -> FundamentalDataService:
    """재무 데이터 서비스 생성"""
    return FundamentalDataService(db)
