"""
Eight Pillars 분석 서비스

프로필/시세 조회 -> 재무 기간 캐시 -> 집계 -> 필라 판정 -> 결과 캐시
- 읽기: 24시간 이내 분석 결과가 있으면 재사용
- 쓰기: (symbol, 분석일) 기준 upsert
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy import and_, desc

from app.config.config import get_settings
from app.core.database import upsert, utcnow
from app.core.exceptions import HighgardenError, MarketDataError
from app.core.market_data_client import get_market_data_client
from app.models.eight_pillars_analysis import EightPillarsAnalysisCache
from app.services.fundamental_data_service import FundamentalDataService
from app.valuation.aggregation import AggregationEngine
from app.valuation.eight_pillars import (
    EightPillarsAnalysis,
    EightPillarsScorer,
    PillarResult
)

logger = logging.getLogger(__name__)
settings = get_settings()

# 프로필의 shareOutstanding / marketCapitalization 단위 (백만)
PROFILE_UNIT = 1_000_000


class EightPillarsService:
    """종목 Eight Pillars 분석"""

    def __init__(
            self,
            db: Session,
            gateway=None,
            fundamentals: Optional[FundamentalDataService] = None,
            clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.gateway = gateway or get_market_data_client()
        self.fundamentals = fundamentals or FundamentalDataService(db, self.gateway, clock=clock)
        self.engine = AggregationEngine(window=5)
        self.scorer = EightPillarsScorer()
        self.clock = clock
        self.ttl = timedelta(hours=settings.PILLARS_CACHE_TTL_HOURS)

    def score_symbol(self, symbol: str, force_refresh: bool = False) -> EightPillarsAnalysis:
        """
        종목 분석 (캐시 우선)

        Args:
            symbol: 종목 심볼
            force_refresh: True면 캐시 무시하고 재계산

        Returns:
            EightPillarsAnalysis

        Raises:
            InsufficientDataError: 연간 재무 기간 2개 미만
            MarketDataError: 프로필/시세 조회 실패
        """
        symbol = symbol.upper()

        if not force_refresh:
            cached = self.get_cached_analysis(symbol)
            if cached:
                logger.info(f"Using cached Eight Pillars analysis for {symbol}")
                return cached

        logger.info(f"Analyzing {symbol} with Eight Pillars methodology")

        # 1. 시장 데이터
        profile = self.gateway.get_company_profile(symbol) or {}
        quote = self.gateway.get_quote(symbol)
        debt_to_equity = self._get_debt_to_equity(symbol)

        current_price = quote.get("price")
        profile_shares = (
            profile["shareOutstanding"] * PROFILE_UNIT if profile.get("shareOutstanding") else None
        )

        # 2. 재무 기간 -> 집계
        periods = self.fundamentals.get_financials(
            symbol,
            periods_wanted=5,
            force_refresh=force_refresh,
            profile_shares_fallback=profile_shares
        )
        aggregate = self.engine.aggregate(periods)

        shares = profile_shares or aggregate.current.shares_outstanding
        if current_price and shares:
            market_cap = current_price * shares
        elif profile.get("marketCapitalization"):
            market_cap = profile["marketCapitalization"] * PROFILE_UNIT
        else:
            market_cap = None

        year_end_prices = self.fundamentals.get_year_end_prices(symbol)

        # 3. 필라 판정
        analysis = self.scorer.score(
            symbol,
            aggregate,
            market_cap=market_cap,
            current_price=current_price,
            shares_outstanding=shares,
            year_end_prices=year_end_prices,
            debt_to_equity=debt_to_equity,
            company_name=profile.get("name"),
            industry=profile.get("finnhubIndustry"),
            analysis_date=self.clock()
        )

        logger.info(f"{symbol}: {analysis.pillars_passed}/8 pillars passed")

        self.save_analysis(analysis)
        return analysis

    def analyze_multiple(self, symbols: List[str], force_refresh: bool = False) -> List[Dict[str, Any]]:
        """여러 종목 분석 (종목별 실패는 결과에 error로 기록)"""
        results = []
        for symbol in symbols:
            try:
                results.append(self.score_symbol(symbol, force_refresh).to_dict())
            except HighgardenError as e:
                logger.error(f"Eight Pillars analysis failed for {symbol}: {e}")
                results.append({"symbol": symbol.upper(), "error": str(e)})
        return results

    def _get_debt_to_equity(self, symbol: str) -> Optional[float]:
        """기본 지표의 D/E (없거나 조회 실패 시 None)"""
        try:
            metrics = self.gateway.get_basic_financials(symbol) or {}
        except MarketDataError as e:
            logger.warning(f"Basic financials unavailable for {symbol}: {e}")
            return None

        metric = metrics.get("metric") or {}
        for key in ("totalDebt/totalEquityAnnual", "totalDebt/totalEquityQuarterly"):
            if metric.get(key) is not None:
                return float(metric[key])
        return None

    # ============================================================
    # 캐시
    # ============================================================

    def get_cached_analysis(self, symbol: str) -> Optional[EightPillarsAnalysis]:
        """24시간 이내 분석 결과"""
        cutoff = self.clock() - self.ttl

        row = (
            self.db.query(EightPillarsAnalysisCache)
            .filter(
                and_(
                    EightPillarsAnalysisCache.symbol == symbol.upper(),
                    EightPillarsAnalysisCache.analyzed_at > cutoff
                )
            )
            .order_by(desc(EightPillarsAnalysisCache.analyzed_at))
            .first()
        )

        if not row:
            return None

        return EightPillarsAnalysis(
            symbol=row.symbol,
            analysis_date=row.analyzed_at,
            pillars=[PillarResult.from_dict(p) for p in row.pillars],
            market_cap=row.market_cap,
            current_price=row.current_price,
            shares_outstanding=row.shares_outstanding,
            company_name=row.company_name,
            industry=row.industry,
            periods_analyzed=row.periods_analyzed,
            years_span=row.years_span
        )

    def save_analysis(self, analysis: EightPillarsAnalysis) -> None:
        """(symbol, 분석일) 기준 upsert"""
        row = {
            "symbol": analysis.symbol,
            "analysis_day": analysis.analysis_date.date(),
            "analyzed_at": analysis.analysis_date,
            "company_name": analysis.company_name,
            "industry": analysis.industry,
            "current_price": analysis.current_price,
            "market_cap": analysis.market_cap,
            "shares_outstanding": analysis.shares_outstanding,
            "pillars_passed": analysis.pillars_passed,
            "periods_analyzed": analysis.periods_analyzed,
            "years_span": analysis.years_span,
            "pillars": [p.to_dict() for p in analysis.pillars],
        }

        upsert(
            self.db,
            EightPillarsAnalysisCache,
            [row],
            index_elements=["symbol", "analysis_day"]
        )
        self.db.commit()


def get_eight_pillars_service(db: Session) -> EightPillarsService:
    """Eight Pillars 서비스 생성"""
    return EightPillarsService(db)
