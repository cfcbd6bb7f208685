"""
밸류에이션 서비스

- 과거 지표 조회 (DCF 입력 기본값)
- 시나리오 DCF 계산
- 사용자별 저장 밸류에이션 (소유자만 조회/삭제)
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy import and_, desc

from app.core.database import utcnow
from app.core.exceptions import MarketDataError, ValuationNotFoundError
from app.core.market_data_client import get_market_data_client
from app.models.stock_valuation import StockValuation
from app.services.fundamental_data_service import FundamentalDataService
from app.valuation.aggregation import AggregationEngine
from app.valuation.dcf_valuation import DCFInputs, DCFValuation, ValuationResult

logger = logging.getLogger(__name__)

# 프로필 shareOutstanding 단위 (백만)
PROFILE_UNIT = 1_000_000

HISTORY_YEARS = 10


class ValuationService:
    """DCF 밸류에이션 + 저장"""

    def __init__(
            self,
            db: Session,
            gateway=None,
            fundamentals: Optional[FundamentalDataService] = None,
            dcf: Optional[DCFValuation] = None
    ):
        self.db = db
        self.gateway = gateway or get_market_data_client()
        self.fundamentals = fundamentals or FundamentalDataService(db, self.gateway)
        self.engine = AggregationEngine(window=HISTORY_YEARS)
        self.dcf = dcf or DCFValuation()

    # ============================================================
    # 과거 지표
    # ============================================================

    def get_historical_metrics(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """
        최대 10년 연간 재무 기반 과거 지표

        Returns:
            트레일링 지표 + 현재가/주식수/베타/CAPM 할인율

        Raises:
            InsufficientDataError: 연간 기간 2개 미만
            MarketDataError: 프로필/시세 조회 실패
        """
        symbol = symbol.upper()

        profile = self.gateway.get_company_profile(symbol) or {}
        quote = self.gateway.get_quote(symbol)
        beta = self._get_beta(symbol)

        current_price = quote.get("price")
        profile_shares = (
            profile["shareOutstanding"] * PROFILE_UNIT if profile.get("shareOutstanding") else None
        )

        periods = self.fundamentals.get_financials(
            symbol,
            periods_wanted=HISTORY_YEARS,
            force_refresh=force_refresh,
            profile_shares_fallback=profile_shares
        )

        shares = profile_shares or (periods[0].shares_outstanding if periods else None)
        metrics = self.engine.trailing_metrics(periods, current_price, shares)

        metrics.update({
            "symbol": symbol,
            "company_name": profile.get("name"),
            "industry": profile.get("finnhubIndustry"),
            "current_price": current_price,
            "shares_outstanding": shares,
            "beta": beta,
            "calculated_discount_rate": DCFValuation.calculate_discount_rate(beta),
        })

        logger.info(
            f"Historical metrics for {symbol}: {metrics['years_available']} years "
            f"({metrics['oldest_year']}-{metrics['latest_year']})"
        )
        return metrics

    def _get_beta(self, symbol: str) -> Optional[float]:
        try:
            data = self.gateway.get_basic_financials(symbol) or {}
        except MarketDataError as e:
            logger.warning(f"Beta unavailable for {symbol}: {e}")
            return None

        beta = (data.get("metric") or {}).get("beta")
        return float(beta) if beta is not None else None

    # ============================================================
    # DCF
    # ============================================================

    def calculate_valuation(
            self,
            symbol: str,
            scenario_inputs: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        시나리오 DCF 계산

        과거 지표에서 기준값(현재가, 주식수, FCF, 순이익, 할인율)을 채우고
        사용자가 넘긴 값은 그대로 우선 적용

        Raises:
            InsufficientDataError: 주식수 또는 기준 지표(순이익/FCF) 없음
            InvalidValuationInputError: 역전 입력 + 자동 교정 비활성화
        """
        metrics = self.get_historical_metrics(symbol)

        base = {
            "shares_outstanding": metrics.get("shares_outstanding"),
            "current_price": metrics.get("current_price"),
            "current_fcf": metrics.get("current_fcf"),
            "current_revenue": metrics.get("current_revenue"),
            "current_net_income": metrics.get("current_net_income"),
            "calculated_discount_rate": metrics.get("calculated_discount_rate"),
            "beta": metrics.get("beta"),
        }
        base.update({k: v for k, v in (scenario_inputs or {}).items() if v is not None})

        result: ValuationResult = self.dcf.calculate(DCFInputs.from_dict(base))

        logger.info(
            f"DCF for {symbol.upper()}: low={result.fair_value_low}, "
            f"medium={result.fair_value_medium}, high={result.fair_value_high}"
        )

        data = result.to_dict()
        data["symbol"] = symbol.upper()
        data["current_price"] = base.get("current_price")
        return data

    # ============================================================
    # 저장 밸류에이션
    # ============================================================

    def save_valuation(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """밸류에이션 스냅샷 저장"""
        now = utcnow()
        valuation = StockValuation(
            user_id=user_id,
            symbol=data["symbol"].upper(),
            name=data.get("name"),
            inputs=data.get("inputs") or {},
            current_price=data.get("current_price"),
            fair_value_low=data.get("fair_value_low"),
            fair_value_medium=data.get("fair_value_medium"),
            fair_value_high=data.get("fair_value_high"),
            margin_of_safety_low=data.get("margin_of_safety_low"),
            margin_of_safety_medium=data.get("margin_of_safety_medium"),
            margin_of_safety_high=data.get("margin_of_safety_high"),
            inputs_were_corrected=bool(data.get("inputs_were_corrected")),
            notes=data.get("notes"),
            created_at=now,
            updated_at=now
        )

        self.db.add(valuation)
        self.db.commit()
        self.db.refresh(valuation)

        logger.info(f"Saved valuation {valuation.id} for {valuation.symbol} (user={user_id})")
        return valuation.to_dict()

    def get_valuations(self, user_id: str, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        """사용자 저장 밸류에이션 목록 (최신순)"""
        query = self.db.query(StockValuation).filter(StockValuation.user_id == user_id)
        if symbol:
            query = query.filter(StockValuation.symbol == symbol.upper())

        rows = query.order_by(desc(StockValuation.created_at), desc(StockValuation.id)).all()
        return [row.to_dict() for row in rows]

    def get_valuation(self, user_id: str, valuation_id: int) -> Dict[str, Any]:
        return self._get_owned(user_id, valuation_id).to_dict()

    def delete_valuation(self, user_id: str, valuation_id: int) -> None:
        valuation = self._get_owned(user_id, valuation_id)
        self.db.delete(valuation)
        self.db.commit()
        logger.info(f"Deleted valuation {valuation_id} (user={user_id})")

    def _get_owned(self, user_id: str, valuation_id: int) -> StockValuation:
        """소유자 확인 포함 조회 (다른 사용자 것이면 없는 것으로 취급)"""
        valuation = (
            self.db.query(StockValuation)
            .filter(
                and_(
                    StockValuation.id == valuation_id,
                    StockValuation.user_id == user_id
                )
            )
            .first()
        )
        if not valuation:
            raise ValuationNotFoundError(f"Valuation {valuation_id} not found")
        return valuation


def get_valuation_service(db: Session) -> ValuationService:
    """밸류에이션 서비스 생성"""
    return ValuationService(db)
