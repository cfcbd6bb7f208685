"""
Valuation API Router
과거 지표 조회, 시나리오 DCF, 사용자별 저장 밸류에이션
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import status_code_for
from app.services.valuation_service import get_valuation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/valuation", tags=["Valuation"])


class DCFScenarioRequest(BaseModel):
    """시나리오 입력 (비율은 소수, low=bear / high=bull)"""
    revenue_growth_low: Optional[float] = None
    revenue_growth_medium: Optional[float] = None
    revenue_growth_high: Optional[float] = None

    profit_margin_low: Optional[float] = None
    profit_margin_medium: Optional[float] = None
    profit_margin_high: Optional[float] = None

    fcf_margin_low: Optional[float] = None
    fcf_margin_medium: Optional[float] = None
    fcf_margin_high: Optional[float] = None

    pe_low: Optional[float] = None
    pe_medium: Optional[float] = None
    pe_high: Optional[float] = None

    pfcf_low: Optional[float] = None
    pfcf_medium: Optional[float] = None
    pfcf_high: Optional[float] = None

    desired_return_low: Optional[float] = None
    desired_return_medium: Optional[float] = None
    desired_return_high: Optional[float] = None

    projection_years: Optional[int] = Field(None, ge=1, le=30)

    # 기준값 덮어쓰기 (선택)
    current_price: Optional[float] = None
    shares_outstanding: Optional[float] = None
    current_fcf: Optional[float] = None
    current_net_income: Optional[float] = None


class SaveValuationRequest(BaseModel):
    """저장 요청"""
    symbol: str
    name: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)
    current_price: Optional[float] = None
    fair_value_low: Optional[float] = None
    fair_value_medium: Optional[float] = None
    fair_value_high: Optional[float] = None
    margin_of_safety_low: Optional[float] = None
    margin_of_safety_medium: Optional[float] = None
    margin_of_safety_high: Optional[float] = None
    inputs_were_corrected: bool = False
    notes: Optional[str] = None


def _http_error(e: Exception, context: str) -> HTTPException:
    logger.error(f"{context}: {e}")
    return HTTPException(status_code=status_code_for(e), detail=str(e))


# ============================================================
# 1. 저장 밸류에이션 (X-User-Id 소유자 기준)
# ============================================================

@router.post("/saved")
def save_valuation(
        request: SaveValuationRequest,
        x_user_id: str = Header(..., description="사용자 ID"),
        db: Session = Depends(get_db)
):
    """
    밸류에이션 스냅샷 저장

    Examples:
        - POST /api/valuation/saved  (header X-User-Id: u1)
    """
    try:
        service = get_valuation_service(db)
        return service.save_valuation(x_user_id, request.model_dump())
    except Exception as e:
        raise _http_error(e, f"Valuation save failed ({request.symbol})")


@router.get("/saved")
def list_valuations(
        symbol: Optional[str] = Query(None, description="종목 필터"),
        x_user_id: str = Header(..., description="사용자 ID"),
        db: Session = Depends(get_db)
):
    """
    내 저장 밸류에이션 목록

    Examples:
        - GET /api/valuation/saved
        - GET /api/valuation/saved?symbol=AAPL
    """
    try:
        items = get_valuation_service(db).get_valuations(x_user_id, symbol)
    except Exception as e:
        raise _http_error(e, "Saved valuation listing failed")
    return {"total": len(items), "items": items}


@router.get("/saved/{valuation_id}")
def get_valuation(
        valuation_id: int,
        x_user_id: str = Header(..., description="사용자 ID"),
        db: Session = Depends(get_db)
):
    try:
        return get_valuation_service(db).get_valuation(x_user_id, valuation_id)
    except Exception as e:
        raise _http_error(e, f"Valuation lookup failed ({valuation_id})")


@router.delete("/saved/{valuation_id}")
def delete_valuation(
        valuation_id: int,
        x_user_id: str = Header(..., description="사용자 ID"),
        db: Session = Depends(get_db)
):
    try:
        get_valuation_service(db).delete_valuation(x_user_id, valuation_id)
    except Exception as e:
        raise _http_error(e, f"Valuation delete failed ({valuation_id})")
    return {"deleted": True, "id": valuation_id}


# ============================================================
# 2. 종목별 지표 / DCF
# ============================================================

@router.get("/{symbol}/metrics")
def get_historical_metrics(
        symbol: str,
        force_refresh: bool = Query(False, description="캐시 무시"),
        db: Session = Depends(get_db)
):
    """
    DCF 입력용 과거 지표 (1/5/10년 ROIC, 성장률, 마진, 배수)

    Examples:
        - GET /api/valuation/AAPL/metrics
    """
    try:
        return get_valuation_service(db).get_historical_metrics(symbol, force_refresh)
    except Exception as e:
        raise _http_error(e, f"Historical metrics failed ({symbol})")


@router.post("/{symbol}/dcf")
def calculate_dcf(
        symbol: str,
        request: DCFScenarioRequest,
        db: Session = Depends(get_db)
):
    """
    3개 시나리오 DCF

    Examples:
        - POST /api/valuation/AAPL/dcf
          {"revenue_growth_low": 0.03, "revenue_growth_medium": 0.06, "revenue_growth_high": 0.09,
           "pe_low": 15, "pe_medium": 20, "pe_high": 25}

    Returns:
        fair_value_low/medium/high, margin_of_safety_*, inputs(inputs_were_corrected 포함)
    """
    try:
        service = get_valuation_service(db)
        return service.calculate_valuation(symbol, request.model_dump(exclude_none=True))
    except Exception as e:
        raise _http_error(e, f"DCF calculation failed ({symbol})")
