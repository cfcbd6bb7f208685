"""
Fundamentals API Router
캐시된 재무 기간 조회 + 재무제표 화면
"""
import logging
from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import HighgardenError, status_code_for
from app.services.fundamental_data_service import get_fundamental_data_service
from app.valuation.financial_period import ANNUAL, QUARTERLY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/fundamentals", tags=["Fundamentals"])


def _check_frequency(frequency: str) -> str:
    if frequency not in (ANNUAL, QUARTERLY):
        raise HTTPException(status_code=400, detail=f"Invalid frequency: {frequency}")
    return frequency


# ============================================================
# 재무 기간
# ============================================================

@router.get("/{symbol}")
def get_fundamentals(
        symbol: str,
        periods: int = Query(5, ge=1, le=40, description="기간 수"),
        frequency: str = Query(ANNUAL, description="annual | quarterly"),
        force_refresh: bool = Query(False, description="캐시 무시"),
        db: Session = Depends(get_db)
):
    """
    정규화된 재무 기간 조회 (24시간 캐시)

    Examples:
        - GET /api/fundamentals/AAPL
        - GET /api/fundamentals/AAPL?frequency=quarterly&periods=8
    """
    frequency = _check_frequency(frequency)

    try:
        service = get_fundamental_data_service(db)
        items = service.get_financials(symbol, periods, frequency, force_refresh)
    except HighgardenError as e:
        logger.error(f"Fundamentals lookup failed ({symbol}): {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error in fundamentals lookup ({symbol}): {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "symbol": symbol.upper(),
        "frequency": frequency,
        "total": len(items),
        "items": [p.to_dict() for p in items]
    }


@router.get("/{symbol}/statements/{statement_type}")
def get_statement(
        symbol: str,
        statement_type: str,
        periods: int = Query(5, ge=1, le=40, description="기간 수"),
        frequency: str = Query(ANNUAL, description="annual | quarterly"),
        force_refresh: bool = Query(False, description="캐시 무시"),
        db: Session = Depends(get_db)
):
    """
    재무제표 형태 조회

    Args:
        statement_type: balance-sheet | income-statement | cash-flow

    Examples:
        - GET /api/fundamentals/AAPL/statements/income-statement
        - GET /api/fundamentals/AAPL/statements/cash-flow?frequency=quarterly
    """
    frequency = _check_frequency(frequency)

    try:
        service = get_fundamental_data_service(db)
        return service.get_statement(symbol, statement_type, frequency, periods, force_refresh)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HighgardenError as e:
        logger.error(f"Statement lookup failed ({symbol}, {statement_type}): {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error in statement lookup ({symbol}, {statement_type}): {e}")
        raise HTTPException(status_code=500, detail=str(e))
