"""
Eight Pillars API Router
"""
import logging
from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import HighgardenError, status_code_for
from app.services.eight_pillars_service import get_eight_pillars_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pillars", tags=["Eight Pillars"])


@router.get("/{symbol}")
def analyze_pillars(
        symbol: str,
        force_refresh: bool = Query(False, description="24시간 캐시 무시"),
        db: Session = Depends(get_db)
):
    """
    Eight Pillars 분석

    Examples:
        - GET /api/pillars/AAPL
        - GET /api/pillars/AAPL?force_refresh=true

    Returns:
        필라별 판정 (status가 unavailable이면 display_value는 "N/A")
    """
    try:
        service = get_eight_pillars_service(db)
        analysis = service.score_symbol(symbol, force_refresh=force_refresh)
        return analysis.to_dict()
    except HighgardenError as e:
        logger.error(f"Eight Pillars analysis failed ({symbol}): {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error in Eight Pillars analysis ({symbol}): {e}")
        raise HTTPException(status_code=500, detail=str(e))
