"""
Scanner API Router
배치 스캔 트리거 / 상태 / 결과
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, HTTPException

from app.core.exceptions import HighgardenError, status_code_for
from app.services.stock_scanner_service import StockScannerService, get_scanner_service
from app.services.stock_universe_service import UNIVERSE_CURATED, UNIVERSES, UniverseOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scanner", tags=["Scanner"])


def _parse_pillars(pillars: Optional[str]) -> List[int]:
    """ "1,3,5" -> [1, 3, 5] """
    if not pillars:
        return []
    try:
        numbers = [int(p) for p in pillars.split(",") if p.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid pillars filter: {pillars}")

    invalid = [n for n in numbers if n < 1 or n > 8]
    if invalid:
        raise HTTPException(status_code=400, detail=f"Pillar numbers must be 1-8: {invalid}")
    return numbers


# ============================================================
# 스캔 실행
# ============================================================

@router.post("/trigger")
async def trigger_scan(
        universe: str = Query(UNIVERSE_CURATED, description="curated | russell2000 | combined | us_all"),
        russell2000_only: bool = Query(False, description="Russell 2000만"),
        limit: int = Query(0, ge=0, description="최대 종목 수 (0 = 전체)"),
        scanner: StockScannerService = Depends(get_scanner_service)
):
    """
    백그라운드 스캔 시작 (즉시 반환)

    Examples:
        - POST /api/scanner/trigger
        - POST /api/scanner/trigger?universe=combined&limit=500
    """
    if universe not in UNIVERSES:
        raise HTTPException(status_code=400, detail=f"Unknown universe: {universe}")

    try:
        return scanner.start_scan(UniverseOptions(universe, russell2000_only, limit))
    except HighgardenError as e:
        logger.warning(f"Scan trigger rejected: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    except Exception as e:
        logger.error(f"Scan trigger failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ============================================================
# 상태 / 결과
# ============================================================

@router.get("/status")
async def get_scan_status(
        scanner: StockScannerService = Depends(get_scanner_service)
):
    """
    실행 중 또는 최신 스캔 상태

    Examples:
        - GET /api/scanner/status
    """
    try:
        return scanner.get_scan_status()
    except Exception as e:
        logger.error(f"Scan status lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/results")
async def get_scan_results(
        pillars: Optional[str] = Query(None, description="반드시 통과할 필라 (예: 1,3,5)"),
        page: int = Query(1, ge=1, description="페이지"),
        limit: int = Query(50, ge=1, le=100, description="페이지 크기"),
        sort_by: str = Query("pillars_passed", description="정렬 컬럼"),
        sort_order: str = Query("desc", description="asc | desc"),
        scanner: StockScannerService = Depends(get_scanner_service)
):
    """
    스캔 결과 조회 (실행 중 스캔이 있으면 그 결과, 없으면 최신 완료 스캔)

    Examples:
        - GET /api/scanner/results
        - GET /api/scanner/results?pillars=1,2&sort_by=market_cap&sort_order=asc
    """
    pillar_filter = _parse_pillars(pillars)

    try:
        return scanner.get_scan_results(
            pillars=pillar_filter,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order
        )
    except Exception as e:
        logger.error(f"Scan results lookup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
