"""
Eight Pillars 배치 스캐너

유니버스 전체를 제공자 호출 한도 안에서 순차 분석
- 10개 단위 배치, 배치 사이 2초 대기 (배치 내부는 순차 처리)
- 실패 종목은 전체 배치 후 한 번만 재시도
- 진행 상황은 10종목마다 + 배치 종료마다 저장
- 실행 중 스캔은 DB 기준 최대 1개, 멈춘 작업은 트리거/상태조회/시작 시 정리
"""
import logging
import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session, sessionmaker

from app.config.config import get_settings
from app.core.database import SessionLocal, upsert
from app.core.market_data_client import get_market_data_client
from app.models.pillar_scan_result import PillarScanResult
from app.models.scan_job import SCAN_COMPLETED, SCAN_FAILED
from app.services.eight_pillars_service import EightPillarsService
from app.services.scan_job_repository import ScanJobRepository
from app.services.stock_universe_service import StockUniverseService, UniverseOptions
from app.valuation.eight_pillars import EightPillarsAnalysis

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_PAGE_SIZE = 100

SORTABLE_COLUMNS = {
    "symbol": PillarScanResult.symbol,
    "company_name": PillarScanResult.company_name,
    "pillars_passed": PillarScanResult.pillars_passed,
    "total_score": PillarScanResult.total_score,
    "current_price": PillarScanResult.current_price,
    "market_cap": PillarScanResult.market_cap,
}

# 필라 점수
SCORE_PASSED = 5
SCORE_FAILED = 2
SCORE_UNAVAILABLE = 1


def pillar_score(passed: bool, available: bool) -> int:
    """필라 점수 (통과 5 / 미통과 2 / 데이터 없음 1)"""
    if passed:
        return SCORE_PASSED
    return SCORE_FAILED if available else SCORE_UNAVAILABLE


def build_scan_row(scan_id: int, analysis: EightPillarsAnalysis) -> Dict[str, Any]:
    """분석 결과 -> stock_pillar_results 행"""
    row = {
        "scan_id": scan_id,
        "symbol": analysis.symbol,
        "company_name": analysis.company_name,
        "sector": analysis.industry,
        "current_price": analysis.current_price,
        "market_cap": analysis.market_cap,
        "pillars_passed": analysis.pillars_passed,
        "total_score": analysis.pillars_passed * SCORE_PASSED,
        "analyzed_at": analysis.analysis_date,
    }
    for pillar in analysis.pillars:
        row[f"pillar_{pillar.number}_pass"] = pillar.passed
        row[f"pillar_{pillar.number}_score"] = pillar_score(pillar.passed, pillar.is_available)
    return row


class StockScannerService:
    """배치 스캐너"""

    def __init__(
            self,
            session_factory: sessionmaker = SessionLocal,
            repository: Optional[ScanJobRepository] = None,
            pillars_service_factory: Optional[Callable[[Session], Any]] = None,
            universe_service_factory: Optional[Callable[[Session], Any]] = None,
            sleep: Callable[[float], None] = time.sleep,
            batch_size: Optional[int] = None,
            batch_delay: Optional[float] = None,
            retry_delay: Optional[float] = None,
            progress_every: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.repository = repository or ScanJobRepository(session_factory)
        self.pillars_service_factory = pillars_service_factory or (
            lambda db: EightPillarsService(db, get_market_data_client())
        )
        self.universe_service_factory = universe_service_factory or (
            lambda db: StockUniverseService(db, get_market_data_client())
        )
        self.sleep = sleep

        self.batch_size = batch_size or settings.SCANNER_BATCH_SIZE
        self.batch_delay = settings.SCANNER_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.retry_delay = settings.SCANNER_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.progress_every = progress_every or settings.SCANNER_PROGRESS_EVERY

        self._thread: Optional[threading.Thread] = None

    # ============================================================
    # 실행
    # ============================================================

    def start_scan(self, options: Optional[UniverseOptions] = None) -> Dict[str, Any]:
        """
        백그라운드 스캔 시작 (fire-and-forget)

        Raises:
            ScanAlreadyRunningError: 이미 실행 중
        """
        options = options or UniverseOptions()

        self.repository.sweep_stuck_jobs()
        scan_id = self.repository.create_running_job(options.resolved_universe)

        self._thread = threading.Thread(
            target=self._execute,
            args=(scan_id, options),
            name=f"pillar-scan-{scan_id}",
            daemon=True
        )
        self._thread.start()

        return {
            "scan_id": scan_id,
            "status": "running",
            "universe": options.resolved_universe,
            "message": "Scan started"
        }

    def run_scan(self, options: Optional[UniverseOptions] = None) -> Dict[str, Any]:
        """
        스캔 동기 실행 (스케줄러/테스트용)

        Returns:
            스캔 요약
        """
        options = options or UniverseOptions()

        self.repository.sweep_stuck_jobs()
        scan_id = self.repository.create_running_job(options.resolved_universe)

        return self._execute(scan_id, options)

    def _execute(self, scan_id: int, options: UniverseOptions) -> Dict[str, Any]:
        started = time.monotonic()
        total = 0
        analyzed = 0

        try:
            # 1. 유니버스
            with self.session_factory() as db:
                symbols = self.universe_service_factory(db).resolve(options)

            total = len(symbols)
            self.repository.set_total(scan_id, total)
            logger.info(f"Scan {scan_id}: {total} stocks to analyze in batches of {self.batch_size}")

            # 2. 배치 처리
            processed = 0
            retry_queue: List[str] = []

            for batch_index, offset in enumerate(range(0, total, self.batch_size)):
                if batch_index > 0:
                    self.sleep(self.batch_delay)

                for symbol in symbols[offset:offset + self.batch_size]:
                    if self.analyze_and_store(scan_id, symbol):
                        analyzed += 1
                    else:
                        retry_queue.append(symbol)

                    processed += 1
                    if processed % self.progress_every == 0:
                        self.repository.update_progress(scan_id, analyzed, len(retry_queue))

                self.repository.update_progress(scan_id, analyzed, len(retry_queue))
                logger.info(f"Scan {scan_id}: {processed}/{total} processed, {analyzed} analyzed")

            # 3. 재시도 (1회)
            failed_symbols: List[str] = []
            if retry_queue:
                logger.info(f"Scan {scan_id}: retrying {len(retry_queue)} failed stocks")
                self.sleep(self.retry_delay)

                for retried, symbol in enumerate(retry_queue, start=1):
                    if self.analyze_and_store(scan_id, symbol):
                        analyzed += 1
                    else:
                        failed_symbols.append(symbol)

                    if retried % self.progress_every == 0:
                        self.repository.update_progress(scan_id, analyzed, len(failed_symbols))

                self.repository.update_progress(scan_id, analyzed, len(failed_symbols))

            # 4. 완료
            duration = time.monotonic() - started
            if self.repository.complete(scan_id, analyzed, failed_symbols, duration):
                status = SCAN_COMPLETED
                logger.info(
                    f"Scan {scan_id} completed: {analyzed}/{total} analyzed, "
                    f"{len(failed_symbols)} failed in {duration:.1f}s"
                )
            else:
                # 실행 중에 멈춘 작업으로 정리됨
                status = SCAN_FAILED

            return {
                "scan_id": scan_id,
                "status": status,
                "total_stocks": total,
                "stocks_analyzed": analyzed,
                "stocks_failed": len(failed_symbols),
                "failed_symbols": failed_symbols,
                "duration_seconds": round(duration, 2)
            }

        except Exception as e:
            duration = time.monotonic() - started
            logger.exception(f"Scan {scan_id} failed: {e}")
            self.repository.fail(scan_id, str(e), duration)
            return {
                "scan_id": scan_id,
                "status": SCAN_FAILED,
                "total_stocks": total,
                "stocks_analyzed": analyzed,
                "error": str(e),
                "duration_seconds": round(duration, 2)
            }

    def analyze_and_store(self, scan_id: int, symbol: str) -> bool:
        """
        종목 하나 분석 후 결과 upsert

        Returns:
            성공 여부 (실패는 기록 후 False, 스캔은 계속)
        """
        with self.session_factory() as db:
            try:
                analysis = self.pillars_service_factory(db).score_symbol(symbol, force_refresh=True)
                upsert(
                    db,
                    PillarScanResult,
                    [build_scan_row(scan_id, analysis)],
                    index_elements=["scan_id", "symbol"]
                )
                db.commit()
                return True

            except Exception as e:
                db.rollback()
                logger.error(f"Scan {scan_id}: failed to analyze {symbol}: {e}")
                return False

    # ============================================================
    # 상태 / 결과 조회
    # ============================================================

    def get_scan_status(self) -> Dict[str, Any]:
        """실행 중 스캔 또는 최신 스캔 상태"""
        self.repository.sweep_stuck_jobs()

        job = self.repository.get_running() or self.repository.get_latest()
        if not job:
            return {"status": "no_scans", "message": "No scans have been run yet"}
        return job

    def get_scan_results(
            self,
            pillars: Optional[List[int]] = None,
            page: int = 1,
            limit: int = 50,
            sort_by: str = "pillars_passed",
            sort_order: str = "desc"
    ) -> Dict[str, Any]:
        """
        스캔 결과 조회

        Args:
            pillars: 반드시 통과해야 하는 필라 번호 (1-8)
            page: 페이지 (1부터)
            limit: 페이지 크기 (최대 100)
            sort_by: 정렬 컬럼 (허용 목록 외에는 pillars_passed)
            sort_order: asc | desc
        """
        pillars = pillars or []
        for number in pillars:
            if number < 1 or number > 8:
                raise ValueError(f"Invalid pillar number: {number}")

        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        scan = self.repository.get_latest_with_results()
        if not scan:
            return {
                "scan_info": None,
                "results": [],
                "total": 0,
                "page": page,
                "limit": limit,
                "total_pages": 0
            }

        column = SORTABLE_COLUMNS.get(sort_by, PillarScanResult.pillars_passed)
        direction = asc if sort_order.lower() == "asc" else desc

        with self.session_factory() as db:
            query = db.query(PillarScanResult).filter(PillarScanResult.scan_id == scan["scan_id"])
            for number in pillars:
                query = query.filter(getattr(PillarScanResult, f"pillar_{number}_pass").is_(True))

            total = query.count()
            rows = (
                query
                .order_by(direction(column), asc(PillarScanResult.symbol))
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            results = [row.to_dict() for row in rows]

        return {
            "scan_info": scan,
            "results": results,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0
        }


_scanner_service = None


def get_scanner_service() -> StockScannerService:
    """스캐너 서비스 싱글톤"""
    global _scanner_service

    if _scanner_service is None:
        _scanner_service = StockScannerService()

    return _scanner_service
