"""
스캔 작업 저장소

실행 중인 스캔의 유일한 기준은 stock_scans 테이블의 status='running' 행
(부분 유니크 인덱스로 최대 1개 보장). 프로세스 메모리에는 상태를 두지 않는다.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.config.config import get_settings
from app.core.database import SessionLocal, utcnow
from app.core.exceptions import ScanAlreadyRunningError
from app.models.scan_job import ScanJob, SCAN_COMPLETED, SCAN_FAILED, SCAN_RUNNING

logger = logging.getLogger(__name__)
settings = get_settings()


class ScanJobRepository:
    """ScanJob 영속화 + 멈춘 작업 정리"""

    def __init__(
            self,
            session_factory: sessionmaker = SessionLocal,
            clock: Callable[[], datetime] = utcnow,
            stuck_max_hours: Optional[int] = None,
            stuck_no_progress_hours: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.stuck_max_age = timedelta(hours=stuck_max_hours or settings.SCAN_STUCK_MAX_HOURS)
        self.stuck_no_progress_age = timedelta(
            hours=stuck_no_progress_hours or settings.SCAN_STUCK_NO_PROGRESS_HOURS
        )

    # ============================================================
    # 생성 / 상태 전이
    # ============================================================

    def create_running_job(self, universe: Optional[str] = None) -> int:
        """
        running 상태 작업 생성

        Raises:
            ScanAlreadyRunningError: 이미 running 작업이 있음
        """
        with self.session_factory() as db:
            running = db.query(ScanJob).filter(ScanJob.status == SCAN_RUNNING).first()
            if running:
                raise ScanAlreadyRunningError(running.id)

            now = self.clock()
            job = ScanJob(
                scan_date=now.date(),
                status=SCAN_RUNNING,
                universe=universe,
                total_stocks=0,
                stocks_analyzed=0,
                stocks_failed=0,
                created_at=now
            )
            db.add(job)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ScanAlreadyRunningError() from e

            logger.info(f"Created scan job {job.id} (universe={universe})")
            return job.id

    def set_total(self, job_id: int, total: int) -> bool:
        return self._update(job_id, total_stocks=total)

    def update_progress(self, job_id: int, stocks_analyzed: int, stocks_failed: int = 0) -> bool:
        return self._update(job_id, stocks_analyzed=stocks_analyzed, stocks_failed=stocks_failed)

    def complete(
            self,
            job_id: int,
            stocks_analyzed: int,
            failed_symbols: List[str],
            duration_seconds: float
    ) -> bool:
        return self._update(
            job_id,
            status=SCAN_COMPLETED,
            stocks_analyzed=stocks_analyzed,
            stocks_failed=len(failed_symbols),
            failed_symbols=list(failed_symbols),
            completed_at=self.clock(),
            duration_seconds=duration_seconds
        )

    def fail(self, job_id: int, error_message: str, duration_seconds: Optional[float] = None) -> bool:
        return self._update(
            job_id,
            status=SCAN_FAILED,
            error_message=error_message,
            completed_at=self.clock(),
            duration_seconds=duration_seconds
        )

    def _update(self, job_id: int, **values) -> bool:
        """running 상태인 작업만 갱신 (정리된 작업은 그대로 둔다)"""
        with self.session_factory() as db:
            updated = (
                db.query(ScanJob)
                .filter(ScanJob.id == job_id, ScanJob.status == SCAN_RUNNING)
                .update(values, synchronize_session=False)
            )
            db.commit()

        if not updated:
            logger.warning(f"Scan job {job_id} is no longer running; update ignored ({', '.join(values)})")
        return bool(updated)

    # ============================================================
    # 멈춘 작업 정리
    # ============================================================

    def sweep_stuck_jobs(self) -> int:
        """
        멈춘 running 작업을 failed로 전환

        - 생성 후 6시간 초과
        - 생성 후 1시간 초과 + 진행 0건

        Returns:
            정리된 작업 수
        """
        now = self.clock()
        swept = 0

        with self.session_factory() as db:
            running = db.query(ScanJob).filter(ScanJob.status == SCAN_RUNNING).all()

            for job in running:
                age = now - job.created_at
                too_old = age > self.stuck_max_age
                no_progress = age > self.stuck_no_progress_age and not job.stocks_analyzed

                if not (too_old or no_progress):
                    continue

                hours = age.total_seconds() / 3600
                job.status = SCAN_FAILED
                job.completed_at = now
                job.duration_seconds = age.total_seconds()
                job.error_message = (
                    f"Scan marked as failed: stuck in running state for {hours:.1f}h "
                    f"({job.stocks_analyzed}/{job.total_stocks} analyzed)"
                )
                swept += 1
                logger.warning(f"Stuck scan {job.id} reclassified as failed ({hours:.1f}h old)")

            db.commit()

        return swept

    # ============================================================
    # 조회
    # ============================================================

    def get(self, job_id: int) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            job = db.query(ScanJob).filter(ScanJob.id == job_id).first()
            return job.to_dict() if job else None

    def get_running(self) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            job = db.query(ScanJob).filter(ScanJob.status == SCAN_RUNNING).first()
            return job.to_dict() if job else None

    def get_latest(self) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            job = db.query(ScanJob).order_by(desc(ScanJob.created_at), desc(ScanJob.id)).first()
            return job.to_dict() if job else None

    def get_latest_with_results(self) -> Optional[Dict[str, Any]]:
        """결과 조회 대상 스캔 (실행 중이면 그것, 아니면 최신 완료 스캔)"""
        running = self.get_running()
        if running:
            return running

        with self.session_factory() as db:
            job = (
                db.query(ScanJob)
                .filter(ScanJob.status == SCAN_COMPLETED)
                .order_by(desc(ScanJob.created_at), desc(ScanJob.id))
                .first()
            )
            return job.to_dict() if job else None
