"""Tests for the batch scanner and the scan job repository."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.database import utcnow
from app.core.exceptions import MarketDataError, ScanAlreadyRunningError
from app.models.pillar_scan_result import PillarScanResult
from app.models.scan_job import ScanJob, SCAN_COMPLETED, SCAN_FAILED, SCAN_RUNNING
from app.services.scan_job_repository import ScanJobRepository
from app.services.stock_scanner_service import (
    SCORE_FAILED,
    SCORE_PASSED,
    SCORE_UNAVAILABLE,
    StockScannerService,
    build_scan_row,
)
from app.services.stock_universe_service import UniverseOptions
from app.valuation.aggregation import AggregationEngine
from app.valuation.eight_pillars import EightPillarsScorer

from conftest import make_period


def make_analysis(symbol, market_cap=2_000.0):
    periods = [make_period(y, symbol=symbol) for y in range(2019, 2024)]
    aggregate = AggregationEngine().aggregate(periods)
    return EightPillarsScorer().score(
        symbol, aggregate,
        market_cap=market_cap,
        current_price=20.0,
        shares_outstanding=100.0,
        analysis_date=utcnow()
    )


class FakePillarsService:
    """Scores symbols; listed symbols fail a set number of times first."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        self.calls = []

    def score_symbol(self, symbol, force_refresh=False):
        self.calls.append((symbol, force_refresh))
        if self.failures.get(symbol, 0) > 0:
            self.failures[symbol] -= 1
            raise MarketDataError(f"rate limited on {symbol}")
        return make_analysis(symbol)


class FakeUniverse:
    def __init__(self, symbols):
        self.symbols = symbols

    def resolve(self, options):
        if isinstance(self.symbols, Exception):
            raise self.symbols
        return list(self.symbols)


@pytest.fixture
def repository(session_factory, clock):
    return ScanJobRepository(session_factory, clock=clock)


@pytest.fixture
def sleeps():
    return []


def make_scanner(session_factory, repository, sleeps, pillars, symbols):
    return StockScannerService(
        session_factory=session_factory,
        repository=repository,
        pillars_service_factory=lambda db: pillars,
        universe_service_factory=lambda db: FakeUniverse(symbols),
        sleep=sleeps.append,
        batch_size=10,
        batch_delay=2.0,
        retry_delay=5.0,
        progress_every=10
    )


SYMBOLS = [f"S{i:02d}" for i in range(23)]


# ============================================================
# Batch run
# ============================================================

class TestRunScan:
    def test_transient_failures_recovered_on_retry(self, session_factory, repository, sleeps):
        pillars = FakePillarsService(failures={"S03": 1, "S17": 1})
        scanner = make_scanner(session_factory, repository, sleeps, pillars, SYMBOLS)

        summary = scanner.run_scan(UniverseOptions())

        assert summary["status"] == SCAN_COMPLETED
        assert summary["total_stocks"] == 23
        assert summary["stocks_analyzed"] == 23
        assert summary["stocks_failed"] == 0
        assert summary["failed_symbols"] == []

        # two inter-batch delays + one delay before the retry pass
        assert sleeps == [2.0, 2.0, 5.0]

        job = repository.get(summary["scan_id"])
        assert job["status"] == SCAN_COMPLETED
        assert job["stocks_analyzed"] == 23
        assert job["progress"] == 100.0

        with session_factory() as db:
            assert db.query(PillarScanResult).filter_by(scan_id=summary["scan_id"]).count() == 23

    def test_symbols_scored_in_order_with_forced_refresh(self, session_factory, repository, sleeps):
        pillars = FakePillarsService()
        scanner = make_scanner(session_factory, repository, sleeps, pillars, SYMBOLS[:5])
        scanner.run_scan()

        assert [s for s, _ in pillars.calls] == SYMBOLS[:5]
        assert all(force for _, force in pillars.calls)
        assert sleeps == []

    def test_permanent_failure_recorded_without_aborting(self, session_factory, repository, sleeps):
        pillars = FakePillarsService(failures={"S05": 2})
        scanner = make_scanner(session_factory, repository, sleeps, pillars, SYMBOLS[:12])

        summary = scanner.run_scan()

        assert summary["status"] == SCAN_COMPLETED
        assert summary["stocks_analyzed"] == 11
        assert summary["failed_symbols"] == ["S05"]
        assert repository.get(summary["scan_id"])["stocks_failed"] == 1

    def test_progress_persisted_during_run(self, session_factory, repository, sleeps):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), SYMBOLS)

        with patch.object(repository, "update_progress", wraps=repository.update_progress) as spy:
            scanner.run_scan()

        analyzed = [c.args[1] for c in spy.call_args_list]
        assert 10 in analyzed and 20 in analyzed and 23 in analyzed

    def test_progress_persisted_during_retry_pass(self, session_factory, repository, sleeps):
        symbols = [f"R{i:02d}" for i in range(25)]
        pillars = FakePillarsService(failures={s: 1 for s in symbols})
        scanner = make_scanner(session_factory, repository, sleeps, pillars, symbols)

        with patch.object(repository, "update_progress", wraps=repository.update_progress) as spy:
            summary = scanner.run_scan()

        analyzed = [c.args[1] for c in spy.call_args_list]
        assert summary["stocks_analyzed"] == 25
        assert 10 in analyzed and 20 in analyzed
        assert analyzed[-1] == 25
        assert sleeps == [2.0, 2.0, 5.0]

    def test_unhandled_error_fails_job(self, session_factory, repository, sleeps):
        scanner = make_scanner(
            session_factory, repository, sleeps, FakePillarsService(), RuntimeError("universe down")
        )
        summary = scanner.run_scan()

        job = repository.get(summary["scan_id"])
        assert job["status"] == SCAN_FAILED
        assert "universe down" in job["error_message"]
        assert repository.get_running() is None


class TestScanRows:
    def test_scores(self):
        analysis = make_analysis("AAA", market_cap=None)
        row = build_scan_row(7, analysis)

        assert row["scan_id"] == 7
        assert row["total_score"] == analysis.pillars_passed * SCORE_PASSED
        assert row["pillar_8_pass"] is False
        assert row["pillar_8_score"] == SCORE_UNAVAILABLE
        assert row["pillar_2_score"] == SCORE_PASSED

    def test_failed_with_data_scores_two(self):
        analysis = make_analysis("AAA", market_cap=1e9)
        row = build_scan_row(1, analysis)

        assert row["pillar_8_pass"] is False
        assert row["pillar_8_score"] == SCORE_FAILED


# ============================================================
# Single running job / stuck sweep
# ============================================================

class TestSingleFlight:
    def test_second_running_job_rejected(self, repository):
        repository.create_running_job("curated")
        with pytest.raises(ScanAlreadyRunningError):
            repository.create_running_job("curated")

    def test_database_enforces_single_running_row(self, session_factory, clock):
        with session_factory() as db:
            for _ in range(2):
                db.add(ScanJob(scan_date=clock().date(), status=SCAN_RUNNING, created_at=clock()))
            with pytest.raises(IntegrityError):
                db.commit()

    def test_trigger_rejected_while_running(self, session_factory, repository, sleeps):
        repository.create_running_job("curated")
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), SYMBOLS)

        with pytest.raises(ScanAlreadyRunningError):
            scanner.start_scan(UniverseOptions())

    def test_new_job_allowed_after_completion(self, repository):
        job_id = repository.create_running_job()
        repository.complete(job_id, 0, [], 1.0)
        assert repository.create_running_job() != job_id


class TestStuckSweep:
    def test_old_job_failed_regardless_of_progress(self, repository, clock):
        job_id = repository.create_running_job()
        repository.update_progress(job_id, 500)

        clock.now += timedelta(hours=7)
        assert repository.sweep_stuck_jobs() == 1

        job = repository.get(job_id)
        assert job["status"] == SCAN_FAILED
        assert "stuck" in job["error_message"]

    def test_no_progress_job_failed_after_an_hour(self, repository, clock):
        job_id = repository.create_running_job()

        clock.now += timedelta(hours=2)
        repository.sweep_stuck_jobs()

        assert repository.get(job_id)["status"] == SCAN_FAILED

    def test_recent_job_left_alone(self, repository, clock):
        job_id = repository.create_running_job()
        repository.update_progress(job_id, 3)

        clock.now += timedelta(hours=2)
        assert repository.sweep_stuck_jobs() == 0
        assert repository.get(job_id)["status"] == SCAN_RUNNING

    def test_status_check_sweeps(self, session_factory, repository, sleeps, clock):
        repository.create_running_job()
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), SYMBOLS)

        clock.now += timedelta(hours=7)
        assert scanner.get_scan_status()["status"] == SCAN_FAILED

    def test_no_scans_yet(self, session_factory, repository, sleeps):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), SYMBOLS)
        assert scanner.get_scan_status()["status"] == "no_scans"

    def test_swept_job_is_not_revived_by_late_completion(self, repository, clock):
        job_id = repository.create_running_job()

        clock.now += timedelta(hours=7)
        repository.sweep_stuck_jobs()

        assert repository.complete(job_id, 5, [], 1.0) is False
        assert repository.update_progress(job_id, 9) is False

        job = repository.get(job_id)
        assert job["status"] == SCAN_FAILED
        assert "stuck" in job["error_message"]
        assert job["stocks_analyzed"] == 0

    def test_scan_swept_while_running_reports_failed(self, session_factory, repository, sleeps, clock):
        class SweepingPillars(FakePillarsService):
            def score_symbol(self, symbol, force_refresh=False):
                if symbol == "S02":
                    clock.now += timedelta(hours=7)
                    repository.sweep_stuck_jobs()
                return super().score_symbol(symbol, force_refresh)

        scanner = make_scanner(session_factory, repository, sleeps, SweepingPillars(), SYMBOLS[:5])
        summary = scanner.run_scan()

        assert summary["status"] == SCAN_FAILED
        assert repository.get(summary["scan_id"])["status"] == SCAN_FAILED
        assert "stuck" in repository.get(summary["scan_id"])["error_message"]


# ============================================================
# Result listing
# ============================================================

@pytest.fixture
def completed_scan(session_factory, repository):
    job_id = repository.create_running_job()

    with session_factory() as db:
        for i, symbol in enumerate(["CCC", "AAA", "BBB", "DDD"]):
            row = build_scan_row(job_id, make_analysis(symbol))
            row["pillars_passed"] = i
            row["market_cap"] = 1000.0 * (4 - i)
            row["pillar_1_pass"] = i % 2 == 0
            db.add(PillarScanResult(**row))
        db.commit()

    repository.complete(job_id, 4, [], 3.0)
    return job_id


class TestScanResults:
    def test_default_sort_by_pillars_passed(self, session_factory, repository, sleeps, completed_scan):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), [])
        page = scanner.get_scan_results()

        assert page["scan_info"]["scan_id"] == completed_scan
        assert [r["symbol"] for r in page["results"]] == ["DDD", "BBB", "AAA", "CCC"]
        assert page["total"] == 4

    def test_filter_by_required_pillar(self, session_factory, repository, sleeps, completed_scan):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), [])
        page = scanner.get_scan_results(pillars=[1], sort_by="symbol", sort_order="asc")

        assert [r["symbol"] for r in page["results"]] == ["BBB", "CCC"]

    def test_pagination_and_cap(self, session_factory, repository, sleeps, completed_scan):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), [])

        page = scanner.get_scan_results(page=2, limit=3, sort_by="market_cap", sort_order="asc")
        assert [r["symbol"] for r in page["results"]] == ["CCC"]
        assert page["total_pages"] == 2

        assert scanner.get_scan_results(limit=1000)["limit"] == 100

    def test_unknown_sort_column_falls_back(self, session_factory, repository, sleeps, completed_scan):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), [])
        page = scanner.get_scan_results(sort_by="drop table")
        assert page["results"][0]["symbol"] == "DDD"

    def test_invalid_pillar_number(self, session_factory, repository, sleeps):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), [])
        with pytest.raises(ValueError):
            scanner.get_scan_results(pillars=[9])

    def test_no_completed_scan(self, session_factory, repository, sleeps):
        scanner = make_scanner(session_factory, repository, sleeps, FakePillarsService(), [])
        page = scanner.get_scan_results()
        assert page["scan_info"] is None
        assert page["results"] == []
