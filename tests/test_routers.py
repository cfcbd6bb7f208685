"""Router smoke tests with dependency overrides."""

import pytest
from fastapi.testclient import TestClient

from app.core.database import get_db
from app.core.exceptions import MarketDataError, ScanAlreadyRunningError
from app.main import app
from app.services.stock_scanner_service import get_scanner_service

from conftest import standardized_payload, standardized_year


@pytest.fixture
def client(db, gateway, monkeypatch):
    for module in (
            "app.services.eight_pillars_service",
            "app.services.fundamental_data_service",
            "app.services.valuation_service",
    ):
        monkeypatch.setattr(f"{module}.get_market_data_client", lambda: gateway)

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def apple(gateway):
    gateway.profiles["AAPL"] = {"name": "Apple Inc", "finnhubIndustry": "Technology", "shareOutstanding": 50.0}
    gateway.quotes["AAPL"] = 40.0
    gateway.statements["AAPL"] = standardized_payload([standardized_year(y) for y in range(2019, 2024)])
    return gateway


class FakeScanner:
    def __init__(self, error=None):
        self.error = error

    def start_scan(self, options):
        if self.error:
            raise self.error
        return {"scan_id": 1, "status": "running", "universe": options.resolved_universe}

    def get_scan_status(self):
        return {"status": "no_scans"}

    def get_scan_results(self, **kwargs):
        return {"scan_info": None, "results": [], "total": 0, "kwargs": kwargs}


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["project"] == "Highgarden"


# ============================================================
# Fundamentals / Pillars
# ============================================================

class TestPillarsRouter:
    def test_analysis(self, client, apple):
        response = client.get("/api/pillars/aapl")

        assert response.status_code == 200
        body = response.json()
        assert body["symbol"] == "AAPL"
        assert len(body["pillars"]) == 8
        assert body["company_name"] == "Apple Inc"

    def test_insufficient_data_is_422(self, client, gateway):
        gateway.quotes["NEW"] = 10.0
        gateway.statements["NEW"] = standardized_payload([standardized_year(2023)])

        assert client.get("/api/pillars/NEW").status_code == 422

    def test_provider_failure_is_502(self, client, gateway):
        gateway.quotes["DOWN"] = MarketDataError("timeout")
        assert client.get("/api/pillars/DOWN").status_code == 502

    def test_unexpected_error_is_500(self, client, gateway, caplog):
        gateway.quotes["BUG"] = RuntimeError("boom")

        response = client.get("/api/pillars/BUG")

        assert response.status_code == 500
        assert response.json()["detail"] == "boom"
        assert any("BUG" in r.getMessage() and r.levelname == "ERROR" for r in caplog.records)


class TestFundamentalsRouter:
    def test_periods(self, client, apple):
        body = client.get("/api/fundamentals/AAPL?periods=3").json()
        assert [p["fiscal_year"] for p in body["items"]] == [2023, 2022, 2021]

    def test_unknown_statement_is_400(self, client, apple):
        assert client.get("/api/fundamentals/AAPL/statements/bogus").status_code == 400

    def test_invalid_frequency_is_400(self, client, apple):
        assert client.get("/api/fundamentals/AAPL?frequency=weekly").status_code == 400

    def test_unexpected_error_is_500(self, client, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("db gone")

        monkeypatch.setattr(
            "app.services.fundamental_data_service.FundamentalDataService.get_financials", broken
        )
        assert client.get("/api/fundamentals/AAPL").status_code == 500


# ============================================================
# Scanner
# ============================================================

class TestScannerRouter:
    def test_trigger(self, client):
        app.dependency_overrides[get_scanner_service] = lambda: FakeScanner()
        response = client.post("/api/scanner/trigger?universe=combined")

        assert response.status_code == 200
        assert response.json()["universe"] == "combined"

    def test_trigger_while_running_is_409(self, client):
        app.dependency_overrides[get_scanner_service] = lambda: FakeScanner(ScanAlreadyRunningError(3))
        assert client.post("/api/scanner/trigger").status_code == 409

    def test_unknown_universe_is_400(self, client):
        app.dependency_overrides[get_scanner_service] = lambda: FakeScanner()
        assert client.post("/api/scanner/trigger?universe=nasdaq").status_code == 400

    def test_results_pillar_filter(self, client):
        app.dependency_overrides[get_scanner_service] = lambda: FakeScanner()

        body = client.get("/api/scanner/results?pillars=1,3").json()
        assert body["kwargs"]["pillars"] == [1, 3]

        assert client.get("/api/scanner/results?pillars=0,9").status_code == 400
        assert client.get("/api/scanner/results?pillars=a").status_code == 400


# ============================================================
# Valuation
# ============================================================

class TestValuationRouter:
    def test_dcf(self, client, apple):
        response = client.post("/api/valuation/AAPL/dcf", json={
            "revenue_growth_low": 0.02,
            "revenue_growth_medium": 0.05,
            "revenue_growth_high": 0.08,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["fair_value_low"] <= body["fair_value_medium"] <= body["fair_value_high"]

    def test_saved_valuations_are_private(self, client):
        created = client.post(
            "/api/valuation/saved",
            json={"symbol": "AAPL", "fair_value_medium": 45.0},
            headers={"X-User-Id": "u1"}
        ).json()

        own = client.get(f"/api/valuation/saved/{created['id']}", headers={"X-User-Id": "u1"})
        other = client.get(f"/api/valuation/saved/{created['id']}", headers={"X-User-Id": "u2"})

        assert own.status_code == 200
        assert other.status_code == 404
        assert client.get("/api/valuation/saved", headers={"X-User-Id": "u2"}).json()["total"] == 0

        deleted = client.delete(f"/api/valuation/saved/{created['id']}", headers={"X-User-Id": "u1"})
        assert deleted.status_code == 200

    def test_missing_user_header_is_rejected(self, client):
        assert client.get("/api/valuation/saved").status_code == 422
