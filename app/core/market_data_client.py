"""
시장 데이터 클라이언트 (Finnhub)
시세, 기업 프로필, 재무제표, 캔들, 지수 구성 종목
"""
import logging
import threading
import time
from collections import deque
from typing import Any, Dict, List, Optional

import httpx

from app.config.config import get_settings
from app.core.exceptions import MarketDataError

logger = logging.getLogger(__name__)
settings = get_settings()


class RateLimiter:
    """
    초당 호출 수 제한 (슬라이딩 윈도우)

    스캐너 스레드와 API 요청이 같은 한도를 공유하므로 lock으로 보호
    """

    def __init__(self, max_calls: int, period: float = 1.0):
        self.max_calls = max_calls
        self.period = period
        self._calls = deque()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            now = time.monotonic()
            while self._calls and now - self._calls[0] >= self.period:
                self._calls.popleft()

            if len(self._calls) >= self.max_calls:
                wait = self.period - (now - self._calls[0])
                if wait > 0:
                    time.sleep(wait)
                self._calls.popleft()

            self._calls.append(time.monotonic())


class FinnhubClient:
    """Finnhub REST 클라이언트 (동기)"""

    def __init__(
            self,
            api_key: Optional[str] = None,
            base_url: Optional[str] = None,
            timeout: Optional[float] = None,
            max_calls_per_second: Optional[int] = None,
            transport: Optional[httpx.BaseTransport] = None
    ):
        self.api_key = api_key if api_key is not None else settings.FINNHUB_API_KEY
        self.base_url = (base_url or settings.FINNHUB_BASE_URL).rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout or settings.FINNHUB_TIMEOUT_SECONDS,
            transport=transport
        )
        self.rate_limiter = RateLimiter(
            max_calls_per_second or settings.FINNHUB_MAX_CALLS_PER_SECOND
        )

        if not self.api_key:
            logger.warning("FINNHUB_API_KEY is not set - provider calls will fail")

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET 요청 공통 처리

        모든 HTTP/전송 오류는 MarketDataError로 변환
        """
        query = dict(params or {})
        query["token"] = self.api_key

        self.rate_limiter.acquire()

        try:
            response = self.client.get(endpoint, params=query)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Finnhub API error {status} on {endpoint}")
            raise MarketDataError(
                f"Finnhub API error: {status}",
                endpoint=endpoint,
                status_code=status
            ) from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Finnhub request failed on {endpoint}: {e}")
            raise MarketDataError(str(e), endpoint=endpoint) from e

    # ============================================================
    # 재무제표
    # ============================================================

    def get_financial_statements(self, symbol: str, freq: str = "annual") -> Dict[str, Any]:
        """표준화된 재무제표 ({financials: [...]})"""
        return self._get("/stock/financials", {"symbol": symbol, "freq": freq})

    def get_financials_reported(self, symbol: str, freq: str = "annual") -> Dict[str, Any]:
        """SEC 원문 재무제표 ({data: [{year, form, filedDate, report}]})"""
        return self._get("/stock/financials-reported", {"symbol": symbol, "freq": freq})

    def get_basic_financials(self, symbol: str) -> Dict[str, Any]:
        """기본 지표 (beta, 52주 고저, 부채비율 등)"""
        return self._get("/stock/metric", {"symbol": symbol, "metric": "all"})

    # ============================================================
    # 시세 / 프로필
    # ============================================================

    def get_company_profile(self, symbol: str) -> Dict[str, Any]:
        """기업 프로필 (shareOutstanding, marketCapitalization 단위: 백만)"""
        return self._get("/stock/profile2", {"symbol": symbol})

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        """현재 시세"""
        data = self._get("/quote", {"symbol": symbol})

        # 존재하지 않는 종목은 200 + 전부 0으로 응답
        if not data or not data.get("c"):
            raise MarketDataError(f"No quote data for {symbol}", endpoint="/quote")

        return {
            "price": data.get("c"),
            "change": data.get("d"),
            "change_percent": data.get("dp"),
            "high": data.get("h"),
            "low": data.get("l"),
            "open": data.get("o"),
            "previous_close": data.get("pc"),
            "timestamp": data.get("t")
        }

    def get_stock_candles(
            self,
            symbol: str,
            resolution: str,
            from_ts: int,
            to_ts: int
    ) -> List[Dict[str, Any]]:
        """
        캔들 데이터

        Returns:
            [{time, open, high, low, close, volume}, ...] (데이터 없으면 [])
        """
        data = self._get("/stock/candle", {
            "symbol": symbol,
            "resolution": resolution,
            "from": from_ts,
            "to": to_ts
        })

        if not data or data.get("s") != "ok":
            return []

        return [
            {
                "time": t,
                "open": o,
                "high": h,
                "low": l,
                "close": c,
                "volume": v
            }
            for t, o, h, l, c, v in zip(
                data.get("t", []), data.get("o", []), data.get("h", []),
                data.get("l", []), data.get("c", []), data.get("v", [])
            )
        ]

    # ============================================================
    # 유니버스
    # ============================================================

    def get_index_constituents(self, index_symbol: str) -> List[str]:
        """지수 구성 종목 심볼 목록"""
        data = self._get("/index/constituents", {"symbol": index_symbol})
        return list(data.get("constituents", [])) if data else []

    def get_us_symbols(self) -> List[Dict[str, Any]]:
        """미국 상장 종목 전체"""
        data = self._get("/stock/symbol", {"exchange": "US"})
        return data or []

    def close(self) -> None:
        self.client.close()


_market_data_client = None


def get_market_data_client() -> FinnhubClient:
    """시장 데이터 클라이언트 싱글톤"""
    global _market_data_client

    if _market_data_client is None:
        _market_data_client = FinnhubClient()

    return _market_data_client
