"""
도메인 예외 정의

- 데이터 부족은 타입이 있는 도메인 예외로 호출자에게 전달
- 개별 필라 계산 불가(필드 누락)는 예외가 아니라 결과의 status로 표현
"""
from typing import Optional


class HighgardenError(Exception):
    """모든 도메인 예외의 베이스"""


class InsufficientDataError(HighgardenError):
    """재무 기간 2개 미만, 또는 밸류에이션 기준 지표 없음"""

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class MarketDataError(HighgardenError):
    """시장 데이터 제공자 호출 실패 (전송/HTTP 오류)"""

    def __init__(
            self,
            message: str,
            endpoint: Optional[str] = None,
            status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class ScanAlreadyRunningError(HighgardenError):
    """이미 실행 중인 스캔이 있음"""

    def __init__(self, scan_id: Optional[int] = None):
        super().__init__(f"Scan already in progress (scan_id={scan_id})")
        self.scan_id = scan_id


class InvalidValuationInputError(HighgardenError):
    """역전된 시나리오 입력 (자동 교정이 꺼져 있을 때)"""


class ValuationNotFoundError(HighgardenError):
    """저장된 밸류에이션이 없거나 소유자가 아님"""


# 라우터 응답 코드 매핑
HTTP_STATUS_CODES = {
    InsufficientDataError: 422,
    MarketDataError: 502,
    ScanAlreadyRunningError: 409,
    InvalidValuationInputError: 400,
    ValuationNotFoundError: 404,
}


def status_code_for(error: Exception) -> int:
    """도메인 예외 -> HTTP 상태 코드 (알 수 없는 예외는 500)"""
    for error_type, status_code in HTTP_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500
