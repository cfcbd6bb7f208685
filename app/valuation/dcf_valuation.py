"""
DCF (Discounted Cash Flow) 밸류에이션 모델
"""
import logging
import math
from dataclasses import dataclass, asdict, field, fields
from typing import Dict, Any, List, Optional

from app.config.config import get_settings
from app.core.exceptions import InsufficientDataError, InvalidValuationInputError

logger = logging.getLogger(__name__)
settings = get_settings()

# 터미널 성장률 <= 할인율일 때 사용하는 대체 배수
GORDON_FALLBACK_MULTIPLE = 15.0


@dataclass
class DCFInputs:
    """
    DCF 입력값 (low=bear, medium=base, high=bull)

    비율은 모두 소수 (0.10 = 10%)
    """
    shares_outstanding: Optional[float] = None
    current_price: Optional[float] = None
    current_fcf: Optional[float] = None
    current_revenue: Optional[float] = None
    current_net_income: Optional[float] = None
    calculated_discount_rate: Optional[float] = None
    beta: Optional[float] = None

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

    projection_years: int = 10

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DCFInputs":
        """알 수 없는 키는 무시"""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names and v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValuationResult:
    """DCF 결과 (시나리오별 적정가 + 안전마진)"""
    fair_value_low: Optional[float]
    fair_value_medium: Optional[float]
    fair_value_high: Optional[float]
    margin_of_safety_low: Optional[float]
    margin_of_safety_medium: Optional[float]
    margin_of_safety_high: Optional[float]
    inputs: Dict[str, Any]
    inputs_were_corrected: bool = False
    corrections: List[str] = field(default_factory=list)
    rating: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["inputs"]["inputs_were_corrected"] = self.inputs_were_corrected
        return data


class DCFValuation:
    """
    DCF (현금흐름할인) 모델

    시나리오(bear/base/bull) x 방법(FCF, 순이익)별로
    내재가치 = Σ(CF_t / (1+r)^t) + Terminal Value / (1+r)^n
    을 계산하고, 유효한(유한한 양수) 방법들의 평균을 적정가로 사용한다.

    Terminal Value:
    - 배수가 있으면: 최종연도 지표 x 배수
    - 없으면: 최종연도 지표 x (1+g) / (r-g)
    """

    def __init__(
            self,
            terminal_growth: Optional[float] = None,
            default_discount_rate: Optional[float] = None,
            auto_correct: Optional[bool] = None
    ):
        """
        Args:
            terminal_growth: 영구성장률 (소수, 기본 3%)
            default_discount_rate: 기준 할인율이 없을 때 사용 (기본 10%)
            auto_correct: 역전된 bear/bull 입력 자동 교정 여부
        """
        self.terminal_growth = settings.DCF_TERMINAL_GROWTH if terminal_growth is None else terminal_growth
        self.default_discount_rate = (
            settings.DCF_DEFAULT_DISCOUNT_RATE if default_discount_rate is None else default_discount_rate
        )
        self.auto_correct = (
            settings.DCF_AUTO_CORRECT_REVERSED_INPUTS if auto_correct is None else auto_correct
        )

    # ============================================================
    # 할인율 (CAPM)
    # ============================================================

    @staticmethod
    def calculate_discount_rate(
            beta: Optional[float] = None,
            risk_free_rate: Optional[float] = None,
            market_risk_premium: Optional[float] = None
    ) -> float:
        """
        CAPM 할인율 = 무위험수익률 + 베타 x 시장위험프리미엄

        베타가 없으면 1.0 (시장 평균)
        """
        rf = settings.DCF_RISK_FREE_RATE if risk_free_rate is None else risk_free_rate
        mrp = settings.DCF_MARKET_RISK_PREMIUM if market_risk_premium is None else market_risk_premium
        stock_beta = 1.0 if beta is None else beta

        rate = rf + stock_beta * mrp
        logger.info(f"CAPM discount rate: rf={rf:.2%}, beta={stock_beta:.2f}, mrp={mrp:.2%} -> {rate:.2%}")
        return rate

    # ============================================================
    # 메인 계산
    # ============================================================

    def calculate(self, inputs: DCFInputs) -> ValuationResult:
        """
        3개 시나리오 DCF 계산

        Raises:
            InsufficientDataError: 주식수 없음, 또는 순이익/FCF 모두 없음
            InvalidValuationInputError: 역전 입력 + 자동 교정 비활성화
        """
        if not inputs.shares_outstanding:
            raise InsufficientDataError("Shares outstanding is required for DCF")

        if not inputs.current_net_income and not inputs.current_fcf:
            raise InsufficientDataError("Need either net income or free cash flow for DCF")

        # 1. 시나리오별 할인율
        base_rate = inputs.calculated_discount_rate or self.default_discount_rate
        bear_rate = inputs.desired_return_low if inputs.desired_return_low is not None else base_rate + 0.03
        base_scenario_rate = inputs.desired_return_medium if inputs.desired_return_medium is not None else base_rate
        bull_rate = (
            inputs.desired_return_high if inputs.desired_return_high is not None
            else max(0.05, base_rate - 0.02)
        )

        # 2. 입력 순서 검증 (bear -> bull)
        corrections: List[str] = []
        growth = self._order(
            "Growth rates", inputs.revenue_growth_low, inputs.revenue_growth_medium,
            inputs.revenue_growth_high, corrections
        )
        pe = self._order("P/E multiples", inputs.pe_low, inputs.pe_medium, inputs.pe_high, corrections)
        pfcf = self._order("P/FCF multiples", inputs.pfcf_low, inputs.pfcf_medium, inputs.pfcf_high, corrections)
        discount = self._order(
            "Discount rates", bear_rate, base_scenario_rate, bull_rate, corrections, descending=True
        )

        if corrections:
            if not self.auto_correct:
                raise InvalidValuationInputError("; ".join(corrections))
            for message in corrections:
                logger.warning(f"DCF input corrected: {message}")

        # 3. 시나리오별 적정가
        years = inputs.projection_years or settings.DCF_PROJECTION_YEARS
        fair_values = [
            self.calculate_dcf_traditional(
                fcf=inputs.current_fcf,
                net_income=inputs.current_net_income,
                growth=growth[i],
                pe_multiple=pe[i],
                pfcf_multiple=pfcf[i],
                discount_rate=discount[i],
                years=years,
                shares=inputs.shares_outstanding
            )
            for i in range(3)
        ]

        # 4. 결과 순서 검증 (입력 교정 후에도 역전될 수 있음)
        if self._is_out_of_order(fair_values):
            logger.warning(f"DCF fair values out of order {fair_values}, reordering")
            fair_values = self._reorder(fair_values)
            corrections.append("Fair values reordered so that bear <= base <= bull")

        fv_low, fv_medium, fv_high = fair_values
        price = inputs.current_price

        resolved = inputs.to_dict()
        resolved.update({
            "revenue_growth_low": growth[0],
            "revenue_growth_medium": growth[1],
            "revenue_growth_high": growth[2],
            "pe_low": pe[0],
            "pe_medium": pe[1],
            "pe_high": pe[2],
            "pfcf_low": pfcf[0],
            "pfcf_medium": pfcf[1],
            "pfcf_high": pfcf[2],
            "desired_return_low": discount[0],
            "desired_return_medium": discount[1],
            "desired_return_high": discount[2],
            "projection_years": years,
            "terminal_growth": self.terminal_growth,
        })

        mos_medium = self._margin_of_safety(fv_medium, price)

        return ValuationResult(
            fair_value_low=fv_low,
            fair_value_medium=fv_medium,
            fair_value_high=fv_high,
            margin_of_safety_low=self._margin_of_safety(fv_low, price),
            margin_of_safety_medium=mos_medium,
            margin_of_safety_high=self._margin_of_safety(fv_high, price),
            inputs=resolved,
            inputs_were_corrected=bool(corrections),
            corrections=corrections,
            rating=self._get_dcf_rating(mos_medium * 100) if mos_medium is not None else None
        )

    def calculate_dcf_traditional(
            self,
            fcf: Optional[float],
            net_income: Optional[float],
            growth: Optional[float],
            pe_multiple: Optional[float],
            pfcf_multiple: Optional[float],
            discount_rate: Optional[float],
            years: int,
            shares: float
    ) -> Optional[float]:
        """
        연도별 투영 + 터미널 밸류 방식 주당 적정가

        Returns:
            유효한 방법들의 평균 (없으면 None)
        """
        discount = discount_rate
        if discount is None or (isinstance(discount, float) and math.isnan(discount)):
            logger.warning(f"Invalid discount rate {discount_rate}, using {self.default_discount_rate:.0%}")
            discount = self.default_discount_rate
        if discount < 0:
            logger.warning(f"Negative discount rate {discount}, using 0%")
            discount = 0.0

        growth = growth or 0.0
        methods = []

        # 방법 1: FCF 기반
        if fcf and fcf > 0 and shares:
            value = self._project(fcf, growth, discount, years, pfcf_multiple) / shares
            if value > 0 and math.isfinite(value):
                methods.append(value)
            else:
                logger.warning(f"FCF method produced invalid result: {value}")

        # 방법 2: 순이익 기반
        if net_income and net_income > 0 and shares:
            value = self._project(net_income, growth, discount, years, pe_multiple) / shares
            if value > 0 and math.isfinite(value):
                methods.append(value)
            else:
                logger.warning(f"Earnings method produced invalid result: {value}")

        if not methods:
            return None
        return sum(methods) / len(methods)

    def _project(
            self,
            base: float,
            growth: float,
            discount: float,
            years: int,
            exit_multiple: Optional[float]
    ) -> float:
        """기준 지표를 years년 투영 후 현재가치 합계 (터미널 포함)"""
        metric = base
        present_value_sum = 0.0

        for year in range(1, years + 1):
            metric = metric * (1 + growth)
            present_value_sum += metric / (1 + discount) ** year

        if exit_multiple:
            terminal_value = metric * exit_multiple
        elif discount <= self.terminal_growth:
            terminal_value = metric * GORDON_FALLBACK_MULTIPLE
        else:
            terminal_value = metric * (1 + self.terminal_growth) / (discount - self.terminal_growth)

        return present_value_sum + terminal_value / (1 + discount) ** years

    # ============================================================
    # 보조 함수
    # ============================================================

    @staticmethod
    def _order(label, low, medium, high, corrections, descending=False):
        """bear/bull 값이 역전되어 있으면 교환하고 교정 내역 기록"""
        if low is None or high is None:
            return [low, medium, high]

        reversed_ = low < high if descending else low > high
        if reversed_:
            corrections.append(f"{label} reversed: bear={low}, bull={high}. Swapped.")
            return [high, medium, low]
        return [low, medium, high]

    @staticmethod
    def _is_out_of_order(values) -> bool:
        present = [v for v in values if v is not None]
        return present != sorted(present)

    @staticmethod
    def _reorder(values):
        """None 위치는 유지하고 나머지 값만 오름차순 재배치"""
        present = iter(sorted(v for v in values if v is not None))
        return [next(present) if v is not None else None for v in values]

    @staticmethod
    def _margin_of_safety(fair_value: Optional[float], current_price: Optional[float]) -> Optional[float]:
        """안전마진 = (적정가 - 현재가) / 현재가"""
        if fair_value is None or not current_price:
            return None
        return (fair_value - current_price) / current_price

    @staticmethod
    def _get_dcf_rating(upside_pct: float) -> str:
        """DCF 평가 등급"""
        if upside_pct >= 50:
            return "strong_buy"
        elif upside_pct >= 30:
            return "buy"
        elif upside_pct >= 10:
            return "undervalued"
        elif upside_pct >= -10:
            return "fair"
        elif upside_pct >= -30:
            return "overvalued"
        else:
            return "strong_sell"
