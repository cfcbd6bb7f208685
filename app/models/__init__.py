from .financial_period_cache import StockFinancialsCache
from .eight_pillars_analysis import EightPillarsAnalysisCache
from .scan_job import ScanJob
from .pillar_scan_result import PillarScanResult
from .stock_valuation import StockValuation
from .index_constituent import IndexConstituent

__all__ = [
    "StockFinancialsCache",
    "EightPillarsAnalysisCache",
    "ScanJob",
    "PillarScanResult",
    "StockValuation",
    "IndexConstituent"
]
