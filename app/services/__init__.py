"""
Services package
"""
from app.services.fundamental_data_service import get_fundamental_data_service
from app.services.eight_pillars_service import get_eight_pillars_service
from app.services.stock_scanner_service import get_scanner_service
from app.services.valuation_service import get_valuation_service

__all__ = [
    "get_fundamental_data_service",
    "get_eight_pillars_service",
    "get_scanner_service",
    "get_valuation_service"
]
