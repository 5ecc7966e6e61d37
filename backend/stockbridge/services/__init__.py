"""
Business logic services for StockBridge
"""
from .cost_extraction_service import CostExtractionService
from .supplier_service import SupplierService
from .extraction_session_service import ExtractionSessionService
from .cost_approval_service import CostApprovalService
from .cutover_service import CutoverService
from .cutover_lock_service import CutoverLockService

__all__ = [
    "CostExtractionService",
    "SupplierService",
    "ExtractionSessionService",
    "CostApprovalService",
    "CutoverService",
    "CutoverLockService",
]
