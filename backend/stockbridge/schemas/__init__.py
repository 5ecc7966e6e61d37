"""
Pydantic schemas for request/response validation
"""
from .cutover import (
    ExtractedCostEntry, CostExtractionResult, SupplierSuggestion, ReviewCostEntry,
    ExtractionItemResult, ExtractCostsRequest, ExtractBatchResponse,
    RawCostEntryInput, ApproveItemRequest, LedgerItemRequest, ApprovedCostInput,
    ApproveCostsRequest, ReusePreviousApprovalsRequest, LedgerTransitionResponse,
    ManualCostInput, CutoverInput, InitiateCutoverRequest, ContinueCutoverRequest, PreviewCutoverRequest,
    MigrationErrorItem, MigrationWarningItem, MigrationResult,
    LocationPreview, PreviewWarning, CutoverPreview,
    LocationLockStatus, CutoverStatusResponse, BackdatedCheckResponse, ExtractionSessionDetail,
)
from .supplier import (
    SupplierBase, SupplierCreate, SupplierUpdate, SupplierResponse,
    AddInitialRequest, ConfirmInitialsRequest,
)

__all__ = [
    "ExtractedCostEntry", "CostExtractionResult", "SupplierSuggestion", "ReviewCostEntry",
    "ExtractionItemResult", "ExtractCostsRequest", "ExtractBatchResponse",
    "RawCostEntryInput", "ApproveItemRequest", "LedgerItemRequest", "ApprovedCostInput",
    "ApproveCostsRequest", "ReusePreviousApprovalsRequest", "LedgerTransitionResponse",
    "ManualCostInput", "CutoverInput", "InitiateCutoverRequest", "ContinueCutoverRequest", "PreviewCutoverRequest",
    "MigrationErrorItem", "MigrationWarningItem", "MigrationResult",
    "LocationPreview", "PreviewWarning", "CutoverPreview",
    "LocationLockStatus", "CutoverStatusResponse", "BackdatedCheckResponse", "ExtractionSessionDetail",
    "SupplierBase", "SupplierCreate", "SupplierUpdate", "SupplierResponse",
    "AddInitialRequest", "ConfirmInitialsRequest",
]
from .square import SquareInventoryItem, SquareCatalogObject

__all__ += ["SquareInventoryItem", "SquareCatalogObject"]
