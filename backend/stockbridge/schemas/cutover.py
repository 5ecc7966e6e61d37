"""
Cutover / cost-extraction schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from uuid import UUID
from decimal import Decimal


# --- Extraction ---------------------------------------------------------------

class ExtractedCostEntry(BaseModel):
    """One (supplier, amount, month) candidate parsed from a description line"""
    supplier: str = Field(..., description="Raw supplier token as written, 'Unknown' when absent")
    amount: Decimal
    month: Optional[int] = Field(None, ge=1, le=12)
    month_name: Optional[str] = None
    day: Optional[int] = None
    year: Optional[int] = Field(None, description="Only when the line carried a full date")
    line_number: int
    original_line: str
    confidence: str = Field("HIGH", description="HIGH, MEDIUM, LOW")


class CostExtractionResult(BaseModel):
    """Output of the description parser; the last entry is selected by default"""
    entries: List[ExtractedCostEntry] = Field(default_factory=list)
    extraction_errors: List[str] = Field(default_factory=list)
    requires_manual_review: bool = False
    selected_cost: Optional[Decimal] = None


class SupplierSuggestion(BaseModel):
    id: UUID
    name: str
    score: float


class ReviewCostEntry(ExtractedCostEntry):
    """Extracted entry enriched with supplier resolution for the review UI"""
    supplier_id: Optional[UUID] = None
    resolved_supplier_name: Optional[str] = None
    suggested_suppliers: List[SupplierSuggestion] = Field(default_factory=list)
    effective_date: Optional[datetime] = None
    is_selected: bool = False


class ExtractionItemResult(BaseModel):
    """One reviewable product in an extraction batch"""
    product_id: UUID
    product_name: str
    location_id: UUID
    square_variation_id: str
    quantity: int
    image_url: Optional[str] = None
    original_description: Optional[str] = None
    entries: List[ReviewCostEntry] = Field(default_factory=list)
    extraction_errors: List[str] = Field(default_factory=list)
    selected_cost: Optional[Decimal] = None
    requires_manual_review: bool = False
    is_already_approved: bool = False
    migration_status: str = "PENDING"
    existing_approved_cost: Optional[Decimal] = None
    existing_supplier_name: Optional[str] = None
    existing_approval_date: Optional[datetime] = None


class ExtractCostsRequest(BaseModel):
    location_ids: List[UUID] = Field(..., min_length=1)
    cost_basis: str = Field("DESCRIPTION", description="Only DESCRIPTION is extractable")
    batch_size: Optional[int] = Field(None, gt=0)
    extraction_session_id: Optional[UUID] = None
    new_batch_size: Optional[int] = Field(None, gt=0)
    cutover_date: Optional[datetime] = Field(None, description="Resolves the year of month-only entries; default now")


class ExtractBatchResponse(BaseModel):
    session_id: UUID
    cutover_id: UUID = Field(..., description="Ledger key for approvals (same as session_id)")
    batch_id: Optional[UUID] = None
    location_ids: List[UUID]
    cost_basis: str
    items: List[ExtractionItemResult] = Field(default_factory=list)
    total_products: int = 0
    products_with_extraction: int = 0
    products_requiring_manual_input: int = 0
    batch_size: int
    current_batch: int
    total_batches: Optional[int] = None
    processed_items: int
    total_items: int
    is_complete: bool
    can_continue: bool
    warnings: List[str] = Field(default_factory=list)


# --- Cost approval ledger -----------------------------------------------------

class RawCostEntryInput(BaseModel):
    """A reviewed extraction entry folded into supplier cost history"""
    supplier_name: str
    supplier_id: Optional[UUID] = None
    original_token: Optional[str] = Field(None, description="Token as written in the description, e.g. 'L'")
    cost: Decimal
    effective_at: Optional[datetime] = None
    is_selected: bool = False


class ApproveItemRequest(BaseModel):
    cutover_id: UUID
    product_id: UUID
    cost: Decimal
    source: str = Field("EXTRACTED_SELECTED", description="MANUAL_INPUT, MANUAL_OVERRIDE, EXTRACTED_SELECTED, DESCRIPTION")
    supplier_id: Optional[UUID] = None
    supplier_name: Optional[str] = None
    entries: List[RawCostEntryInput] = Field(default_factory=list)
    notes: Optional[str] = None
    batch_id: Optional[UUID] = None
    approved_by: Optional[str] = None
    confirm_initials: bool = Field(False, description="Save initials learned from this approval right away")


class LedgerItemRequest(BaseModel):
    cutover_id: UUID
    product_id: UUID


class ApprovedCostInput(BaseModel):
    product_id: UUID
    cost: Decimal
    source: str = "EXTRACTED_SELECTED"
    supplier_id: Optional[UUID] = None
    supplier_name: Optional[str] = None
    notes: Optional[str] = None


class ApproveCostsRequest(BaseModel):
    cutover_id: UUID
    approved_costs: List[ApprovedCostInput] = Field(default_factory=list)
    rejected_products: List[UUID] = Field(default_factory=list)
    approved_by: Optional[str] = None


class ReusePreviousApprovalsRequest(BaseModel):
    cutover_id: UUID = Field(..., description="Target session / ledger key")
    source_cutover_id: Optional[UUID] = Field(None, description="Copy from this ledger only; default: latest approval per product")
    product_ids: Optional[List[UUID]] = None


class LedgerTransitionResponse(BaseModel):
    cutover_id: UUID
    product_id: UUID
    migration_status: str
    approved_cost: Decimal
    processed_items: Optional[int] = None
    changed: bool


# --- Migration executor -------------------------------------------------------

class ManualCostInput(BaseModel):
    product_id: UUID
    cost: Decimal


class CutoverInput(BaseModel):
    """Everything a migration batch needs; rebuilt from the stored cutover on continue"""
    cutover_date: datetime
    location_ids: List[UUID] = Field(default_factory=list)
    cost_basis: str
    owner_approved: bool = False
    owner_approved_at: Optional[datetime] = None
    owner_approved_by: Optional[str] = None
    approval_id: Optional[UUID] = None
    manual_costs: Dict[UUID, Decimal] = Field(default_factory=dict)


class InitiateCutoverRequest(BaseModel):
    cutover_date: datetime
    location_ids: List[UUID] = Field(default_factory=list)
    cost_basis: str
    owner_approved: bool = False
    owner_approved_by: Optional[str] = None
    approval_id: Optional[UUID] = Field(None, description="Extraction session whose ledger supplies approved costs")
    manual_costs: Optional[List[ManualCostInput]] = None
    batch_size: Optional[int] = Field(None, gt=0)
    cutover_id: Optional[UUID] = None


class ContinueCutoverRequest(BaseModel):
    cutover_id: UUID


class PreviewCutoverRequest(BaseModel):
    cutover_date: datetime
    location_ids: List[UUID] = Field(default_factory=list)
    cost_basis: str
    approval_id: Optional[UUID] = None
    manual_costs: Optional[List[ManualCostInput]] = None


class MigrationErrorItem(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    location_id: Optional[str] = None
    error_type: str
    message: str
    can_proceed: bool = False


class MigrationWarningItem(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    location_id: Optional[str] = None
    message: str


class MigrationResult(BaseModel):
    cutover_id: UUID
    cutover_date: datetime
    status: str
    locations_processed: int = 0
    products_processed: int = 0
    opening_balances_created: int = 0
    opening_balances_existing: int = 0
    errors: List[MigrationErrorItem] = Field(default_factory=list)
    warnings: List[MigrationWarningItem] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    batch_size: int
    current_batch: int
    total_batches: int
    processed_items: int
    total_items: int
    is_complete: bool = False
    can_continue: bool = False


class LocationPreview(BaseModel):
    location_id: UUID
    location_name: str
    product_count: int
    products_with_cost: int
    products_missing_cost: int
    total_quantity: int
    estimated_value: Decimal


class PreviewWarning(BaseModel):
    product_id: Optional[str] = None
    location_id: Optional[str] = None
    message: str
    recommendation: Optional[str] = None


class CutoverPreview(BaseModel):
    locations: List[LocationPreview] = Field(default_factory=list)
    total_products: int = 0
    products_with_cost: int = 0
    products_missing_cost: int = 0
    estimated_opening_balances: int = 0
    validation_errors: List[str] = Field(default_factory=list)
    warnings: List[PreviewWarning] = Field(default_factory=list)


class LocationLockStatus(BaseModel):
    location_id: UUID
    location_name: str
    is_locked: bool
    cutover_date: Optional[datetime] = None


class CutoverStatusResponse(BaseModel):
    is_locked: bool
    cutover_date: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    locations: List[LocationLockStatus] = Field(default_factory=list)


class BackdatedCheckResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    cutover_date: Optional[datetime] = None


class ExtractionSessionDetail(BaseModel):
    """Session with ledger rows grouped by migration status"""
    session: Dict
    approved: List[Dict] = Field(default_factory=list)
    skipped: List[Dict] = Field(default_factory=list)
    pending: List[Dict] = Field(default_factory=list)
    batches: List[Dict] = Field(default_factory=list)
