"""
Inventory cutover API routes

Cost extraction and review, the approval ledger, the batched migration
executor and the cutover date locks.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockbridge.dependencies import get_db, get_square_service
from stockbridge.schemas import (
    ApproveCostsRequest, ApproveItemRequest, BackdatedCheckResponse, ConfirmInitialsRequest,
    ContinueCutoverRequest, CutoverInput, CutoverPreview, CutoverStatusResponse, ExtractBatchResponse,
    ExtractCostsRequest, ExtractionSessionDetail, InitiateCutoverRequest, LedgerItemRequest,
    LedgerTransitionResponse, MigrationResult, PreviewCutoverRequest, ReusePreviousApprovalsRequest,
)
from stockbridge.services import (
    CostApprovalService, CutoverLockService, CutoverService, ExtractionSessionService,
)
from stockbridge.services.migration_errors import CutoverValidationError, ExtractionError, SquareApiError

router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    """Map service exceptions to the HTTP error the client sees"""
    if isinstance(e, ExtractionError):
        code = 404 if e.code == "SESSION_NOT_FOUND" else 400
        return HTTPException(status_code=code, detail=e.to_dict())
    if isinstance(e, CutoverValidationError):
        return HTTPException(status_code=400, detail={"message": e.message, "errors": e.errors})
    if isinstance(e, SquareApiError):
        return HTTPException(status_code=502, detail={
            "message": e.message,
            "location_id": e.location_id,
            "status_code": e.status_code,
        })
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _cutover_input(request, owner_approved: bool = False, owner_approved_by: Optional[str] = None) -> CutoverInput:
    return CutoverInput(
        cutover_date=request.cutover_date,
        location_ids=request.location_ids,
        cost_basis=request.cost_basis,
        owner_approved=owner_approved,
        owner_approved_by=owner_approved_by,
        approval_id=request.approval_id,
        manual_costs={mc.product_id: mc.cost for mc in (request.manual_costs or [])},
    )


# --- Extraction ---------------------------------------------------------------

@router.post("/extract-costs", response_model=ExtractBatchResponse)
def extract_costs(
    request: ExtractCostsRequest,
    db: Session = Depends(get_db),
    square=Depends(get_square_service),
):
    """
    Extract costs for the next reviewable batch of the POS snapshot.

    Omit extraction_session_id to start a session; pass it back to continue.
    """
    try:
        return ExtractionSessionService.extract_batch(
            db,
            square,
            request.location_ids,
            cost_basis=request.cost_basis,
            batch_size=request.batch_size,
            session_id=request.extraction_session_id,
            new_batch_size=request.new_batch_size,
            cutover_date=request.cutover_date,
        )
    except (ExtractionError, LookupError, ValueError) as e:
        raise _http_error(e)


@router.get("/extraction-sessions/{session_id}", response_model=ExtractionSessionDetail)
def get_extraction_session(session_id: UUID, db: Session = Depends(get_db)):
    """Session progress with ledger rows grouped by status"""
    try:
        return ExtractionSessionService.get_session_detail(db, session_id)
    except (ExtractionError, LookupError) as e:
        raise _http_error(e)


# --- Approval ledger ----------------------------------------------------------

@router.post("/approve-item", response_model=LedgerTransitionResponse)
def approve_item(request: ApproveItemRequest, db: Session = Depends(get_db)):
    """Approve one product's cost and record its supplier history"""
    try:
        return CostApprovalService.approve(
            db,
            request.cutover_id,
            request.product_id,
            request.cost,
            source=request.source,
            supplier_id=request.supplier_id,
            supplier_name=request.supplier_name,
            entries=request.entries,
            notes=request.notes,
            batch_id=request.batch_id,
            approved_by=request.approved_by,
            confirm_initials=request.confirm_initials,
        )
    except (LookupError, ValueError) as e:
        raise _http_error(e)


@router.post("/discard-item", response_model=LedgerTransitionResponse)
def discard_item(request: LedgerItemRequest, db: Session = Depends(get_db)):
    try:
        return CostApprovalService.discard(db, request.cutover_id, request.product_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)


@router.post("/restore-item", response_model=LedgerTransitionResponse)
def restore_item(request: LedgerItemRequest, db: Session = Depends(get_db)):
    try:
        return CostApprovalService.restore(db, request.cutover_id, request.product_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e)


@router.post("/approve-costs")
def approve_costs(request: ApproveCostsRequest, db: Session = Depends(get_db)):
    """Bulk approve and discard in one transaction"""
    try:
        return CostApprovalService.approve_costs(
            db,
            request.cutover_id,
            request.approved_costs,
            rejected_products=request.rejected_products,
            approved_by=request.approved_by,
        )
    except (LookupError, ValueError) as e:
        raise _http_error(e)


@router.post("/reuse-previous-approvals")
def reuse_previous_approvals(request: ReusePreviousApprovalsRequest, db: Session = Depends(get_db)):
    try:
        return CostApprovalService.reuse_previous_approvals(
            db,
            request.cutover_id,
            source_cutover_id=request.source_cutover_id,
            product_ids=request.product_ids,
        )
    except (LookupError, ValueError) as e:
        raise _http_error(e)


@router.post("/confirm-initials")
def confirm_initials(request: ConfirmInitialsRequest, db: Session = Depends(get_db)):
    """Save supplier initials learned during review"""
    mappings = None
    if request.mappings is not None:
        mappings = [(m.supplier_name, m.initial) for m in request.mappings]
    try:
        saved = CostApprovalService.confirm_initials(db, request.session_id, mappings)
    except LookupError as e:
        raise _http_error(e)
    return {
        "session_id": str(request.session_id),
        "confirmed": [{"supplier_name": name, "initial": initial} for name, initial in saved],
    }


# --- Migration ----------------------------------------------------------------

@router.post("", response_model=MigrationResult)
def initiate_cutover(
    request: InitiateCutoverRequest,
    db: Session = Depends(get_db),
    square=Depends(get_square_service),
):
    """
    Start (or resume, when cutover_id is given) a cutover and migrate its
    next batch. Call /continue until is_complete.
    """
    cutover_input = _cutover_input(request, request.owner_approved, request.owner_approved_by)
    try:
        return CutoverService.execute_migration(
            db,
            square,
            cutover_input,
            batch_size=request.batch_size,
            cutover_id=request.cutover_id,
        )
    except (SquareApiError, LookupError, ValueError) as e:
        raise _http_error(e)
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=500,
            detail=f"Migration batch failed and was rolled back; retry to resume. {e}",
        )


@router.post("/continue", response_model=MigrationResult)
def continue_cutover(
    request: ContinueCutoverRequest,
    db: Session = Depends(get_db),
    square=Depends(get_square_service),
):
    try:
        return CutoverService.continue_migration(db, square, request.cutover_id)
    except (SquareApiError, LookupError, ValueError) as e:
        raise _http_error(e)
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=500,
            detail=f"Migration batch failed and was rolled back; retry to resume. {e}",
        )


@router.post("/preview", response_model=CutoverPreview)
def preview_cutover(
    request: PreviewCutoverRequest,
    db: Session = Depends(get_db),
    square=Depends(get_square_service),
):
    """Dry run: per-location counts and warnings, nothing written"""
    try:
        return CutoverService.preview_cutover(db, square, _cutover_input(request))
    except (SquareApiError, LookupError, ValueError) as e:
        raise _http_error(e)


# --- Locks --------------------------------------------------------------------

@router.get("/status", response_model=CutoverStatusResponse)
def get_cutover_status(
    location_id: Optional[UUID] = Query(None, description="Limit to one location"),
    db: Session = Depends(get_db),
):
    return CutoverLockService.get_cutover_status(db, location_id)


@router.get("/backdated-check", response_model=BackdatedCheckResponse)
def check_backdated_operation(
    location_id: UUID = Query(...),
    operation_date: datetime = Query(..., description="Date of the stock operation being recorded"),
    db: Session = Depends(get_db),
):
    """Whether an operation dated operation_date may still be recorded at the location"""
    return CutoverLockService.validate_no_backdated_operation(db, operation_date, location_id)
