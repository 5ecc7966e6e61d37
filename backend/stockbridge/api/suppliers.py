"""
Supplier directory API routes
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from stockbridge.dependencies import get_db
from stockbridge.schemas import (
    AddInitialRequest, SupplierCreate, SupplierResponse, SupplierSuggestion, SupplierUpdate,
)
from stockbridge.services import SupplierService

router = APIRouter()


@router.get("", response_model=List[SupplierResponse])
def list_suppliers(
    search: Optional[str] = Query(None, description="Name contains"),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
):
    """List suppliers ordered by name"""
    return SupplierService.list_suppliers(db, search=search, include_inactive=include_inactive)


@router.get("/suggest", response_model=List[SupplierSuggestion])
def suggest_suppliers(
    q: str = Query("", description="Name or initial as typed"),
    limit: int = Query(10, ge=1, le=50, description="Maximum results"),
    db: Session = Depends(get_db),
):
    """
    Ranked supplier suggestions for the review screen.
    Initial matches rank with exact name matches.
    """
    return SupplierService.suggest_suppliers(db, q, limit=limit)


@router.post("", response_model=SupplierResponse, status_code=status.HTTP_201_CREATED)
def create_supplier(supplier: SupplierCreate, db: Session = Depends(get_db)):
    """Create a new supplier"""
    try:
        db_supplier = SupplierService.create_supplier(
            db, supplier.name, initials=supplier.initials, contact_info=supplier.contact_info
        )
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(db_supplier)
    return db_supplier


@router.get("/{supplier_id}", response_model=SupplierResponse)
def get_supplier(supplier_id: UUID, db: Session = Depends(get_db)):
    """Get supplier by ID"""
    supplier = SupplierService.get_supplier(db, supplier_id)
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")
    return supplier


@router.post("/{supplier_id}/update", response_model=SupplierResponse)
def update_supplier(supplier_id: UUID, update: SupplierUpdate, db: Session = Depends(get_db)):
    try:
        supplier = SupplierService.update_supplier(
            db,
            supplier_id,
            name=update.name,
            initials=update.initials,
            contact_info=update.contact_info,
            is_active=update.is_active,
        )
    except LookupError:
        db.rollback()
        raise HTTPException(status_code=404, detail="Supplier not found")
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(supplier)
    return supplier


@router.post("/{supplier_id}/delete", response_model=SupplierResponse)
def delete_supplier(supplier_id: UUID, db: Session = Depends(get_db)):
    """Soft delete; cost history keeps referencing the supplier"""
    try:
        supplier = SupplierService.deactivate_supplier(db, supplier_id)
    except LookupError:
        db.rollback()
        raise HTTPException(status_code=404, detail="Supplier not found")
    db.commit()
    db.refresh(supplier)
    return supplier


@router.post("/add-initial", response_model=SupplierResponse)
def add_initial(request: AddInitialRequest, db: Session = Depends(get_db)):
    """Attach a description token (e.g. 'L') to a supplier by name"""
    supplier = SupplierService.find_supplier_by_name(db, request.supplier_name)
    if not supplier:
        raise HTTPException(status_code=404, detail=f"Supplier '{request.supplier_name}' not found")
    try:
        SupplierService.add_initial_to_supplier(db, supplier, request.initial)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(supplier)
    return supplier
