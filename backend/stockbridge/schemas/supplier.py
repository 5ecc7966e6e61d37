"""
Supplier directory schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID


class SupplierBase(BaseModel):
    """Supplier base schema"""
    name: str = Field(..., min_length=1, description="Supplier name")
    initials: List[str] = Field(default_factory=list, description="Short tokens used in product descriptions")
    contact_info: Optional[str] = None


class SupplierCreate(SupplierBase):
    """Create supplier request"""
    pass


class SupplierUpdate(BaseModel):
    """Partial supplier update"""
    name: Optional[str] = None
    initials: Optional[List[str]] = None
    contact_info: Optional[str] = None
    is_active: Optional[bool] = None


class SupplierResponse(SupplierBase):
    """Supplier response"""
    id: UUID
    normalized_name: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AddInitialRequest(BaseModel):
    supplier_name: str = Field(..., min_length=1)
    initial: str = Field(..., min_length=1)


class ConfirmInitialsRequest(BaseModel):
    """Batched confirmation of learned initials for one extraction session"""
    session_id: UUID
    mappings: Optional[List[AddInitialRequest]] = Field(
        None, description="Subset to confirm; default confirms every staged mapping"
    )
