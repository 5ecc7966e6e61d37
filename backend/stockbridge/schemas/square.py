"""
Square snapshot / catalog schemas
"""
from pydantic import BaseModel
from typing import Optional
from decimal import Decimal


class SquareInventoryItem(BaseModel):
    """One IN_STOCK count from the Square inventory snapshot"""
    catalog_object_id: str  # Square ITEM_VARIATION id
    location_id: str  # Square location id
    quantity: int


class SquareCatalogObject(BaseModel):
    """Catalog metadata for one variation (name/description come from the parent ITEM)"""
    variation_id: str
    item_id: Optional[str] = None
    product_name: Optional[str] = None
    variation_name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    default_unit_cost: Optional[Decimal] = None  # major currency units
