"""
Database models for StockBridge
"""
from stockbridge.database import Base

# Import all models
from .catalog import Location, Product, CatalogMapping
from .supplier import Supplier, SupplierProduct, SupplierCostHistory
from .extraction import ExtractionSession, ExtractionBatch
from .cutover import Cutover, CostApproval, CutoverLock
from .inventory import Inventory

__all__ = [
    "Base",
    "Location",
    "Product",
    "CatalogMapping",
    "Supplier",
    "SupplierProduct",
    "SupplierCostHistory",
    "ExtractionSession",
    "ExtractionBatch",
    "Cutover",
    "CostApproval",
    "CutoverLock",
    "Inventory",
]
