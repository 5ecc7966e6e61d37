"""
API routes for StockBridge
"""
from .cutover import router as cutover_router
from .suppliers import router as suppliers_router

__all__ = [
    "cutover_router",
    "suppliers_router",
]
