"""
Inventory rows written by the cutover
"""
from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, Index, Uuid
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from stockbridge.database import Base


class Inventory(Base):
    """
    Inventory layer per product and location.

    The cutover writes one row per (product, location) with
    source = OPENING_BALANCE; existence is checked before insert.
    """
    __tablename__ = "inventory"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)  # Never negative
    unit_cost = Column(Numeric(12, 4), nullable=False)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False)
    source = Column(String(30), nullable=False)  # OPENING_BALANCE, PURCHASE, ADJUSTMENT
    cost_source = Column(String(30), nullable=True)  # Cost basis used (DESCRIPTION, SQUARE_COST, ...)
    migration_id = Column(Uuid, ForeignKey("cutovers.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_inventory_product_location_source", "product_id", "location_id", "source"),
    )
