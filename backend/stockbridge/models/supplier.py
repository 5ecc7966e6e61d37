"""
Supplier directory models
"""
from sqlalchemy import Column, String, Boolean, Text, Numeric, ForeignKey, UniqueConstraint, CheckConstraint, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from stockbridge.database import Base


class Supplier(Base):
    """Supplier model"""
    __tablename__ = "suppliers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    normalized_name = Column(String(255), nullable=False, unique=True)  # accent-free, lowercase, no punctuation
    initials = Column(JSON, nullable=False, default=list)  # short tokens used in descriptions, e.g. ["L", "RX"]
    contact_info = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    products = relationship("SupplierProduct", back_populates="supplier", cascade="all, delete-orphan")


class SupplierProduct(Base):
    """Current cost and preference for a (supplier, product) pair"""
    __tablename__ = "supplier_products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    cost = Column(Numeric(12, 4), nullable=False)
    is_preferred = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    supplier = relationship("Supplier", back_populates="products")

    __table_args__ = (
        UniqueConstraint("supplier_id", "product_id", name="uq_supplier_product"),
    )


class SupplierCostHistory(Base):
    """
    Append-only cost history per (product, supplier).

    Exactly one row per pair carries is_current = true.
    """
    __tablename__ = "supplier_cost_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    unit_cost = Column(Numeric(12, 4), nullable=False)
    effective_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    source = Column(String(30), nullable=False, default="MIGRATION")  # MIGRATION, INVENTORY_UPDATE, MANUAL
    is_current = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "source IN ('MIGRATION', 'INVENTORY_UPDATE', 'MANUAL')",
            name="valid_cost_history_source"
        ),
        Index("ix_supplier_cost_history_pair", "product_id", "supplier_id", "is_current"),
    )
