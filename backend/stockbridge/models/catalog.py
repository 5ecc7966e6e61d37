"""
Location and product models (POS-owned master data)
"""
from sqlalchemy import Column, String, Boolean, Text, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from stockbridge.database import Base


class Location(Base):
    """Store location mirrored from the POS"""
    __tablename__ = "locations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    square_id = Column(String(64), unique=True, nullable=True)  # Square location id (snapshot reference)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())


class Product(Base):
    """
    Product model

    Owned by the catalog sync; the migration engine only refreshes the
    square_* metadata cache fields.
    """
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(500), nullable=False)
    category = Column(String(255), nullable=True)
    display_name = Column(String(500), nullable=True)  # Manual override for UI
    # Square metadata cache
    square_product_name = Column(String(500), nullable=True)
    square_variation_name = Column(String(255), nullable=True)
    square_description = Column(Text, nullable=True)  # Free text; carries supplier/cost lines
    square_image_url = Column(Text, nullable=True)
    square_data_synced_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    mappings = relationship("CatalogMapping", back_populates="product", cascade="all, delete-orphan")


class CatalogMapping(Base):
    """
    Square variation -> internal product.

    location_id NULL is a global mapping; a location-specific row wins over it.
    """
    __tablename__ = "catalog_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    square_variation_id = Column(String(64), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    product = relationship("Product", back_populates="mappings")

    __table_args__ = (
        UniqueConstraint("square_variation_id", "location_id", name="uq_catalog_mapping_variation_location"),
    )
