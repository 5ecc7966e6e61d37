"""
Extraction session models for the paginated cost-review phase
"""
from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint, CheckConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from stockbridge.database import Base


class ExtractionSession(Base):
    """
    Resumable cost-review run over the POS snapshot of a set of locations.

    processed_items is a projection of the cost_approvals ledger (APPROVED or
    SKIPPED rows for this session id) and is recomputed on every batch call.
    """
    __tablename__ = "extraction_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    location_ids = Column(JSON, nullable=False, default=list)
    cost_basis = Column(String(30), nullable=False, default="DESCRIPTION")
    batch_size = Column(Integer, nullable=False)
    current_batch = Column(Integer, nullable=False, default=1)  # 1-based
    total_batches = Column(Integer, nullable=True)
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="IN_PROGRESS")
    learned_supplier_initials = Column(JSON, nullable=True)  # {supplier name: [initials]}
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    batches = relationship(
        "ExtractionBatch",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ExtractionBatch.batch_number",
    )

    __table_args__ = (
        CheckConstraint("status IN ('IN_PROGRESS', 'COMPLETED')", name="valid_extraction_status"),
    )

    def to_dict(self):
        """Convert to dictionary for API response"""
        progress_pct = (self.processed_items / self.total_items * 100) if self.total_items else 0
        return {
            "id": str(self.id),
            "location_ids": self.location_ids,
            "batch_size": self.batch_size,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "progress_percent": round(progress_pct, 1),
            "status": self.status,
            "learned_supplier_initials": self.learned_supplier_initials or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ExtractionBatch(Base):
    """Immutable snapshot of one extracted batch (product ids and counts)"""
    __tablename__ = "extraction_batches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("extraction_sessions.id", ondelete="CASCADE"), nullable=False)
    batch_number = Column(Integer, nullable=False)
    location_ids = Column(JSON, nullable=False, default=list)
    product_ids = Column(JSON, nullable=False, default=list)
    total_products = Column(Integer, nullable=False, default=0)
    products_with_extraction = Column(Integer, nullable=False, default=0)
    products_requiring_manual_input = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="EXTRACTED")
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    session = relationship("ExtractionSession", back_populates="batches")

    __table_args__ = (
        UniqueConstraint("session_id", "batch_number", name="uq_extraction_batch_number"),
    )
