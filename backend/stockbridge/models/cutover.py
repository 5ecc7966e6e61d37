"""
Cutover models: the migration run, its per-product cost decisions and the
date locks it leaves behind.
"""
from sqlalchemy import (
    Column, String, Boolean, Integer, Text, Numeric, ForeignKey,
    UniqueConstraint, CheckConstraint, JSON, Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP
import uuid
from stockbridge.database import Base


class Cutover(Base):
    """
    One migration of the POS snapshot into opening balances.

    current_batch counts committed batches (0 = nothing written yet).
    batch_state keeps what a later continue call needs: location ids,
    the ledger key for approved costs and any manual costs.
    """
    __tablename__ = "cutovers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    cutover_date = Column(TIMESTAMP(timezone=True), nullable=False)
    cost_basis = Column(String(30), nullable=False)  # SQUARE_COST, DESCRIPTION, MANUAL_INPUT, AVERAGE_COST
    owner_approved = Column(Boolean, default=False, nullable=False)
    owner_approved_at = Column(TIMESTAMP(timezone=True), nullable=True)
    owner_approved_by = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    batch_size = Column(Integer, nullable=True)  # NULL = single batch
    current_batch = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    total_items = Column(Integer, nullable=True)
    batch_state = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)  # Last MigrationResult snapshot
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')",
            name="valid_cutover_status"
        ),
        CheckConstraint(
            "cost_basis IN ('SQUARE_COST', 'DESCRIPTION', 'MANUAL_INPUT', 'AVERAGE_COST')",
            name="valid_cutover_cost_basis"
        ),
    )

    def to_dict(self):
        """Convert to dictionary for API response"""
        return {
            "id": str(self.id),
            "cutover_date": self.cutover_date.isoformat() if self.cutover_date else None,
            "cost_basis": self.cost_basis,
            "owner_approved": self.owner_approved,
            "status": self.status,
            "batch_size": self.batch_size,
            "current_batch": self.current_batch,
            "processed_items": self.processed_items,
            "total_items": self.total_items,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class CostApproval(Base):
    """
    Ledger row: the owner's decision on one product's unit cost.

    Keyed by (cutover_id, product_id). cutover_id is the extraction session id
    during review, so it carries no foreign key. Rows are transitioned,
    never deleted.
    """
    __tablename__ = "cost_approvals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    cutover_id = Column(Uuid, nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    approved_cost = Column(Numeric(12, 4), nullable=False, default=0)
    source = Column(String(30), nullable=False)  # MANUAL_INPUT, MANUAL_OVERRIDE, EXTRACTED_SELECTED, DESCRIPTION, SKIPPED
    migration_status = Column(String(20), nullable=False, default="PENDING")  # PENDING, APPROVED, SKIPPED
    supplier_id = Column(Uuid, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)
    supplier_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    batch_id = Column(Uuid, ForeignKey("extraction_batches.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(TIMESTAMP(timezone=True), nullable=True)
    approved_by = Column(String(255), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("cutover_id", "product_id", name="uq_cost_approval_cutover_product"),
        CheckConstraint("approved_cost >= 0", name="non_negative_approved_cost"),
        CheckConstraint(
            "migration_status IN ('PENDING', 'APPROVED', 'SKIPPED')",
            name="valid_migration_status"
        ),
    )


class CutoverLock(Base):
    """Marks a location as immutable before cutover_date once the cutover completed"""
    __tablename__ = "cutover_locks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    cutover_date = Column(TIMESTAMP(timezone=True), nullable=False)
    is_locked = Column(Boolean, default=True, nullable=False)
    locked_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    locked_by = Column(String(255), nullable=True)

    location = relationship("Location")

    __table_args__ = (
        UniqueConstraint("location_id", "cutover_date", name="uq_cutover_lock_location_date"),
    )
