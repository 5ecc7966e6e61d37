"""
Cost Approval Service - the per-(cutover, product) decision ledger.

Rows move between PENDING, APPROVED and SKIPPED and are never deleted. The
owning extraction session's processed_items is adjusted in the same
transaction as the row-locked read, so it stays equal to the number of
APPROVED + SKIPPED rows.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockbridge.models import CostApproval, ExtractionSession, Product
from stockbridge.schemas.cutover import ApprovedCostInput, LedgerTransitionResponse, RawCostEntryInput
from stockbridge.services.migration_errors import InvalidCostError, MissingSupplierError
from stockbridge.services.supplier_resolver import SupplierResolver
from stockbridge.services.supplier_service import SupplierService

logger = logging.getLogger(__name__)

APPROVAL_SOURCES = ("MANUAL_INPUT", "MANUAL_OVERRIDE", "EXTRACTED_SELECTED", "DESCRIPTION")
ZERO_COST_SOURCES = ("MANUAL_OVERRIDE",)
DECIDED_STATUSES = ("APPROVED", "SKIPPED")


class CostApprovalService:

    @staticmethod
    def validate_approval(
        product_id: UUID,
        cost: Decimal,
        source: str,
        supplier_id: Optional[UUID],
        supplier_name: Optional[str],
        entries: List[RawCostEntryInput],
    ) -> Decimal:
        """Return the cost as Decimal or raise InvalidCostError / MissingSupplierError / ValueError"""
        if source not in APPROVAL_SOURCES:
            raise ValueError(f"Invalid approval source: {source}. Must be one of {', '.join(APPROVAL_SOURCES)}")
        cost = Decimal(str(cost))
        if cost < 0:
            raise InvalidCostError(cost)
        if cost == 0 and source not in ZERO_COST_SOURCES:
            raise InvalidCostError(cost)
        if not entries and not supplier_id and not (supplier_name and supplier_name.strip()):
            raise MissingSupplierError(product_id)
        return cost

    @staticmethod
    def _lock_session(db: Session, cutover_id: UUID) -> Optional[ExtractionSession]:
        return db.query(ExtractionSession).filter(ExtractionSession.id == cutover_id).with_for_update().first()

    @staticmethod
    def _lock_row(db: Session, cutover_id: UUID, product_id: UUID) -> Optional[CostApproval]:
        return db.query(CostApproval).filter(
            CostApproval.cutover_id == cutover_id,
            CostApproval.product_id == product_id,
        ).with_for_update().first()

    @staticmethod
    def _adjust_processed(session: Optional[ExtractionSession], delta: int) -> None:
        if session is None or delta == 0:
            return
        session.processed_items = max(0, (session.processed_items or 0) + delta)

    @staticmethod
    def _commit(db: Session, cutover_id: UUID) -> None:
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Ledger write for {cutover_id} collided with a concurrent update: {e}")
            raise ValueError(f"Ledger for {cutover_id} was modified concurrently; retry the request") from e

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def approve(
        db: Session,
        cutover_id: UUID,
        product_id: UUID,
        cost: Decimal,
        source: str = "EXTRACTED_SELECTED",
        supplier_id: Optional[UUID] = None,
        supplier_name: Optional[str] = None,
        entries: Optional[List[RawCostEntryInput]] = None,
        notes: Optional[str] = None,
        batch_id: Optional[UUID] = None,
        approved_by: Optional[str] = None,
        confirm_initials: bool = False,
    ) -> LedgerTransitionResponse:
        """
        Approve one product's unit cost and fold the reviewed entries into the
        supplier directory.

        Raises:
            InvalidCostError: cost < 0, or cost == 0 without MANUAL_OVERRIDE
            MissingSupplierError: no supplier and no extracted entries
            LookupError: unknown product or supplier id
        """
        entries = entries or []
        cost = CostApprovalService.validate_approval(product_id, cost, source, supplier_id, supplier_name, entries)
        if db.query(Product.id).filter(Product.id == product_id).first() is None:
            raise LookupError(f"Product {product_id} not found")

        try:
            session = CostApprovalService._lock_session(db, cutover_id)
            row, changed = CostApprovalService._approve_locked(
                db, session, cutover_id, product_id, cost, source, supplier_id, supplier_name,
                entries, notes, batch_id, approved_by, confirm_initials,
            )
        except (LookupError, ValueError):
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Ledger write for {cutover_id} rejected by the database: {e}")
            raise ValueError(f"Ledger for {cutover_id} could not be updated; retry the request") from e
        CostApprovalService._commit(db, cutover_id)

        logger.info(f"Approved cost {cost} for product {product_id} in {cutover_id} (source {source})")
        return LedgerTransitionResponse(
            cutover_id=cutover_id,
            product_id=product_id,
            migration_status=row.migration_status,
            approved_cost=row.approved_cost,
            processed_items=session.processed_items if session else None,
            changed=changed,
        )

    @staticmethod
    def _approve_locked(
        db: Session,
        session: Optional[ExtractionSession],
        cutover_id: UUID,
        product_id: UUID,
        cost: Decimal,
        source: str,
        supplier_id: Optional[UUID],
        supplier_name: Optional[str],
        entries: List[RawCostEntryInput],
        notes: Optional[str],
        batch_id: Optional[UUID],
        approved_by: Optional[str],
        confirm_initials: bool = False,
    ) -> Tuple[CostApproval, bool]:
        """Upsert inside the caller's transaction; returns (row, status changed)"""
        row = CostApprovalService._lock_row(db, cutover_id, product_id)
        previous = row.migration_status if row is not None else None

        # Resolve the supplier first: find_or_create flushes the session
        chosen = None
        if supplier_id:
            chosen = SupplierService.get_supplier(db, supplier_id)
            if chosen is None:
                raise LookupError(f"Supplier {supplier_id} not found")
        elif supplier_name and supplier_name.strip():
            chosen = SupplierService.find_or_create_supplier(db, supplier_name)

        if row is None:
            row = CostApproval(
                cutover_id=cutover_id,
                product_id=product_id,
                approved_cost=cost,
                source=source,
                migration_status="APPROVED",
            )
            db.add(row)
        row.approved_cost = cost
        row.source = source
        row.migration_status = "APPROVED"
        row.supplier_id = chosen.id if chosen else None
        row.supplier_name = chosen.name if chosen else None
        row.notes = notes
        row.batch_id = batch_id
        row.approved_at = datetime.now(timezone.utc)
        row.approved_by = approved_by
        db.flush()

        if previous in (None, "PENDING"):
            CostApprovalService._adjust_processed(session, +1)

        CostApprovalService._fold_into_directory(db, session, product_id, cost, chosen, entries, confirm_initials)
        return row, previous != "APPROVED"

    @staticmethod
    def _fold_into_directory(
        db: Session,
        session: Optional[ExtractionSession],
        product_id: UUID,
        cost: Decimal,
        chosen,
        entries: List[RawCostEntryInput],
        confirm_initials: bool,
    ) -> None:
        """Cost history, supplier links and learned initials for one approval"""
        resolver = SupplierResolver(db, session.learned_supplier_initials if session else None)
        by_supplier: Dict[UUID, List[RawCostEntryInput]] = {}
        entry_suppliers = []
        for entry in entries:
            supplier = CostApprovalService._entry_supplier(db, resolver, entry)
            entry_suppliers.append(supplier)
            if supplier is None:
                logger.debug(f"Product {product_id}: entry without a usable supplier skipped from history")
                continue
            by_supplier.setdefault(supplier.id, []).append(entry)

        for sid, supplier_entries in by_supplier.items():
            SupplierService.replace_current_cost_history(
                db, product_id, sid,
                [(e.cost, e.effective_at, e.is_selected) for e in supplier_entries],
                source="MIGRATION",
            )
            selected = next((e for e in supplier_entries if e.is_selected), supplier_entries[-1])
            SupplierService.upsert_supplier_product(db, product_id, sid, selected.cost)

        if chosen is not None:
            if chosen.id not in by_supplier and cost > 0:
                SupplierService.create_supplier_cost_history(db, product_id, chosen.id, cost, source="MIGRATION")
            SupplierService.set_preferred_supplier(db, product_id, chosen.id, cost)

        staged = []
        for entry, supplier in zip(entries, entry_suppliers):
            name = supplier.name if supplier else entry.supplier_name
            pair = resolver.learn_from_approval(entry.original_token, name)
            if pair:
                staged.append(pair)
        if staged and confirm_initials:
            resolver.confirm_pending(only=staged)
        if session is not None and (staged or confirm_initials):
            session.learned_supplier_initials = dict(resolver.pending_initials)

    @staticmethod
    def _entry_supplier(db: Session, resolver: SupplierResolver, entry: RawCostEntryInput):
        """
        Directory supplier for one reviewed entry.

        An explicit supplier_id wins. Otherwise the name, then the original
        token, go through the resolver; only confirmed matches are used, so a
        fuzzy suggestion never receives history. Unmatched names are created.
        """
        if entry.supplier_id:
            supplier = SupplierService.get_supplier(db, entry.supplier_id)
            if supplier is None:
                raise LookupError(f"Supplier {entry.supplier_id} not found")
            return supplier
        if not SupplierResolver.is_resolvable(entry.supplier_name):
            return None

        for token in (entry.supplier_name, entry.original_token):
            resolved = resolver.resolve(token)
            if resolved is None or not resolved.is_confirmed:
                continue
            if resolved.id is not None:
                supplier = SupplierService.get_supplier(db, resolved.id)
                if supplier is not None:
                    return supplier
            return SupplierService.find_or_create_supplier(db, resolved.name)
        return SupplierService.find_or_create_supplier(db, entry.supplier_name)

    @staticmethod
    def discard(
        db: Session,
        cutover_id: UUID,
        product_id: UUID,
        approved_by: Optional[str] = None,
    ) -> LedgerTransitionResponse:
        """Mark a product SKIPPED; it will not be migrated"""
        session = CostApprovalService._lock_session(db, cutover_id)
        try:
            row, changed = CostApprovalService._discard_locked(db, session, cutover_id, product_id, approved_by)
        except LookupError:
            db.rollback()
            raise
        CostApprovalService._commit(db, cutover_id)
        if changed:
            logger.info(f"Skipped product {product_id} in {cutover_id}")
        return LedgerTransitionResponse(
            cutover_id=cutover_id,
            product_id=product_id,
            migration_status=row.migration_status,
            approved_cost=row.approved_cost,
            processed_items=session.processed_items if session else None,
            changed=changed,
        )

    @staticmethod
    def _discard_locked(
        db: Session,
        session: Optional[ExtractionSession],
        cutover_id: UUID,
        product_id: UUID,
        approved_by: Optional[str],
    ) -> Tuple[CostApproval, bool]:
        row = CostApprovalService._lock_row(db, cutover_id, product_id)
        if row is not None and row.migration_status == "SKIPPED":
            return row, False
        previous = row.migration_status if row is not None else None
        if row is None:
            if db.query(Product.id).filter(Product.id == product_id).first() is None:
                raise LookupError(f"Product {product_id} not found")
            row = CostApproval(
                cutover_id=cutover_id,
                product_id=product_id,
                approved_cost=Decimal("0"),
                source="SKIPPED",
                migration_status="SKIPPED",
            )
            db.add(row)
        row.source = "SKIPPED"
        row.migration_status = "SKIPPED"
        row.approved_at = datetime.now(timezone.utc)
        row.approved_by = approved_by
        db.flush()
        if previous in (None, "PENDING"):
            CostApprovalService._adjust_processed(session, +1)
        return row, True

    @staticmethod
    def restore(db: Session, cutover_id: UUID, product_id: UUID) -> LedgerTransitionResponse:
        """Send a SKIPPED (or APPROVED) product back to PENDING for review"""
        session = CostApprovalService._lock_session(db, cutover_id)
        row = CostApprovalService._lock_row(db, cutover_id, product_id)
        if row is None:
            db.rollback()
            raise LookupError(f"No ledger entry for product {product_id} in {cutover_id}")
        changed = row.migration_status in DECIDED_STATUSES
        if changed:
            row.migration_status = "PENDING"
            row.approved_at = None
            CostApprovalService._adjust_processed(session, -1)
        CostApprovalService._commit(db, cutover_id)
        if changed:
            logger.info(f"Restored product {product_id} in {cutover_id} to PENDING")
        return LedgerTransitionResponse(
            cutover_id=cutover_id,
            product_id=product_id,
            migration_status=row.migration_status,
            approved_cost=row.approved_cost,
            processed_items=session.processed_items if session else None,
            changed=changed,
        )

    @staticmethod
    def approve_costs(
        db: Session,
        cutover_id: UUID,
        approved_costs: List[ApprovedCostInput],
        rejected_products: Optional[List[UUID]] = None,
        approved_by: Optional[str] = None,
    ) -> Dict[str, int]:
        """
        Bulk approve / discard in one transaction. Every approval is validated
        before anything is written.
        """
        rejected_products = rejected_products or []
        costs = {}
        for item in approved_costs:
            costs[item.product_id] = CostApprovalService.validate_approval(
                item.product_id, item.cost, item.source, item.supplier_id, item.supplier_name, []
            )
        known = {
            row[0] for row in db.query(Product.id).filter(Product.id.in_(list(costs) + list(rejected_products))).all()
        } if costs or rejected_products else set()
        unknown = [pid for pid in list(costs) + list(rejected_products) if pid not in known]
        if unknown:
            raise LookupError(f"Products not found: {', '.join(str(p) for p in unknown)}")

        try:
            session = CostApprovalService._lock_session(db, cutover_id)
            approved = 0
            for item in approved_costs:
                _row, changed = CostApprovalService._approve_locked(
                    db, session, cutover_id, item.product_id, costs[item.product_id], item.source,
                    item.supplier_id, item.supplier_name, [], item.notes, None, approved_by,
                )
                approved += int(changed)
            skipped = 0
            for product_id in rejected_products:
                _row, changed = CostApprovalService._discard_locked(db, session, cutover_id, product_id, approved_by)
                skipped += int(changed)
        except (LookupError, ValueError):
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Ledger write for {cutover_id} rejected by the database: {e}")
            raise ValueError(f"Ledger for {cutover_id} could not be updated; retry the request") from e
        CostApprovalService._commit(db, cutover_id)

        logger.info(f"Bulk approval for {cutover_id}: {approved} approved, {skipped} skipped")
        return {
            "approved": approved,
            "skipped": skipped,
            "processed_items": session.processed_items if session else None,
        }

    @staticmethod
    def reuse_previous_approvals(
        db: Session,
        cutover_id: UUID,
        source_cutover_id: Optional[UUID] = None,
        product_ids: Optional[List[UUID]] = None,
    ) -> Dict[str, int]:
        """
        Copy earlier APPROVED decisions into this ledger.

        Products already approved or skipped here are left alone. Without
        source_cutover_id the most recent approval of each product from any
        other ledger is used.
        """
        query = db.query(CostApproval).filter(
            CostApproval.cutover_id != cutover_id,
            CostApproval.migration_status == "APPROVED",
        )
        if source_cutover_id:
            query = query.filter(CostApproval.cutover_id == source_cutover_id)
        if product_ids:
            query = query.filter(CostApproval.product_id.in_(product_ids))

        latest: Dict[UUID, CostApproval] = {}
        for row in query.order_by(CostApproval.approved_at.desc()).all():
            latest.setdefault(row.product_id, row)

        session = CostApprovalService._lock_session(db, cutover_id)
        reused = 0
        for product_id, previous in latest.items():
            row = CostApprovalService._lock_row(db, cutover_id, product_id)
            if row is not None and row.migration_status in DECIDED_STATUSES:
                continue
            if row is None:
                row = CostApproval(
                    cutover_id=cutover_id,
                    product_id=product_id,
                    approved_cost=previous.approved_cost,
                    source=previous.source,
                    migration_status="APPROVED",
                )
                db.add(row)
            row.approved_cost = previous.approved_cost
            row.source = previous.source
            row.migration_status = "APPROVED"
            row.supplier_id = previous.supplier_id
            row.supplier_name = previous.supplier_name
            row.notes = f"Reused from {previous.cutover_id}"
            row.approved_at = datetime.now(timezone.utc)
            row.approved_by = previous.approved_by
            CostApprovalService._adjust_processed(session, +1)
            reused += 1
        CostApprovalService._commit(db, cutover_id)

        logger.info(f"Reused {reused} previous approval(s) into {cutover_id}")
        return {
            "reused": reused,
            "available": len(latest),
            "processed_items": session.processed_items if session else None,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def get_approved_costs(db: Session, cutover_id: UUID) -> Dict[UUID, Decimal]:
        """(product_id -> approved cost) for the executor"""
        rows = db.query(CostApproval.product_id, CostApproval.approved_cost).filter(
            CostApproval.cutover_id == cutover_id,
            CostApproval.migration_status == "APPROVED",
        ).all()
        return {product_id: Decimal(str(cost)) for product_id, cost in rows}

    @staticmethod
    def get_skipped_product_ids(db: Session, cutover_id: UUID) -> Set[UUID]:
        rows = db.query(CostApproval.product_id).filter(
            CostApproval.cutover_id == cutover_id,
            CostApproval.migration_status == "SKIPPED",
        ).all()
        return {row[0] for row in rows}

    # ------------------------------------------------------------------
    # Learned initials
    # ------------------------------------------------------------------

    @staticmethod
    def confirm_initials(
        db: Session,
        session_id: UUID,
        mappings: Optional[List[Tuple[str, str]]] = None,
    ) -> List[Tuple[str, str]]:
        """
        Persist the session's staged supplier initials in one pass.

        mappings limits confirmation to (supplier name, initial) pairs. Returns
        the pairs saved; failures are logged and dropped.
        """
        session = CostApprovalService._lock_session(db, session_id)
        if session is None:
            raise LookupError(f"Extraction session {session_id} not found")
        resolver = SupplierResolver(db, session.learned_supplier_initials)
        saved = resolver.confirm_pending(only=mappings)
        session.learned_supplier_initials = dict(resolver.pending_initials)
        db.commit()
        return saved
