"""
Extraction Session Service - pages the POS snapshot into resumable review
batches and runs cost extraction + supplier resolution on each item.

Each call:
1. pulls the snapshot (outside any transaction)
2. creates or loads the session, recomputes progress from the ledger and
   applies a batch resize, then auto-advances past fully decided batches
3. enriches missing catalog metadata from Square (bounded concurrency)
4. extracts costs for undecided items and records the batch row

A session id doubles as the cost_approvals ledger key during review.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockbridge.config import settings
from stockbridge.models import CostApproval, ExtractionBatch, ExtractionSession, Product
from stockbridge.schemas.cutover import (
    ExtractBatchResponse, ExtractedCostEntry, ExtractionItemResult, ExtractionSessionDetail, ReviewCostEntry,
)
from stockbridge.services.catalog_mapper_service import CatalogMapperService
from stockbridge.services.cost_extraction_service import CostExtractionService
from stockbridge.services.inventory_snapshot_service import InventorySnapshotService, SnapshotItem
from stockbridge.services.migration_errors import ExtractionError, SquareApiError
from stockbridge.services.supplier_resolver import SupplierResolver

logger = logging.getLogger(__name__)

DECIDED_STATUSES = ("APPROVED", "SKIPPED")


class ExtractionSessionService:

    # ------------------------------------------------------------------
    # Progress projections
    # ------------------------------------------------------------------

    @staticmethod
    def count_decided(db: Session, session_id: UUID) -> int:
        """Products with an APPROVED or SKIPPED ledger row for this session"""
        return db.query(CostApproval).filter(
            CostApproval.cutover_id == session_id,
            CostApproval.migration_status.in_(DECIDED_STATUSES),
        ).count()

    @staticmethod
    def recompute_processed_items(db: Session, session: ExtractionSession) -> int:
        """Bring processed_items back in line with the ledger (caller commits)"""
        decided = ExtractionSessionService.count_decided(db, session.id)
        if session.processed_items != decided:
            logger.info(
                f"Extraction session {session.id}: processed_items drifted "
                f"({session.processed_items} -> {decided}), recomputed from ledger"
            )
            session.processed_items = decided
        return decided

    @staticmethod
    def batches_for(item_count: int, batch_size: int) -> int:
        return max(1, math.ceil(item_count / batch_size))

    # ------------------------------------------------------------------
    # Batch extraction
    # ------------------------------------------------------------------

    @staticmethod
    def extract_batch(
        db: Session,
        square,
        location_ids: List[UUID],
        cost_basis: str = "DESCRIPTION",
        batch_size: Optional[int] = None,
        session_id: Optional[UUID] = None,
        new_batch_size: Optional[int] = None,
        cutover_date: Optional[datetime] = None,
    ) -> ExtractBatchResponse:
        """
        Return the session's current review batch.

        Calling again with the same session id and no resize serves the same
        batch until every item in it is approved or skipped, then moves on.

        Raises:
            ExtractionError: bad input, unknown location or Square failure
        """
        if cost_basis != "DESCRIPTION":
            raise ExtractionError.validation_error("cost_basis", cost_basis, "only DESCRIPTION costs can be extracted")
        if batch_size is not None and batch_size <= 0:
            raise ExtractionError.validation_error("batch_size", batch_size, "must be greater than zero")
        if new_batch_size is not None and new_batch_size <= 0:
            raise ExtractionError.validation_error("new_batch_size", new_batch_size, "must be greater than zero")
        cutover_date = cutover_date or datetime.now(timezone.utc)

        _locations, missing = InventorySnapshotService.load_locations(db, location_ids)
        if missing:
            raise ExtractionError.location_not_found(str(missing[0]))

        try:
            snapshot, warnings = InventorySnapshotService.fetch_snapshot(db, square, location_ids)
        except SquareApiError as e:
            logger.error(f"Square inventory fetch failed during extraction: {e}", exc_info=True)
            raise ExtractionError.square_inventory_fetch_failed(e.location_id, e) from e

        session = ExtractionSessionService._create_or_load_session(
            db, session_id, location_ids, cost_basis, batch_size, len(snapshot)
        )
        ExtractionSessionService.recompute_processed_items(db, session)
        if new_batch_size:
            ExtractionSessionService._resize(session, new_batch_size, len(snapshot), warnings)

        window, product_ids, ledger = ExtractionSessionService._advance_to_open_batch(
            db, session, snapshot, warnings
        )
        # Bookkeeping is committed, releasing the session row lock, before the slow catalog calls
        session_ref = (session.id, session.current_batch, session.batch_size, session.total_batches)
        pending_initials = dict(session.learned_supplier_initials or {})
        db.commit()

        products = ExtractionSessionService._load_products(db, product_ids.values())
        approved = {pid for pid, row in ledger.items() if row.migration_status == "APPROVED"}
        to_enrich = []
        for item in window:
            product = products.get(product_ids[(item.square_variation_id, item.location_id)])
            if product is not None and product.id not in approved \
                    and InventorySnapshotService.needs_catalog_metadata(product):
                to_enrich.append(item.square_variation_id)
        catalog = InventorySnapshotService.fetch_catalog_metadata(square, to_enrich) if to_enrich else {}

        resolver = SupplierResolver(db, pending_initials)
        items: List[ExtractionItemResult] = []
        with_extraction = 0
        manual_input = 0
        seen = set()
        for item in window:
            product_id = product_ids.get((item.square_variation_id, item.location_id))
            if product_id is None or product_id in seen:
                continue
            seen.add(product_id)
            product = products.get(product_id)
            if product is None:
                continue
            approval = ledger.get(product_id)
            cat = catalog.get(item.square_variation_id)
            if cat is not None:
                InventorySnapshotService.apply_catalog_metadata(product, cat)
            name, description, image_url = InventorySnapshotService.display_fields(product, cat)

            result = ExtractionItemResult(
                product_id=product_id,
                product_name=name,
                location_id=item.location_id,
                square_variation_id=item.square_variation_id,
                quantity=item.quantity,
                image_url=image_url,
                original_description=description,
            )
            if approval is not None and approval.migration_status == "APPROVED":
                result.is_already_approved = True
                result.migration_status = "APPROVED"
                result.selected_cost = approval.approved_cost
                result.existing_approved_cost = approval.approved_cost
                result.existing_supplier_name = approval.supplier_name
                result.existing_approval_date = approval.approved_at
            else:
                extraction = CostExtractionService.extract_cost_from_description(name, description)
                result.entries = ExtractionSessionService._review_entries(
                    resolver, extraction.entries, cutover_date
                )
                result.extraction_errors = extraction.extraction_errors
                result.selected_cost = extraction.selected_cost
                result.requires_manual_review = extraction.requires_manual_review
                if extraction.entries:
                    with_extraction += 1
                else:
                    manual_input += 1
            items.append(result)

        batch = ExtractionSessionService._record_batch(
            db, session_ref[0], session_ref[1], location_ids, items, with_extraction, manual_input
        )
        session = db.query(ExtractionSession).filter(ExtractionSession.id == session_ref[0]).with_for_update().first()
        is_complete = session.current_batch >= session.total_batches
        if is_complete and session.status != "COMPLETED":
            session.status = "COMPLETED"
            logger.info(f"Extraction session {session.id} completed ({session.total_items} items)")
        db.commit()

        logger.info(
            f"Extraction session {session.id} batch {session.current_batch}/{session.total_batches}: "
            f"{len(items)} items, {with_extraction} extracted, {manual_input} need manual input"
        )
        return ExtractBatchResponse(
            session_id=session.id,
            cutover_id=session.id,
            batch_id=batch.id if batch else None,
            location_ids=list(location_ids),
            cost_basis=cost_basis,
            items=items,
            total_products=len(items),
            products_with_extraction=with_extraction,
            products_requiring_manual_input=manual_input,
            batch_size=session.batch_size,
            current_batch=session.current_batch,
            total_batches=session.total_batches,
            processed_items=session.processed_items,
            total_items=session.total_items,
            is_complete=is_complete,
            can_continue=not is_complete,
            warnings=warnings,
        )

    @staticmethod
    def _load_products(db: Session, product_ids) -> Dict[UUID, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        return {p.id: p for p in db.query(Product).filter(Product.id.in_(list(ids))).all()}

    @staticmethod
    def _create_or_load_session(
        db: Session,
        session_id: Optional[UUID],
        location_ids: List[UUID],
        cost_basis: str,
        batch_size: Optional[int],
        total_items: int,
    ) -> ExtractionSession:
        """Load (row-locked) or create the session; creation is idempotent by id"""
        session_id = session_id or uuid4()
        session = db.query(ExtractionSession).filter(ExtractionSession.id == session_id).with_for_update().first()
        if session is not None:
            return session

        effective_size = batch_size or max(total_items, 1)
        session = ExtractionSession(
            id=session_id,
            location_ids=[str(lid) for lid in location_ids],
            cost_basis=cost_basis,
            batch_size=effective_size,
            current_batch=1,
            total_batches=ExtractionSessionService.batches_for(total_items, effective_size),
            total_items=total_items,
            processed_items=0,
            status="IN_PROGRESS",
        )
        db.add(session)
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first
            db.rollback()
            session = db.query(ExtractionSession).filter(ExtractionSession.id == session_id).first()
            if session is None:
                raise
            logger.info(f"Extraction session {session_id} was created concurrently; reusing it")
        else:
            logger.info(
                f"Created extraction session {session.id}: {total_items} items, "
                f"batch size {effective_size}, {session.total_batches} batches"
            )
        return db.query(ExtractionSession).filter(ExtractionSession.id == session_id).with_for_update().first()

    @staticmethod
    def _resize(session: ExtractionSession, new_batch_size: int, snapshot_size: int, warnings: List[str]) -> None:
        """Batch numbers are recomputed from progress: remaining items set the batch count"""
        remaining = max(session.total_items - session.processed_items, 0)
        session.batch_size = new_batch_size
        session.total_batches = ExtractionSessionService.batches_for(remaining, new_batch_size)
        session.current_batch = max(1, math.ceil(session.processed_items / new_batch_size))
        if session.status == "COMPLETED" and session.current_batch < session.total_batches:
            session.status = "IN_PROGRESS"

        spanned = ExtractionSessionService.batches_for(snapshot_size, new_batch_size)
        if session.total_batches < spanned:
            warnings.append(
                f"Batch size {new_batch_size} gives {session.total_batches} batch(es) for the {remaining} "
                f"undecided item(s), but the snapshot spans {spanned}; items past batch "
                f"{session.total_batches} are not served until the session is resized again"
            )
        logger.info(
            f"Extraction session {session.id} resized: batch size {new_batch_size}, "
            f"batch {session.current_batch}/{session.total_batches}"
        )

    @staticmethod
    def _advance_to_open_batch(
        db: Session,
        session: ExtractionSession,
        snapshot: List[SnapshotItem],
        warnings: List[str],
    ) -> Tuple[List[SnapshotItem], Dict[Tuple[str, UUID], UUID], Dict[UUID, CostApproval]]:
        """
        Slice the current batch and move past it while every item in it is
        already decided. Bounded by EXTRACTION_MAX_AUTO_ADVANCE.

        Returns (window without skipped items, variation->product map, ledger rows by product).
        """
        advanced = 0
        while True:
            start = (session.current_batch - 1) * session.batch_size
            window = snapshot[start:start + session.batch_size]
            product_ids = CatalogMapperService.resolve_products(
                db, [(item.square_variation_id, item.location_id) for item in window]
            )
            unmapped = [item for item in window if (item.square_variation_id, item.location_id) not in product_ids]
            ledger = {}
            if product_ids:
                ledger = {
                    row.product_id: row for row in db.query(CostApproval).filter(
                        CostApproval.cutover_id == session.id,
                        CostApproval.product_id.in_(list(set(product_ids.values()))),
                    ).all()
                }
            window = [
                item for item in window
                if (item.square_variation_id, item.location_id) in product_ids
                and getattr(ledger.get(product_ids[(item.square_variation_id, item.location_id)]),
                            "migration_status", None) != "SKIPPED"
            ]

            all_decided = all(
                getattr(ledger.get(product_ids[(item.square_variation_id, item.location_id)]),
                        "migration_status", None) in DECIDED_STATUSES
                for item in window
            )
            if not all_decided or session.current_batch >= session.total_batches:
                break
            if advanced >= settings.EXTRACTION_MAX_AUTO_ADVANCE:
                warnings.append(
                    f"Stopped auto-advancing after {advanced} fully reviewed batches; call again to continue"
                )
                break
            session.current_batch += 1
            advanced += 1

        for item in unmapped:
            warnings.append(
                f"Square variation {item.square_variation_id} at {item.location_name} is not mapped to a product"
            )
        if advanced:
            logger.info(f"Extraction session {session.id}: auto-advanced {advanced} fully reviewed batch(es)")
        return window, product_ids, ledger

    @staticmethod
    def _review_entries(
        resolver: SupplierResolver,
        entries: List[ExtractedCostEntry],
        cutover_date: datetime,
    ) -> List[ReviewCostEntry]:
        out = []
        for index, entry in enumerate(entries):
            resolved = resolver.resolve(entry.supplier)
            term = resolved.name if resolved else entry.supplier
            out.append(ReviewCostEntry(
                **entry.model_dump(),
                supplier_id=resolved.id if resolved and resolved.is_confirmed else None,
                resolved_supplier_name=resolved.name if resolved else None,
                suggested_suppliers=resolver.suggest(term, limit=3),
                effective_date=ExtractionSessionService.effective_date_for(entry, cutover_date),
                is_selected=index == len(entries) - 1,
            ))
        return out

    @staticmethod
    def effective_date_for(entry: ExtractedCostEntry, cutover_date: datetime) -> datetime:
        """Entry date; a missing year takes the cutover date's year, a missing month the cutover date"""
        if entry.month is None:
            return cutover_date
        year = entry.year or cutover_date.year
        try:
            return datetime(year, entry.month, entry.day or 1, tzinfo=timezone.utc)
        except ValueError:
            return datetime(year, entry.month, 1, tzinfo=timezone.utc)

    @staticmethod
    def _record_batch(
        db: Session,
        session_id: UUID,
        batch_number: int,
        location_ids: List[UUID],
        items: List[ExtractionItemResult],
        with_extraction: int,
        manual_input: int,
    ) -> Optional[ExtractionBatch]:
        """Create the batch row once; later calls for the same number return the original"""
        existing = db.query(ExtractionBatch).filter(
            ExtractionBatch.session_id == session_id,
            ExtractionBatch.batch_number == batch_number,
        ).first()
        if existing is not None:
            return existing

        batch = ExtractionBatch(
            session_id=session_id,
            batch_number=batch_number,
            location_ids=[str(lid) for lid in location_ids],
            product_ids=[str(item.product_id) for item in items],
            total_products=len(items),
            products_with_extraction=with_extraction,
            products_requiring_manual_input=manual_input,
            status="EXTRACTED",
        )
        db.add(batch)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Extraction batch {batch_number} of session {session_id} already recorded")
            return db.query(ExtractionBatch).filter(
                ExtractionBatch.session_id == session_id,
                ExtractionBatch.batch_number == batch_number,
            ).first()
        return batch

    # ------------------------------------------------------------------
    # Session view
    # ------------------------------------------------------------------

    @staticmethod
    def get_session_detail(db: Session, session_id: UUID) -> ExtractionSessionDetail:
        """Session with its ledger rows grouped by status; products never decided count as pending"""
        session = db.query(ExtractionSession).filter(ExtractionSession.id == session_id).first()
        if session is None:
            raise ExtractionError.session_not_found(str(session_id))

        rows = db.query(CostApproval, Product).join(Product, Product.id == CostApproval.product_id).filter(
            CostApproval.cutover_id == session_id
        ).all()
        detail = ExtractionSessionDetail(
            session=session.to_dict(),
            batches=[
                {
                    "id": str(b.id),
                    "batch_number": b.batch_number,
                    "total_products": b.total_products,
                    "products_with_extraction": b.products_with_extraction,
                    "products_requiring_manual_input": b.products_requiring_manual_input,
                    "status": b.status,
                    "created_at": b.created_at.isoformat() if b.created_at else None,
                }
                for b in session.batches
            ],
        )
        seen = set()
        for approval, product in rows:
            seen.add(str(approval.product_id))
            entry = {
                "product_id": str(approval.product_id),
                "product_name": product.display_name or product.square_product_name or product.name,
                "approved_cost": approval.approved_cost,
                "source": approval.source,
                "supplier_id": str(approval.supplier_id) if approval.supplier_id else None,
                "supplier_name": approval.supplier_name,
                "notes": approval.notes,
                "approved_at": approval.approved_at.isoformat() if approval.approved_at else None,
                "approved_by": approval.approved_by,
                "migration_status": approval.migration_status,
            }
            if approval.migration_status == "APPROVED":
                detail.approved.append(entry)
            elif approval.migration_status == "SKIPPED":
                detail.skipped.append(entry)
            else:
                detail.pending.append(entry)

        undecided = {pid for b in session.batches for pid in (b.product_ids or []) if pid not in seen}
        if undecided:
            for product in db.query(Product).filter(Product.id.in_([UUID(p) for p in undecided])).all():
                detail.pending.append({
                    "product_id": str(product.id),
                    "product_name": product.display_name or product.square_product_name or product.name,
                    "migration_status": "PENDING",
                })
        return detail
