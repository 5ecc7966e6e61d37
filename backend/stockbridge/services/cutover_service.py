"""
Cutover Service - writes the POS snapshot as OPENING_BALANCE inventory rows,
one batch per call.

Per call:
1. validate the input (every violation reported at once)
2. load or create the Cutover and remember which batch it is on
3. pull the snapshot and price the batch (Square / catalog / ledger reads,
   no transaction held)
4. one short write transaction: lock the cutover row, re-check the batch
   number, insert rows that do not exist yet, advance the counters
5. after the last batch: mark COMPLETED and lock the cutover date

A failed write marks the cutover FAILED; calling again resumes at the same
batch. Rows already written are detected and not duplicated.
"""
import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockbridge.config import settings
from stockbridge.database import set_transaction_timeout
from stockbridge.models import Cutover, Inventory, Product, SupplierProduct
from stockbridge.schemas.cutover import (
    CutoverInput, CutoverPreview, LocationPreview, MigrationErrorItem, MigrationResult,
    MigrationWarningItem, PreviewWarning,
)
from stockbridge.schemas.square import SquareCatalogObject
from stockbridge.services.catalog_mapper_service import CatalogMapperService
from stockbridge.services.cost_approval_service import CostApprovalService
from stockbridge.services.cost_extraction_service import CostExtractionService
from stockbridge.services.cutover_lock_service import CutoverLockService
from stockbridge.services.inventory_snapshot_service import InventorySnapshotService, SnapshotItem
from stockbridge.services.migration_errors import CutoverValidationError, MigrationErrorType

logger = logging.getLogger(__name__)

VALID_COST_BASES = ("SQUARE_COST", "DESCRIPTION", "MANUAL_INPUT", "AVERAGE_COST")
CONTINUABLE_STATUSES = ("PENDING", "IN_PROGRESS", "FAILED")
OPENING_BALANCE = "OPENING_BALANCE"


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _PricedBatch:
    """Batch items with their resolved products and unit costs"""

    def __init__(self):
        self.items: List[Tuple[SnapshotItem, UUID]] = []
        self.products: Dict[UUID, Product] = {}
        self.costs: Dict[Tuple[UUID, UUID], Decimal] = {}
        self.catalog: Dict[str, SquareCatalogObject] = {}
        self.unmapped: List[SnapshotItem] = []
        self.skipped: List[Tuple[SnapshotItem, UUID]] = []


class CutoverService:

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_cutover_input(db: Session, cutover_input: CutoverInput, require_owner_approval: bool = True) -> List[str]:
        """Every problem with the input; empty list when valid"""
        errors = []
        if _aware(cutover_input.cutover_date) > datetime.now(timezone.utc):
            errors.append("Cutover date cannot be in the future")
        if require_owner_approval and not cutover_input.owner_approved:
            errors.append("Cutover must be explicitly approved by owner")
        if not cutover_input.location_ids:
            errors.append("At least one location must be specified")
        else:
            _found, missing = InventorySnapshotService.load_locations(db, cutover_input.location_ids)
            for location_id in missing:
                errors.append(f"Location {location_id} does not exist")
        if cutover_input.cost_basis not in VALID_COST_BASES:
            errors.append(
                f"Invalid cost basis: {cutover_input.cost_basis}. Must be one of {', '.join(VALID_COST_BASES)}"
            )
        return errors

    # ------------------------------------------------------------------
    # Unit cost
    # ------------------------------------------------------------------

    @staticmethod
    def determine_unit_cost(
        cost_basis: str,
        manual_cost: Optional[Decimal] = None,
        approved_cost: Optional[Decimal] = None,
        product_name: Optional[str] = None,
        product_description: Optional[str] = None,
        catalog_cost: Optional[Decimal] = None,
        average_cost: Optional[Decimal] = None,
    ) -> Optional[Decimal]:
        """
        Unit cost for one item under the cost basis, or None when it cannot
        be determined. A manual cost wins under every basis.
        """
        if manual_cost is not None and manual_cost >= 0:
            return Decimal(str(manual_cost))
        if cost_basis == "MANUAL_INPUT":
            return None
        if cost_basis == "DESCRIPTION":
            if approved_cost is not None and approved_cost >= 0:
                return Decimal(str(approved_cost))
            if product_name or product_description:
                extraction = CostExtractionService.extract_cost_from_description(product_name, product_description)
                return extraction.selected_cost
            return None
        if cost_basis == "SQUARE_COST":
            return catalog_cost
        if cost_basis == "AVERAGE_COST":
            return average_cost
        return None

    @staticmethod
    def _average_costs(db: Session, product_ids: Set[UUID]) -> Dict[UUID, Decimal]:
        if not product_ids:
            return {}
        rows = db.query(SupplierProduct.product_id, func.avg(SupplierProduct.cost)).filter(
            SupplierProduct.product_id.in_(list(product_ids))
        ).group_by(SupplierProduct.product_id).all()
        return {
            product_id: Decimal(str(avg)).quantize(Decimal("0.0001"))
            for product_id, avg in rows if avg is not None
        }

    @staticmethod
    def _price_batch(
        db: Session,
        square,
        cutover_input: CutoverInput,
        window: List[SnapshotItem],
        approved_costs: Dict[UUID, Decimal],
        skipped_ids: Set[UUID],
    ) -> _PricedBatch:
        """Resolve products and compute unit costs; Square calls happen with no transaction open"""
        priced = _PricedBatch()
        product_ids = CatalogMapperService.resolve_products(
            db, [(item.square_variation_id, item.location_id) for item in window]
        )
        for item in window:
            product_id = product_ids.get((item.square_variation_id, item.location_id))
            if product_id is None:
                priced.unmapped.append(item)
            elif product_id in skipped_ids:
                priced.skipped.append((item, product_id))
            else:
                priced.items.append((item, product_id))

        ids = {product_id for _item, product_id in priced.items}
        if ids:
            priced.products = {p.id: p for p in db.query(Product).filter(Product.id.in_(list(ids))).all()}
        averages = CutoverService._average_costs(db, ids) if cutover_input.cost_basis == "AVERAGE_COST" else {}

        basis = cutover_input.cost_basis
        to_fetch = []
        for item, product_id in priced.items:
            product = priced.products.get(product_id)
            if product is None or product_id in cutover_input.manual_costs:
                continue
            if basis == "SQUARE_COST":
                to_fetch.append(item.square_variation_id)
            elif basis == "DESCRIPTION" and product_id not in approved_costs \
                    and not product.square_product_name:
                to_fetch.append(item.square_variation_id)
        db.commit()
        if to_fetch:
            priced.catalog = InventorySnapshotService.fetch_catalog_metadata(square, to_fetch)

        for item, product_id in priced.items:
            product = priced.products.get(product_id)
            if product is None:
                continue
            catalog = priced.catalog.get(item.square_variation_id)
            name, description, _image = InventorySnapshotService.display_fields(product, catalog)
            cost = CutoverService.determine_unit_cost(
                basis,
                manual_cost=cutover_input.manual_costs.get(product_id),
                approved_cost=approved_costs.get(product_id),
                product_name=name,
                product_description=description,
                catalog_cost=catalog.default_unit_cost if catalog else None,
                average_cost=averages.get(product_id),
            )
            if cost is not None:
                priced.costs[(product_id, item.location_id)] = cost
        return priced

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _load_or_create(
        db: Session,
        cutover_input: CutoverInput,
        batch_size: Optional[int],
        cutover_id: Optional[UUID],
    ) -> Cutover:
        cutover = None
        if cutover_id:
            cutover = db.query(Cutover).filter(Cutover.id == cutover_id).with_for_update().first()
        if cutover is not None:
            if cutover.status == "COMPLETED":
                db.rollback()
                raise CutoverValidationError("Cutover already completed", [f"Cutover {cutover.id} is COMPLETED"])
            if cutover.batch_size is None and batch_size:
                cutover.batch_size = batch_size
            return cutover

        cutover = Cutover(
            id=cutover_id or uuid4(),
            cutover_date=cutover_input.cutover_date,
            cost_basis=cutover_input.cost_basis,
            owner_approved=cutover_input.owner_approved,
            owner_approved_at=cutover_input.owner_approved_at or datetime.now(timezone.utc),
            owner_approved_by=cutover_input.owner_approved_by,
            status="PENDING",
            batch_size=batch_size,
            current_batch=0,
            processed_items=0,
            batch_state=CutoverService._batch_state(cutover_input),
        )
        db.add(cutover)
        db.flush()
        logger.info(
            f"Created cutover {cutover.id} for {len(cutover_input.location_ids)} location(s) "
            f"at {cutover_input.cutover_date.isoformat()} (cost basis {cutover_input.cost_basis})"
        )
        return cutover

    @staticmethod
    def _batch_state(cutover_input: CutoverInput) -> dict:
        return {
            "location_ids": [str(lid) for lid in cutover_input.location_ids],
            "approval_id": str(cutover_input.approval_id) if cutover_input.approval_id else None,
            "manual_costs": {str(pid): str(cost) for pid, cost in cutover_input.manual_costs.items()},
        }

    @staticmethod
    def execute_migration(
        db: Session,
        square,
        cutover_input: CutoverInput,
        approved_costs: Optional[Dict[UUID, Decimal]] = None,
        batch_size: Optional[int] = None,
        cutover_id: Optional[UUID] = None,
    ) -> MigrationResult:
        """
        Migrate the next batch of the snapshot.

        approved_costs defaults to the APPROVED rows of cutover_input.approval_id;
        products SKIPPED in that ledger are never migrated.

        Raises:
            CutoverValidationError: invalid input, completed cutover, or a
                concurrent call advanced the same cutover first
            SquareApiError: the snapshot could not be fetched
            SQLAlchemyError: the batch write failed (cutover marked FAILED)
        """
        errors = CutoverService.validate_cutover_input(db, cutover_input)
        if errors:
            raise CutoverValidationError("Validation failed", errors)
        if batch_size is not None and batch_size <= 0:
            raise CutoverValidationError("Validation failed", ["batch_size must be greater than zero"])

        if approved_costs is None:
            approved_costs = (
                CostApprovalService.get_approved_costs(db, cutover_input.approval_id)
                if cutover_input.approval_id else {}
            )
        skipped_ids = (
            CostApprovalService.get_skipped_product_ids(db, cutover_input.approval_id)
            if cutover_input.approval_id else set()
        )

        cutover = CutoverService._load_or_create(db, cutover_input, batch_size, cutover_id)
        cutover_id = cutover.id
        seen_batch = cutover.current_batch or 0
        stored_batch_size = cutover.batch_size
        db.commit()

        snapshot, snapshot_warnings = InventorySnapshotService.fetch_snapshot(db, square, cutover_input.location_ids)
        effective_batch_size = stored_batch_size or max(len(snapshot), 1)
        total_batches = max(1, math.ceil(len(snapshot) / effective_batch_size))
        start = seen_batch * effective_batch_size
        window = snapshot[start:start + effective_batch_size]

        result = MigrationResult(
            cutover_id=cutover_id,
            cutover_date=cutover_input.cutover_date,
            status="IN_PROGRESS",
            completed_by=cutover_input.owner_approved_by,
            batch_size=effective_batch_size,
            current_batch=seen_batch,
            total_batches=total_batches,
            processed_items=0,
            total_items=len(snapshot),
            warnings=[MigrationWarningItem(message=w) for w in snapshot_warnings],
        )

        if not window:
            return CutoverService._finalize(db, cutover_id, cutover_input, result)

        priced = CutoverService._price_batch(db, square, cutover_input, window, approved_costs, skipped_ids)
        for item in priced.unmapped:
            result.errors.append(MigrationErrorItem(
                location_id=str(item.location_id),
                error_type=MigrationErrorType.UNMAPPED_PRODUCT,
                message=f"Square variation {item.square_variation_id} at {item.location_name} is not mapped to a product",
            ))
        for item, product_id in priced.skipped:
            result.warnings.append(MigrationWarningItem(
                product_id=str(product_id),
                location_id=str(item.location_id),
                message="Skipped during cost review; not migrated",
            ))

        try:
            CutoverService._write_batch(db, cutover_id, seen_batch, cutover_input, window, priced, result)
        except CutoverValidationError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Cutover {cutover_id} batch {seen_batch + 1} failed: {e}", exc_info=True)
            result.status = "FAILED"
            result.opening_balances_created = 0
            result.errors.append(MigrationErrorItem(
                error_type=MigrationErrorType.DATABASE_ERROR,
                message=f"Batch write failed and was rolled back: {e}",
            ))
            CutoverService._mark_failed(db, cutover_id, result)
            raise

        logger.info(
            f"Cutover {cutover_id} batch {result.current_batch}/{total_batches}: "
            f"{result.opening_balances_created} created, {result.opening_balances_existing} already present, "
            f"{len(result.errors)} error(s)"
        )
        if result.current_batch >= total_batches:
            return CutoverService._finalize(db, cutover_id, cutover_input, result)
        return result

    @staticmethod
    def _write_batch(
        db: Session,
        cutover_id: UUID,
        seen_batch: int,
        cutover_input: CutoverInput,
        window: List[SnapshotItem],
        priced: _PricedBatch,
        result: MigrationResult,
    ) -> None:
        """The batch write transaction; commits on success"""
        set_transaction_timeout(db, settings.MIGRATION_TRANSACTION_TIMEOUT_MS)
        cutover = db.query(Cutover).filter(Cutover.id == cutover_id).with_for_update().one()
        if cutover.current_batch != seen_batch or cutover.status == "COMPLETED":
            raise CutoverValidationError(
                "Cutover advanced concurrently",
                [f"Expected batch {seen_batch}, found {cutover.current_batch} ({cutover.status}); retry the request"],
            )

        product_ids = {product_id for _item, product_id in priced.items}
        products = {p.id: p for p in db.query(Product).filter(Product.id.in_(list(product_ids))).all()} if product_ids else {}
        done = set()
        if product_ids:
            done = {
                (row.product_id, row.location_id) for row in db.query(Inventory.product_id, Inventory.location_id).filter(
                    Inventory.product_id.in_(list(product_ids)),
                    Inventory.location_id.in_(list({item.location_id for item in window})),
                    Inventory.source == OPENING_BALANCE,
                ).all()
            }

        for item, product_id in priced.items:
            product = products.get(product_id)
            if product is None:
                result.errors.append(MigrationErrorItem(
                    product_id=str(product_id),
                    location_id=str(item.location_id),
                    error_type=MigrationErrorType.DATABASE_ERROR,
                    message=f"Product {product_id} does not exist",
                ))
                continue
            catalog = priced.catalog.get(item.square_variation_id)
            if catalog is not None:
                InventorySnapshotService.apply_catalog_metadata(product, catalog)

            if (product_id, item.location_id) in done:
                result.opening_balances_existing += 1
                result.products_processed += 1
                continue

            unit_cost = priced.costs.get((product_id, item.location_id))
            if unit_cost is None:
                result.errors.append(MigrationErrorItem(
                    product_id=str(product_id),
                    product_name=product.name,
                    location_id=str(item.location_id),
                    error_type=MigrationErrorType.MISSING_COST,
                    message=f"No unit cost could be determined for {product.name} ({cutover_input.cost_basis})",
                ))
                continue

            quantity = item.quantity
            if quantity < 0:
                result.warnings.append(MigrationWarningItem(
                    product_id=str(product_id),
                    product_name=product.name,
                    location_id=str(item.location_id),
                    message=f"Quantity was negative ({quantity}), normalized to 0",
                ))
                quantity = 0

            db.add(Inventory(
                product_id=product_id,
                location_id=item.location_id,
                quantity=quantity,
                unit_cost=unit_cost,
                received_at=cutover_input.cutover_date,
                source=OPENING_BALANCE,
                cost_source=cutover_input.cost_basis,
                migration_id=cutover_id,
            ))
            done.add((product_id, item.location_id))
            result.opening_balances_created += 1
            result.products_processed += 1

        result.locations_processed = len({item.location_id for item in window})
        cutover.current_batch = seen_batch + 1
        cutover.processed_items = min((cutover.processed_items or 0) + len(window), result.total_items)
        cutover.total_items = result.total_items
        if cutover.batch_size is None:
            cutover.batch_size = result.batch_size
        cutover.status = "IN_PROGRESS"
        cutover.batch_state = CutoverService._batch_state(cutover_input)

        result.current_batch = cutover.current_batch
        result.processed_items = cutover.processed_items
        result.is_complete = False
        result.can_continue = result.current_batch < result.total_batches
        cutover.result = result.model_dump(mode="json")
        db.commit()

    @staticmethod
    def _finalize(db: Session, cutover_id: UUID, cutover_input: CutoverInput, result: MigrationResult) -> MigrationResult:
        """Mark COMPLETED and lock the cutover date at every location, in one transaction"""
        try:
            cutover = db.query(Cutover).filter(Cutover.id == cutover_id).with_for_update().one()
            if cutover.status != "COMPLETED":
                now = datetime.now(timezone.utc)
                cutover.status = "COMPLETED"
                cutover.completed_at = now
                result.completed_at = now
                result.status = "COMPLETED"
                result.is_complete = True
                result.can_continue = False
                result.current_batch = cutover.current_batch
                result.processed_items = cutover.processed_items or 0
                cutover.result = result.model_dump(mode="json")
                CutoverLockService.enable_cutover_locks(
                    db, cutover_input.cutover_date, cutover_input.location_ids, cutover_input.owner_approved_by
                )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Cutover {cutover_id}: batches written but finalization failed: {e}", exc_info=True)
            raise
        logger.info(f"Cutover {cutover_id} completed; locked {len(cutover_input.location_ids)} location(s)")
        return result

    @staticmethod
    def _mark_failed(db: Session, cutover_id: UUID, result: MigrationResult) -> None:
        try:
            cutover = db.query(Cutover).filter(Cutover.id == cutover_id).first()
            if cutover is not None and cutover.status != "COMPLETED":
                cutover.status = "FAILED"
                cutover.result = result.model_dump(mode="json")
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not mark cutover {cutover_id} FAILED: {e}", exc_info=True)

    @staticmethod
    def continue_migration(db: Session, square, cutover_id: UUID) -> MigrationResult:
        """Run the next batch of a stored cutover (PENDING, IN_PROGRESS or FAILED)"""
        cutover = db.query(Cutover).filter(Cutover.id == cutover_id).first()
        if cutover is None:
            raise LookupError(f"Cutover {cutover_id} not found")
        if cutover.status not in CONTINUABLE_STATUSES:
            raise CutoverValidationError("Invalid cutover state", [f"Cutover {cutover_id} is {cutover.status}"])
        state = cutover.batch_state or {}
        location_ids = state.get("location_ids") or []
        if not location_ids:
            raise CutoverValidationError(
                "Cannot continue batch without location_ids. Please restart migration.",
                ["location_ids not found in batch_state"],
            )

        cutover_input = CutoverInput(
            cutover_date=cutover.cutover_date,
            location_ids=[UUID(lid) for lid in location_ids],
            cost_basis=cutover.cost_basis,
            owner_approved=cutover.owner_approved,
            owner_approved_at=cutover.owner_approved_at,
            owner_approved_by=cutover.owner_approved_by,
            approval_id=UUID(state["approval_id"]) if state.get("approval_id") else None,
            manual_costs={UUID(pid): Decimal(cost) for pid, cost in (state.get("manual_costs") or {}).items()},
        )
        logger.info(f"Continuing cutover {cutover_id} from batch {cutover.current_batch + 1} ({cutover.status})")
        return CutoverService.execute_migration(db, square, cutover_input, cutover_id=cutover_id)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    @staticmethod
    def preview_cutover(
        db: Session,
        square,
        cutover_input: CutoverInput,
        approved_costs: Optional[Dict[UUID, Decimal]] = None,
    ) -> CutoverPreview:
        """Dry run over the whole snapshot; nothing is written"""
        preview = CutoverPreview(
            validation_errors=CutoverService.validate_cutover_input(db, cutover_input, require_owner_approval=False)
        )
        if preview.validation_errors:
            return preview

        if approved_costs is None:
            approved_costs = (
                CostApprovalService.get_approved_costs(db, cutover_input.approval_id)
                if cutover_input.approval_id else {}
            )
        skipped_ids = (
            CostApprovalService.get_skipped_product_ids(db, cutover_input.approval_id)
            if cutover_input.approval_id else set()
        )
        snapshot, snapshot_warnings = InventorySnapshotService.fetch_snapshot(db, square, cutover_input.location_ids)
        preview.warnings.extend(PreviewWarning(message=w) for w in snapshot_warnings)
        priced = CutoverService._price_batch(db, square, cutover_input, snapshot, approved_costs, skipped_ids)

        for item in priced.unmapped:
            preview.warnings.append(PreviewWarning(
                location_id=str(item.location_id),
                message=f"Square variation {item.square_variation_id} is not mapped to a product",
                recommendation="Create a catalog mapping before running the cutover",
            ))

        locations, _missing = InventorySnapshotService.load_locations(db, cutover_input.location_ids)
        names = {loc.id: loc.name for loc in locations}
        by_location: Dict[UUID, LocationPreview] = {}
        for item, product_id in priced.items:
            stats = by_location.setdefault(item.location_id, LocationPreview(
                location_id=item.location_id,
                location_name=names.get(item.location_id, item.location_name),
                product_count=0,
                products_with_cost=0,
                products_missing_cost=0,
                total_quantity=0,
                estimated_value=Decimal("0"),
            ))
            quantity = max(item.quantity, 0)
            stats.product_count += 1
            stats.total_quantity += quantity
            cost = priced.costs.get((product_id, item.location_id))
            if cost is None:
                stats.products_missing_cost += 1
                preview.warnings.append(PreviewWarning(
                    product_id=str(product_id),
                    location_id=str(item.location_id),
                    message="No unit cost could be determined",
                    recommendation="Approve a cost for this product or supply a manual cost",
                ))
            else:
                stats.products_with_cost += 1
                stats.estimated_value += cost * quantity
            if item.quantity < 0:
                preview.warnings.append(PreviewWarning(
                    product_id=str(product_id),
                    location_id=str(item.location_id),
                    message=f"Quantity is negative ({item.quantity}) and will be migrated as 0",
                ))

        preview.locations = list(by_location.values())
        preview.total_products = sum(s.product_count for s in preview.locations)
        preview.products_with_cost = sum(s.products_with_cost for s in preview.locations)
        preview.products_missing_cost = sum(s.products_missing_cost for s in preview.locations)
        preview.estimated_opening_balances = preview.products_with_cost
        return preview
