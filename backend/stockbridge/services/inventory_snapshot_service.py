"""
Inventory Snapshot Service - assembles the POS snapshot that the extraction
manager and the cutover executor both page through.

The snapshot is pulled fresh on every batch call and ordered by location
(request order) then variation id, so offsets stay stable between calls as
long as the POS counts do.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from stockbridge.config import settings
from stockbridge.models import Location, Product
from stockbridge.schemas.square import SquareCatalogObject
from stockbridge.services.migration_errors import SquareApiError
from stockbridge.services.square_inventory_service import SquareInventoryService
from stockbridge.utils.concurrency import run_in_chunks

logger = logging.getLogger(__name__)


class SnapshotItem(NamedTuple):
    location_id: UUID
    location_name: str
    square_variation_id: str
    quantity: int


class InventorySnapshotService:

    @staticmethod
    def load_locations(db: Session, location_ids: Iterable[UUID]) -> Tuple[List[Location], List[UUID]]:
        """Locations in request order, plus the ids that do not exist"""
        ids = list(dict.fromkeys(location_ids))
        rows = {loc.id: loc for loc in db.query(Location).filter(Location.id.in_(ids)).all()} if ids else {}
        return [rows[i] for i in ids if i in rows], [i for i in ids if i not in rows]

    @staticmethod
    def fetch_snapshot(db: Session, square, location_ids: Iterable[UUID]) -> Tuple[List[SnapshotItem], List[str]]:
        """
        Pull IN_STOCK counts for every location.

        Locations without a Square id are skipped with a warning. The read
        transaction is ended before Square is called. SquareApiError propagates
        with location_id set to the failing location.

        Returns:
            (items, warnings)
        """
        locations, missing = InventorySnapshotService.load_locations(db, location_ids)
        warnings = [f"Location {lid} not found" for lid in missing]
        targets = []
        for location in locations:
            if not location.square_id:
                logger.warning(f"Location {location.id} has no Square id; skipped from snapshot")
                warnings.append(f'Location "{location.name}" is not connected to Square; skipped')
                continue
            targets.append((location.id, location.name, location.square_id))
        db.commit()

        items: List[SnapshotItem] = []
        for location_id, location_name, square_id in targets:
            try:
                counts = square.fetch_square_inventory(square_id)
            except SquareApiError as e:
                e.location_id = str(location_id)
                raise
            for count in sorted(counts, key=lambda c: c.catalog_object_id):
                items.append(SnapshotItem(
                    location_id=location_id,
                    location_name=location_name,
                    square_variation_id=count.catalog_object_id,
                    quantity=count.quantity,
                ))
        return items, warnings

    @staticmethod
    def fetch_catalog_metadata(square, variation_ids: Iterable[str]) -> Dict[str, SquareCatalogObject]:
        """Per-variation catalog lookups, LOOKUP_CONCURRENCY at a time; failures are left out"""
        return run_in_chunks(square.fetch_square_catalog_object, variation_ids, settings.LOOKUP_CONCURRENCY)

    @staticmethod
    def needs_catalog_metadata(product: Product) -> bool:
        return not product.square_product_name or not product.square_description

    @staticmethod
    def display_fields(product: Product, catalog: Optional[SquareCatalogObject] = None) -> Tuple[str, Optional[str], Optional[str]]:
        """(name, description, image_url) preferring fresh catalog data over the cache"""
        name = product.square_product_name or product.square_variation_name or product.name
        description = product.square_description
        image_url = product.square_image_url
        if catalog is not None:
            name = SquareInventoryService.normalize_square_product_name(
                catalog.product_name, catalog.variation_name, name
            )
            description = catalog.description or description
            image_url = catalog.image_url or image_url
        return name, description, image_url

    @staticmethod
    def apply_catalog_metadata(product: Product, catalog: SquareCatalogObject) -> None:
        """Refresh the product's Square cache fields (caller commits)"""
        name, description, image_url = InventorySnapshotService.display_fields(product, catalog)
        product.square_product_name = name
        product.square_description = description
        product.square_image_url = image_url
        product.square_variation_name = catalog.variation_name or product.square_variation_name
        product.square_data_synced_at = datetime.now(timezone.utc)
